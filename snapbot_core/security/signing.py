"""请求签名。

签名绑定 payload + timestamp + nonce + 设备指纹，并以应用密钥做 HMAC，
供配合的后端检测篡改与重放。它只是完整性标签，不提供机密性。
"""

import hashlib
import hmac
import secrets
import time
from typing import Callable, Dict

from snapbot_core.security.fingerprint import DeviceFingerprint

NONCE_BYTES = 16


class RequestSecurity:
    def __init__(self, fingerprint: DeviceFingerprint, app_secret: str, clock: Callable[[], float] = time.time):
        self._fingerprint = fingerprint
        self._secret = app_secret.encode("utf-8")
        self._clock = clock

    @staticmethod
    def generate_nonce() -> str:
        return secrets.token_hex(NONCE_BYTES)

    def create_request_signature(self, payload: str, timestamp: int, nonce: str) -> str:
        message = f"{payload}{timestamp}{nonce}{self._fingerprint.generate()}"
        digest = hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"sig_{digest}"

    def verify_request_signature(self, payload: str, timestamp: int, nonce: str, signature: str) -> bool:
        expected = self.create_request_signature(payload, timestamp, nonce)
        return hmac.compare_digest(expected, signature)

    def signature_headers(self, payload: str) -> Dict[str, str]:
        timestamp = int(self._clock() * 1000)
        nonce = self.generate_nonce()
        return {
            "X-Timestamp": str(timestamp),
            "X-Nonce": nonce,
            "X-Signature": self.create_request_signature(payload, timestamp, nonce),
        }
