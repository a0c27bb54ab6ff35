"""消息内容校验与清洗。

RequestValidator 只做判定，不修改内容；ContentSanitizer 负责剥离危险片段。
两者共享同一组不安全模式，匹配均不区分大小写。
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Pattern, Sequence

DEFAULT_MAX_LENGTH = 10000

SCRIPT_TAG = re.compile(r"<\s*/?\s*script\b", re.IGNORECASE)
SCRIPT_BLOCK = re.compile(r"<\s*script\b[^>]*>.*?<\s*/\s*script\s*>", re.IGNORECASE | re.DOTALL)
UNSAFE_SCHEMES = re.compile(r"javascript\s*:|vbscript\s*:|data\s*:\s*text/html", re.IGNORECASE)
EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
ANGLE_BRACKETS = re.compile(r"[<>]")

DENYLIST: Sequence[Pattern[str]] = (SCRIPT_TAG, UNSAFE_SCHEMES, EVENT_HANDLER)


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None


class RequestValidator:
    def __init__(self, max_length: int = DEFAULT_MAX_LENGTH):
        self.max_length = max_length

    def validate_message_content(self, content: str) -> ValidationResult:
        if len(content) > self.max_length:
            return ValidationResult(
                valid=False,
                error=f"Message too long. Maximum {self.max_length} characters allowed.",
            )
        for pattern in DENYLIST:
            if pattern.search(content):
                return ValidationResult(valid=False, error="Message contains potentially unsafe content.")
        return ValidationResult(valid=True)

    def validate_request_size(self, data: Any) -> bool:
        serialized = json.dumps(data, ensure_ascii=False, default=str)
        return len(serialized) <= self.max_length


class ContentSanitizer:
    _STEPS = (SCRIPT_BLOCK, UNSAFE_SCHEMES, EVENT_HANDLER, ANGLE_BRACKETS)

    def sanitize_input(self, text: str) -> str:
        return self._strip(text, self._STEPS)

    def sanitize_output(self, text: str) -> str:
        return self._strip(text, self._STEPS)

    @staticmethod
    def _strip(text: str, steps: Sequence[Pattern[str]]) -> str:
        # 删除一个片段可能拼出新的危险片段（如 "javajavascript:script:"），重复直到不再变化
        current = text
        while True:
            cleaned = current
            for pattern in steps:
                cleaned = pattern.sub("", cleaned)
            cleaned = cleaned.strip()
            if cleaned == current:
                return cleaned
            current = cleaned
