from dataclasses import dataclass, asdict, replace
from typing import Optional, Dict, Any, Protocol
from datetime import datetime, timezone
from uuid import uuid4

from .models import Role


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass
class Message:
    """会话日志中的一条消息。

    is_streaming 仅在助手消息仍在接收流式增量时为 True；
    error 非空表示该轮回答失败（流式中断时可与已收到的部分 content 并存）。
    """

    id: str
    role: Role
    content: str
    created_at: datetime
    is_streaming: bool = False
    error: Optional[str] = None

    @classmethod
    def create(cls, role: Role, content: str, **fields: Any) -> "Message":
        return cls(
            id=f"m-{uuid4().hex}",
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc),
            **fields,
        )

    def copy(self, **changes: Any) -> "Message":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["created_at"] = _iso(self.created_at)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_iso(data["created_at"]),
            is_streaming=bool(data.get("is_streaming", False)),
            error=data.get("error"),
        )


class KeyValueStore(Protocol):
    """持久化键值存储协议（对核心逻辑不透明）。"""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...
