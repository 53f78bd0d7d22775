"""Chat message types shared by the inference endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

Content = Union[str, list[str]]


class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    DEVELOPER = "developer"


@dataclass
class Message:
    """One chat message; both role and content may be absent."""

    role: Optional[Role] = None
    content: Optional[Content] = None

    def text(self) -> str:
        """Return the content as a single string, joining list parts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(self.content)

    def to_dict(self) -> dict[str, Any]:
        """Serialise, leaving out fields that are not set."""
        data: dict[str, Any] = {}
        if self.role is not None:
            data["role"] = self.role.value
        if self.content is not None:
            data["content"] = (
                self.content if isinstance(self.content, str) else list(self.content)
            )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Build a message from its JSON form."""
        if not isinstance(data, dict):
            raise ValueError("message must be an object")
        raw_role = data.get("role")
        role = None if raw_role is None else Role(raw_role)
        raw_content = data.get("content")
        content: Optional[Content]
        if raw_content is None or isinstance(raw_content, str):
            content = raw_content
        elif isinstance(raw_content, list) and all(
            isinstance(part, str) for part in raw_content
        ):
            content = list(raw_content)
        else:
            raise ValueError("content must be a string or an array of strings")
        return cls(role=role, content=content)


@dataclass
class OpenAiError:
    """Error body in the shape OpenAI-compatible clients expect."""

    message: str
    type: str
    code: str
    param: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "type": self.type,
            "param": self.param,
            "code": self.code,
        }