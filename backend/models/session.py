"""Conversation session data models."""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict


class Role(str, Enum):
    """Author of a turn."""
    USER = "user"
    BOT = "bot"


@dataclass(frozen=True)
class Turn:
    """A single message in a conversation session."""
    role: Role
    text: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(role=Role(data["role"]), text=data["text"])
