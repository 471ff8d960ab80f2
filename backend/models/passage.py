"""Passage data models."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class Passage:
    """A retrieved text snippet with its source metadata."""
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the metadata so passages stay read-only once retrieved
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def url(self) -> str:
        """Source URL of the passage, empty when the backend did not report one."""
        url = self.metadata.get("url")
        return url if isinstance(url, str) else ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Passage":
        """Build a passage from a retrieval backend result item."""
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        text = data["text"]
        if not isinstance(text, str):
            raise TypeError(f"Passage text must be a string, got {type(text).__name__}")
        return cls(text=text, metadata=metadata)
