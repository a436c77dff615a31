"""
Shared data models for the TVMaze to Heartcore migration.

Kept separate from the clients and the pipeline to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Dict, Any


@dataclass(frozen=True)
class ShowImage:
    """Poster URLs published by TVMaze for a show."""
    medium: Optional[str] = None
    original: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ShowImage"]:
        if not data:
            return None
        return cls(medium=data.get("medium"), original=data.get("original"))


@dataclass(frozen=True)
class TVMazeShow:
    """
    One show from the TVMaze catalog.

    Frozen so records can be shared between worker threads without copying.
    """
    id: int
    name: Optional[str] = None
    image: Optional[ShowImage] = None
    summary: Optional[str] = None  # may contain HTML markup
    genres: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return self.name or f"Show {self.id}"

    @property
    def source_id(self) -> str:
        """Identifier as stored in the showId property."""
        return str(self.id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TVMazeShow":
        """
        Create a show from a TVMaze API object.

        Handles missing and null fields gracefully.
        """
        return cls(
            id=int(data["id"]),
            name=data.get("name"),
            image=ShowImage.from_dict(data.get("image")),
            summary=data.get("summary"),
            genres=tuple(g for g in (data.get("genres") or []) if g),
        )


@dataclass(frozen=True)
class IndexEntry:
    """Existing Heartcore content item for a show id."""
    key: str
    name: str


class UpsertOutcome(str, Enum):
    """Result of processing one show."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of one show, returned by the upsert worker instead of raising."""
    show_id: int
    name: str
    outcome: UpsertOutcome
    key: Optional[str] = None
    reason: Optional[str] = None
    image_attached: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome != UpsertOutcome.FAILED
