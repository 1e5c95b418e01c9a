from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class NormalizedText:
    original: str
    canonical: str

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(self.canonical.split(" ")) if self.canonical else ()

    @property
    def is_empty(self) -> bool:
        return not self.canonical


@dataclass(frozen=True, order=True)
class Position:
    page_index: int  # 0-based corpus ordinal of the page
    offset: int  # fragment index within the page
    page_id: str = field(default="", compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {"page_id": self.page_id, "page_index": self.page_index, "offset": self.offset}


@dataclass(frozen=True)
class OCRToken:
    text: str
    confidence: float
    bbox_xyxy: tuple[int, int, int, int] | None = None


@dataclass(frozen=True)
class RecognizedFragment:
    """OCR output for one image, already in reading order."""

    tokens: tuple[OCRToken, ...] = ()
    source: str = ""
    error: str | None = None

    @property
    def texts(self) -> list[str]:
        return [t.text for t in self.tokens]

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def from_texts(cls, texts: list[str], source: str = "") -> RecognizedFragment:
        return cls(tokens=tuple(OCRToken(text=t, confidence=1.0) for t in texts), source=source)


class MatchStatus(str, Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"
    FAILED = "failed"


@dataclass(frozen=True)
class MatchResult:
    status: MatchStatus
    position: Position | None = None
    confidence: float = 0.0
    runner_up: float = 0.0
    candidates: tuple[Position, ...] = ()
    reason: str = ""

    @property
    def is_confident(self) -> bool:
        return self.status is MatchStatus.MATCHED and self.position is not None

    @classmethod
    def no_match(cls, reason: str, *, confidence: float = 0.0, runner_up: float = 0.0) -> MatchResult:
        return cls(status=MatchStatus.NO_MATCH, confidence=confidence, runner_up=runner_up, reason=reason)

    @classmethod
    def failure(cls, reason: str) -> MatchResult:
        return cls(status=MatchStatus.FAILED, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "position": self.position.to_dict() if self.position else None,
            "confidence": round(float(self.confidence), 4),
            "runner_up": round(float(self.runner_up), 4),
            "candidates": [c.to_dict() for c in self.candidates],
            "reason": self.reason,
        }


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    SAME = "same"


@dataclass(frozen=True)
class DeltaResult:
    first: MatchResult
    second: MatchResult
    direction: Direction | None = None
    fragments: int | None = None  # corpus-order fragment distance
    pages: int | None = None  # page-index distance

    @property
    def is_complete(self) -> bool:
        return self.direction is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "complete": self.is_complete,
            "direction": self.direction.value if self.direction else None,
            "fragments": self.fragments,
            "pages": self.pages,
            "first": self.first.to_dict(),
            "second": self.second.to_dict(),
        }
