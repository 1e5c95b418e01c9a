"""Reading-position resolver for an e-reader.

Given screenshots of a page shown somewhere else (another viewer, a phone)
and the per-page text of the open book, this package finds which page and
fragment the screenshot shows, and how far apart two screenshots are.

It covers:
- text normalization and the per-book page corpus
- approximate fragment matching with ambiguity detection
- two-screenshot delta resolution anchored on the current position
- an off-thread gateway delivering exactly one completion per request

Rendering, OCR popups and ebook container parsing are out of scope.
"""

from __future__ import annotations

from .corpus import CorpusWindow, PageCorpus
from .delta import DeltaResolver, PositionResolver
from .gateway import (
    DeltaMatchCompleted,
    DeltaMatchRequest,
    JobGateway,
    PositionMatchCompleted,
    PositionMatchRequest,
)
from .matcher import FragmentMatcher
from .normalizer import normalize
from .types import DeltaResult, Direction, MatchResult, MatchStatus, NormalizedText, Position

__all__ = [
    "__version__",
    "CorpusWindow",
    "DeltaMatchCompleted",
    "DeltaMatchRequest",
    "DeltaResolver",
    "DeltaResult",
    "Direction",
    "FragmentMatcher",
    "JobGateway",
    "MatchResult",
    "MatchStatus",
    "NormalizedText",
    "PageCorpus",
    "Position",
    "PositionMatchCompleted",
    "PositionMatchRequest",
    "PositionResolver",
    "normalize",
]

__version__ = "0.1.0"
