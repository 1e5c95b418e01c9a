"""Resolving screenshots to reading positions, singly or as a pair.

Books repeat themselves (running headers, chapter titles, epigraphs), so a
pair of screenshots is not matched independently against the whole book.
The first image is searched in a generous window around the reader's
current position; the second image is searched in a narrower window around
wherever the first one landed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence, Union

from .corpus import CorpusWindow, PageCorpus
from .matcher import FragmentMatcher
from .ocr import ImageSource, Recognizer
from .types import DeltaResult, Direction, MatchResult, Position, RecognizedFragment

logger = logging.getLogger(__name__)

Query = Union[RecognizedFragment, Sequence[str]]


@dataclass
class PositionResolver:
    corpus: PageCorpus
    recognizer: Recognizer | None = None
    matcher_cfg: dict[str, Any] = field(default_factory=dict)
    delta_cfg: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.matcher = FragmentMatcher(corpus=self.corpus, matcher_cfg=self.matcher_cfg)
        self.pages_before = int(self.delta_cfg.get("pages_before", 8))
        self.pages_after = int(self.delta_cfg.get("pages_after", 24))
        self.anchor_pages_before = int(self.delta_cfg.get("anchor_pages_before", 4))
        self.anchor_pages_after = int(self.delta_cfg.get("anchor_pages_after", 12))

    def recognize(self, image: ImageSource, request_id: str = "") -> RecognizedFragment:
        if self.recognizer is None:
            return RecognizedFragment(error="no_recognizer")
        return self.recognizer.recognize(image, request_id=request_id)

    def locate(self, image: ImageSource, hint: Position | None = None, request_id: str = "") -> MatchResult:
        """Match one screenshot against the whole book."""
        return self.locate_fragments(self.recognize(image, request_id=request_id), hint=hint)

    def locate_fragments(self, query: Query, hint: Position | None = None) -> MatchResult:
        return self.matcher.match(query, self.corpus.full_window(), hint=hint)


@dataclass
class DeltaResolver(PositionResolver):
    def first_window(self, current_position: Position | None) -> CorpusWindow:
        return self.corpus.window(
            current_position,
            pages_before=self.pages_before,
            pages_after=self.pages_after,
        )

    def second_window(self, anchor: Position | None) -> CorpusWindow:
        return self.corpus.window(
            anchor,
            pages_before=self.anchor_pages_before,
            pages_after=self.anchor_pages_after,
        )

    def resolve(
        self,
        image_1: ImageSource,
        image_2: ImageSource,
        current_position: Position | None,
        request_id: str = "",
    ) -> DeltaResult:
        query_1 = self.recognize(image_1, request_id=f"{request_id}_1" if request_id else "")
        query_2 = self.recognize(image_2, request_id=f"{request_id}_2" if request_id else "")
        return self.resolve_fragments(query_1, query_2, current_position)

    def resolve_fragments(self, query_1: Query, query_2: Query, current_position: Position | None) -> DeltaResult:
        first = self.matcher.match(query_1, self.first_window(current_position), hint=current_position)

        # An unconfident first match cannot anchor anything; fall back to where the reader was.
        anchor = first.position if first.is_confident else current_position
        second = self.matcher.match(query_2, self.second_window(anchor), hint=anchor)

        if not (first.is_confident and second.is_confident):
            logger.info("partial delta: first=%s second=%s", first.status.value, second.status.value)
            return DeltaResult(first=first, second=second)
        return self.delta_between(first, second)

    def delta_between(self, first: MatchResult, second: MatchResult) -> DeltaResult:
        a, b = first.position, second.position
        fragments = self.corpus.ordinal(b) - self.corpus.ordinal(a)
        if fragments > 0:
            direction = Direction.FORWARD
        elif fragments < 0:
            direction = Direction.BACKWARD
        else:
            direction = Direction.SAME
        return DeltaResult(
            first=first,
            second=second,
            direction=direction,
            fragments=abs(fragments),
            pages=abs(b.page_index - a.page_index),
        )
