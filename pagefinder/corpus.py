"""Per-book page text index.

Built once when a book opens and read-only afterwards. Every fragment is
normalized at build time and its tokens are interned into flat numpy arrays
(token id, page index, fragment offset) so the matcher can scan the book
without touching strings it does not need.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Iterator

import numpy as np

from .normalizer import normalize
from .types import NormalizedText, Position
from .utils import clamp_int, stable_digest


@dataclass(frozen=True)
class CorpusPage:
    page_index: int  # 0-based
    page_id: str
    fragments: tuple[NormalizedText, ...]


@dataclass(frozen=True)
class CorpusWindow:
    """Contiguous run of whole pages, as a half-open token range."""

    corpus: PageCorpus = field(repr=False, compare=False)
    first_page: int
    last_page: int  # inclusive; -1 when the corpus is empty
    token_start: int
    token_end: int

    @property
    def token_count(self) -> int:
        return self.token_end - self.token_start

    @property
    def page_count(self) -> int:
        return max(0, self.last_page - self.first_page + 1)

    def contains(self, position: Position) -> bool:
        return self.first_page <= position.page_index <= self.last_page


class PageCorpus:
    def __init__(self, pages: Iterable[CorpusPage]):
        self.pages: tuple[CorpusPage, ...] = tuple(pages)
        self._index_by_id: dict[str, int] = {}
        for page in self.pages:
            if page.page_id in self._index_by_id:
                raise ValueError(f"duplicate page_id: {page.page_id}")
            self._index_by_id[page.page_id] = page.page_index

        tokens: list[str] = []
        token_page: list[int] = []
        token_offset: list[int] = []
        page_token_start = [0]
        page_fragment_start = [0]
        fragment_token_start = [0]
        for page in self.pages:
            for offset, frag in enumerate(page.fragments):
                for tok in frag.tokens:
                    tokens.append(tok)
                    token_page.append(page.page_index)
                    token_offset.append(offset)
                fragment_token_start.append(len(tokens))
            page_token_start.append(len(tokens))
            page_fragment_start.append(page_fragment_start[-1] + len(page.fragments))

        self.vocab: dict[str, int] = {}
        ids = np.empty(len(tokens), dtype=np.int32)
        for i, tok in enumerate(tokens):
            ids[i] = self.vocab.setdefault(tok, len(self.vocab))

        self.tokens: list[str] = tokens
        self.token_ids = ids
        self.token_page = np.asarray(token_page, dtype=np.int32)
        self.token_offset = np.asarray(token_offset, dtype=np.int32)
        self.page_token_start = np.asarray(page_token_start, dtype=np.int64)
        self.page_fragment_start = np.asarray(page_fragment_start, dtype=np.int64)
        self.fragment_token_start = np.asarray(fragment_token_start, dtype=np.int64)
        self.corpus_id = stable_digest(self._digest_parts())

    @classmethod
    def build(cls, pages: Iterable[tuple[Hashable, Iterable[str]]]) -> PageCorpus:
        """Index `(page_id, raw texts)` pairs given in reading order.

        Empty pages are kept so page-index distances stay exact.
        """
        built: list[CorpusPage] = []
        for i, (page_id, texts) in enumerate(pages):
            fragments = tuple(normalize(str(t) if t is not None else "") for t in (texts or []))
            built.append(CorpusPage(page_index=i, page_id=str(page_id), fragments=fragments))
        return cls(built)

    @classmethod
    def empty(cls) -> PageCorpus:
        return cls(())

    def _digest_parts(self) -> Iterator[str]:
        for page in self.pages:
            yield f"page:{page.page_id}"
            for frag in page.fragments:
                yield frag.original

    # -- sizes ---------------------------------------------------------------

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def fragment_count(self) -> int:
        return int(self.page_fragment_start[-1])

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    @property
    def is_empty(self) -> bool:
        return self.token_count == 0

    def summary(self) -> dict[str, Any]:
        return {
            "corpus_id": self.corpus_id,
            "pages": self.page_count,
            "empty_pages": sum(1 for p in self.pages if not p.fragments),
            "fragments": self.fragment_count,
            "tokens": self.token_count,
            "vocabulary": len(self.vocab),
        }

    # -- lookup --------------------------------------------------------------

    def page_index_of(self, page_id: Hashable) -> int:
        try:
            return self._index_by_id[str(page_id)]
        except KeyError:
            raise KeyError(f"unknown page_id: {page_id}") from None

    def position(self, page_id: Hashable, offset: int = 0) -> Position:
        idx = self.page_index_of(page_id)
        return Position(page_index=idx, offset=int(offset), page_id=self.pages[idx].page_id)

    def fragments_in_order(self) -> Iterator[tuple[str, int, NormalizedText]]:
        for page in self.pages:
            for offset, frag in enumerate(page.fragments):
                yield page.page_id, offset, frag

    def position_at(self, token_index: int) -> Position:
        i = clamp_int(token_index, 0, max(0, self.token_count - 1))
        page_index = int(self.token_page[i])
        return Position(
            page_index=page_index,
            offset=int(self.token_offset[i]),
            page_id=self.pages[page_index].page_id,
        )

    def ordinal(self, position: Position) -> int:
        """Global fragment index of `position` in reading order."""
        if not self.pages:
            return 0
        page_index = clamp_int(position.page_index, 0, self.page_count - 1)
        n_frags = len(self.pages[page_index].fragments)
        offset = clamp_int(position.offset, 0, max(0, n_frags - 1))
        return int(self.page_fragment_start[page_index]) + offset

    def first_token_of(self, position: Position) -> int:
        """Index of the first token at or after `position`."""
        if not self.pages:
            return 0
        page_index = clamp_int(position.page_index, 0, self.page_count - 1)
        if not self.pages[page_index].fragments:
            return int(self.page_token_start[page_index])
        return int(self.fragment_token_start[self.ordinal(position)])

    def progress(self, position: Position) -> float:
        """Fraction of the book's text before `position`, in [0, 1]."""
        if self.token_count == 0:
            return 0.0
        return float(self.first_token_of(position)) / float(self.token_count)

    # -- windows -------------------------------------------------------------

    def full_window(self) -> CorpusWindow:
        return CorpusWindow(
            corpus=self,
            first_page=0,
            last_page=self.page_count - 1,
            token_start=0,
            token_end=self.token_count,
        )

    def window(
        self,
        around: Position | None,
        radius: int | None = None,
        *,
        pages_before: int | None = None,
        pages_after: int | None = None,
    ) -> CorpusWindow:
        """Whole pages around `around`.

        `radius` gives a symmetric window; `pages_before`/`pages_after`
        override either side. No anchor means the whole corpus.
        """
        if around is None or not self.pages:
            return self.full_window()
        before = pages_before if pages_before is not None else (radius or 0)
        after = pages_after if pages_after is not None else (radius or 0)
        last = self.page_count - 1
        center = clamp_int(around.page_index, 0, last)
        first_page = clamp_int(center - max(0, int(before)), 0, last)
        last_page = clamp_int(center + max(0, int(after)), 0, last)
        return CorpusWindow(
            corpus=self,
            first_page=first_page,
            last_page=last_page,
            token_start=int(self.page_token_start[first_page]),
            token_end=int(self.page_token_start[last_page + 1]),
        )
