"""Approximate alignment of OCR fragments against the page corpus.

Matching runs in two bounded stages:

1. Candidate generation. Every corpus token that also occurs in the query is
   weighted by its rarity in the book; a sliding sum over windows holding as
   many characters as the query gives a hit score per start offset. Words
   fused by dropped spaces are found by substring. Peaks are picked greedily with
   non-maximum suppression so neighbouring offsets of one location never
   compete with each other.
2. Alignment scoring. Around each peak, start offsets are scored by the LCS
   ratio (rapidfuzz Indel) between the space-stripped query and the
   space-stripped window text. Character level comparison absorbs OCR
   misreads, merged words and split words.

The best location is only reported when it clears the confidence threshold
and beats the best non-overlapping runner-up by a clear gap.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from rapidfuzz.distance import Indel

from .corpus import CorpusWindow, PageCorpus
from .normalizer import normalize, squash
from .types import MatchResult, MatchStatus, Position, RecognizedFragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Scored:
    score: float
    start: int  # relative to the search window


def cap_query_tokens(tokens: Sequence[str], max_tokens: int, max_distinct: int) -> list[str]:
    """Leading run of `tokens` holding at most `max_distinct` distinct tokens."""
    out: list[str] = []
    seen: set[str] = set()
    for tok in tokens:
        if len(out) >= max_tokens:
            break
        if tok not in seen:
            if len(seen) >= max_distinct:
                break
            seen.add(tok)
        out.append(tok)
    return out


def query_tokens(query: RecognizedFragment | Sequence[str]) -> list[str]:
    texts = query.texts if isinstance(query, RecognizedFragment) else list(query)
    tokens: list[str] = []
    for text in texts:
        tokens.extend(normalize(text).tokens)
    return tokens


@dataclass
class FragmentMatcher:
    corpus: PageCorpus
    matcher_cfg: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cfg = self.matcher_cfg
        self.max_query_tokens = int(cfg.get("max_query_tokens", 96))
        self.max_query_distinct = int(cfg.get("max_query_distinct_tokens", 48))
        self.threshold = float(cfg.get("confidence_threshold", 0.72))
        self.ambiguity_gap = float(cfg.get("ambiguity_gap", 0.04))
        self.max_candidates = int(cfg.get("max_candidates", 24))
        self.min_separation = float(cfg.get("min_separation", 0.5))
        self.refine_radius = float(cfg.get("refine_radius", 0.25))
        self.min_hit_ratio = float(cfg.get("min_hit_ratio", 0.3))
        self.min_anchor_chars = int(cfg.get("min_anchor_chars", 4))
        self.min_fused_chars = int(cfg.get("min_fused_chars", 8))

        # Rare tokens dominate candidate generation; boilerplate words barely count.
        freq = np.bincount(self.corpus.token_ids, minlength=len(self.corpus.vocab))
        self._token_weight = np.where(freq > 0, 1.0 / np.maximum(freq, 1), 0.0)

        token_len = np.fromiter((len(t) for t in self.corpus.tokens), dtype=np.int64, count=self.corpus.token_count)
        self._char_cum = np.concatenate(([0], np.cumsum(token_len)))
        self._long_vocab = [(w, i) for w, i in self.corpus.vocab.items() if len(w) >= self.min_anchor_chars]

    def match(
        self,
        query: RecognizedFragment | Sequence[str],
        search_space: CorpusWindow | None = None,
        hint: Position | None = None,
    ) -> MatchResult:
        if isinstance(query, RecognizedFragment) and query.failed:
            return MatchResult.failure(f"ocr_failed: {query.error}")

        q_tokens = cap_query_tokens(query_tokens(query), self.max_query_tokens, self.max_query_distinct)
        if not q_tokens:
            return MatchResult.no_match("empty_query")

        space = search_space if search_space is not None else self.corpus.full_window()
        n = space.token_count
        if n == 0:
            return MatchResult.no_match("empty_corpus")

        q_str = squash(q_tokens)
        seg_ids = self.corpus.token_ids[space.token_start:space.token_end]
        ends = self._window_ends(space, len(q_str))
        hits = self._window_hits(q_tokens, seg_ids, ends)
        if hits is None:
            return MatchResult.no_match("no_shared_tokens")
        # typical window length in tokens; the query's own token count is unreliable
        width = max(1, int(np.median(ends - np.arange(len(ends)))))

        hint_rel = None
        if hint is not None:
            hint_rel = self.corpus.first_token_of(hint) - space.token_start

        def tie_key(start: int) -> tuple[int, int]:
            if hint_rel is None:
                return (0, start)
            return (abs(start - hint_rel), start)

        separation = max(1, int(width * self.min_separation))
        peaks = self._pick_peaks(hits, separation, tie_key)

        seg_tokens = self.corpus.tokens[space.token_start:space.token_end]
        n_starts = len(hits)
        radius = max(1, int(width * self.refine_radius))
        cache: dict[int, float] = {}

        def window_at(start: int) -> list[str]:
            return seg_tokens[start:int(ends[start])]

        def score_at(start: int) -> float:
            if start not in cache:
                window_str = squash(window_at(start))
                cache[start] = float(Indel.normalized_similarity(q_str, window_str))
            return cache[start]

        refined: list[_Scored] = []
        for peak in peaks:
            lo = max(0, peak - radius)
            hi = min(n_starts - 1, peak + radius)
            best = max(
                (_Scored(score_at(s), s) for s in range(lo, hi + 1)),
                key=lambda c: (c.score, tuple(-k for k in tie_key(c.start))),
            )
            refined.append(best)

        def to_position(start: int) -> Position:
            anchor = self._anchor_token(q_str, window_at(start))
            return self.corpus.position_at(space.token_start + start + anchor)

        return self._decide(refined, separation, tie_key, to_position)

    def _anchor_token(self, q_str: str, window: list[str]) -> int:
        """Offset of the first window token the query actually aligns with.

        Equal scores for neighbouring starts happen when the screenshot has
        junk at one end (page numbers, running headers), so the window start
        alone can sit one token early. The first token whose characters are
        all aligned says where the shown text begins.
        """
        w_str = squash(window)
        covered = [False] * len(w_str)
        for op in Indel.opcodes(q_str, w_str):
            if op.tag == "equal":
                for k in range(op.dest_start, op.dest_end):
                    covered[k] = True

        full: list[bool] = []
        pos = 0
        for tok in window:
            full.append(bool(tok) and all(covered[pos:pos + len(tok)]))
            pos += len(tok)

        # Short tokens match by accident; they only anchor when the next one agrees.
        for i, tok in enumerate(window):
            if not full[i]:
                continue
            if len(tok) >= self.min_anchor_chars or (i + 1 < len(window) and full[i + 1]):
                return i
        return 0

    def _window_ends(self, space: CorpusWindow, q_len: int) -> np.ndarray:
        """Exclusive end token of the window at every start offset.

        A window runs until it holds at least `q_len` characters, so a query
        whose spaces OCR dropped still meets all the text it shows. Only
        starts with a full window are kept, except that a search space
        shorter than the query yields one window over all of it.
        """
        base = self._char_cum[space.token_start]
        cum = self._char_cum[space.token_start:space.token_end + 1] - base
        n = space.token_count
        n_starts = int(np.searchsorted(cum, cum[-1] - q_len, side="right"))
        n_starts = min(max(n_starts, 1), n)
        ends = np.searchsorted(cum, cum[:n_starts] + q_len, side="left")
        return np.minimum(ends, n)

    def _query_ids(self, q_tokens: list[str]) -> list[int]:
        vocab = self.corpus.vocab
        ids = {vocab[t] for t in q_tokens if t in vocab}
        # Dropped spaces fuse words into one unknown token; find the corpus words inside it.
        for t in sorted(set(q_tokens)):
            if t in vocab or len(t) < self.min_fused_chars:
                continue
            ids.update(i for w, i in self._long_vocab if w in t)
        return sorted(ids)

    def _window_hits(self, q_tokens: list[str], seg_ids: np.ndarray, ends: np.ndarray) -> np.ndarray | None:
        known = self._query_ids(q_tokens)
        if not known:
            return None
        in_query = np.isin(seg_ids, np.asarray(known, dtype=np.int32))
        weights = np.where(in_query, self._token_weight[seg_ids], 0.0)
        if not weights.any():
            return None
        csum = np.concatenate(([0.0], np.cumsum(weights)))
        return csum[ends] - csum[:len(ends)]

    def _pick_peaks(self, hits: np.ndarray, separation: int, tie_key) -> list[int]:
        top = float(hits.max())
        floor = top * self.min_hit_ratio
        starts = [int(s) for s in np.flatnonzero(hits >= floor)]
        # Round so float noise from the cumulative sum cannot reorder equal windows.
        starts.sort(key=lambda s: (-round(float(hits[s]), 9), tie_key(s)))
        peaks: list[int] = []
        for s in starts:
            if all(abs(s - p) >= separation for p in peaks):
                peaks.append(s)
                if len(peaks) >= self.max_candidates:
                    break
        return peaks

    def _decide(self, refined: list[_Scored], separation: int, tie_key, to_position) -> MatchResult:
        ordered = sorted(refined, key=lambda c: (-round(c.score, 9), tie_key(c.start)))
        best = ordered[0]
        runner_up: _Scored | None = None
        for c in ordered[1:]:
            if abs(c.start - best.start) >= separation:
                runner_up = c
                break
        second = runner_up.score if runner_up else 0.0

        if best.score < self.threshold:
            logger.debug("no confident match: best=%.3f threshold=%.3f", best.score, self.threshold)
            return MatchResult.no_match("below_threshold", confidence=best.score, runner_up=second)

        if runner_up is not None and best.score - second < self.ambiguity_gap:
            rivals: list[_Scored] = []
            for c in ordered:
                if best.score - c.score >= self.ambiguity_gap:
                    break
                if all(abs(c.start - r.start) >= separation for r in rivals):
                    rivals.append(c)
            candidates = tuple(sorted(to_position(c.start) for c in rivals))
            logger.debug("ambiguous match: best=%.3f runner_up=%.3f rivals=%d", best.score, second, len(rivals))
            return MatchResult(
                status=MatchStatus.AMBIGUOUS,
                confidence=best.score,
                runner_up=second,
                candidates=candidates,
                reason="ambiguous_gap",
            )

        return MatchResult(
            status=MatchStatus.MATCHED,
            position=to_position(best.start),
            confidence=best.score,
            runner_up=second,
        )
