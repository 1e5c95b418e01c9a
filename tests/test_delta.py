"""Delta resolver: anchored two-image search and direction/magnitude."""
from __future__ import annotations

import pytest

from conftest import FakeRecognizer, make_pages
from pagefinder.corpus import PageCorpus
from pagefinder.delta import DeltaResolver, PositionResolver
from pagefinder.types import Direction, MatchStatus, Position


@pytest.fixture
def screens(pages) -> dict[str, list[str]]:
    return {
        "p3.png": [pages[3][1][0]],
        "p7.png": [pages[7][1][0]],
        "p7b.png": [pages[7][1][2], pages[7][1][3]],
        "p5.png": [pages[5][1][1]],
        "junk.png": ["plumber orchestra velvet thunder"],
    }


@pytest.fixture
def resolver(corpus, screens) -> DeltaResolver:
    return DeltaResolver(corpus=corpus, recognizer=FakeRecognizer(screens))


class TestDirectionAndMagnitude:
    def test_forward(self, resolver, corpus):
        result = resolver.resolve("p3.png", "p7.png", corpus.position("p2"))
        assert result.is_complete
        assert result.direction is Direction.FORWARD
        assert result.first.position == Position(3, 0)
        assert result.second.position == Position(7, 0)
        assert result.fragments == corpus.ordinal(Position(7, 0)) - corpus.ordinal(Position(3, 0))
        assert result.fragments == 16
        assert result.pages == 4

    def test_backward(self, resolver, corpus):
        result = resolver.resolve("p7.png", "p3.png", corpus.position("p6"))
        assert result.direction is Direction.BACKWARD
        assert result.fragments == 16
        assert result.pages == 4

    def test_same(self, resolver, corpus):
        result = resolver.resolve("p5.png", "p5.png", corpus.position("p5"))
        assert result.direction is Direction.SAME
        assert result.fragments == 0
        assert result.pages == 0

    def test_within_page(self, resolver, corpus):
        result = resolver.resolve("p7.png", "p7b.png", corpus.position("p7"))
        assert result.direction is Direction.FORWARD
        assert result.fragments == 2
        assert result.pages == 0

    def test_no_current_position_searches_whole_book(self, resolver):
        result = resolver.resolve("p3.png", "p7.png", None)
        assert result.is_complete
        assert result.fragments == 16

    def test_to_dict(self, resolver, corpus):
        d = resolver.resolve("p3.png", "p7.png", corpus.position("p2")).to_dict()
        assert d["complete"] is True
        assert d["direction"] == "forward"
        assert d["fragments"] == 16
        assert d["first"]["position"]["page_id"] == "p3"


class TestPartialResults:
    def test_second_unconfident(self, resolver, corpus):
        result = resolver.resolve("p3.png", "junk.png", corpus.position("p2"))
        assert not result.is_complete
        assert result.first.is_confident
        assert result.second.status is MatchStatus.NO_MATCH
        assert result.direction is None
        assert result.fragments is None
        assert result.pages is None

    def test_first_unreadable(self, resolver, corpus):
        result = resolver.resolve("missing.png", "p7.png", corpus.position("p6"))
        assert not result.is_complete
        assert result.first.status is MatchStatus.FAILED
        # second search falls back to the current position and still locates
        assert result.second.position == Position(7, 0)

    def test_no_recognizer(self, corpus):
        result = DeltaResolver(corpus=corpus).resolve("a.png", "b.png", None)
        assert result.first.status is MatchStatus.FAILED
        assert result.first.reason == "ocr_failed: no_recognizer"

    def test_outside_first_window(self, corpus, screens):
        narrow = DeltaResolver(
            corpus=corpus,
            recognizer=FakeRecognizer(screens),
            delta_cfg={"pages_before": 1, "pages_after": 1},
        )
        result = narrow.resolve("p7.png", "p3.png", corpus.position("p1"))
        assert result.first.status is MatchStatus.NO_MATCH
        assert not result.is_complete


class TestBoundedSearch:
    """Repeated text is only disambiguated by searching near the anchor."""

    @pytest.fixture
    def repeated(self) -> tuple[PageCorpus, dict[str, list[str]]]:
        pages = make_pages()
        texts = list(pages[8][1])
        texts[2] = pages[2][1][2]
        pages[8] = (pages[8][0], texts)
        screens = {"repeat.png": [pages[2][1][2]], "p4.png": [pages[4][1][0]]}
        return PageCorpus.build(pages), screens

    def test_whole_book_is_ambiguous(self, repeated):
        corpus, screens = repeated
        r = PositionResolver(corpus=corpus, recognizer=FakeRecognizer(screens))
        assert r.locate("repeat.png").status is MatchStatus.AMBIGUOUS

    def test_anchored_first_match(self, repeated):
        corpus, screens = repeated
        r = DeltaResolver(
            corpus=corpus,
            recognizer=FakeRecognizer(screens),
            delta_cfg={"pages_before": 1, "pages_after": 3},
        )
        result = r.resolve("repeat.png", "p4.png", corpus.position("p1"))
        assert result.first.position == Position(2, 2)
        assert result.direction is Direction.FORWARD
        assert result.fragments == 6
        assert result.pages == 2

    def test_second_window_follows_first_match(self, repeated):
        corpus, screens = repeated
        r = DeltaResolver(
            corpus=corpus,
            recognizer=FakeRecognizer(screens),
            delta_cfg={"anchor_pages_before": 2, "anchor_pages_after": 1},
        )
        window = r.second_window(Position(4, 0))
        assert (window.first_page, window.last_page) == (2, 5)
        result = r.resolve("p4.png", "repeat.png", corpus.position("p4"))
        assert result.second.position == Position(2, 2)
        assert result.direction is Direction.BACKWARD


class TestPositionResolver:
    def test_locate(self, corpus, screens):
        r = PositionResolver(corpus=corpus, recognizer=FakeRecognizer(screens))
        result = r.locate("p5.png")
        assert result.position == Position(5, 1)

    def test_locate_unreadable(self, corpus, screens):
        r = PositionResolver(corpus=corpus, recognizer=FakeRecognizer(screens))
        result = r.locate("nope.png")
        assert result.status is MatchStatus.FAILED
        assert "unreadable_image" in result.reason

    def test_locate_fragments(self, corpus, pages):
        r = PositionResolver(corpus=corpus)
        assert r.locate_fragments([pages[6][1][3]]).position == Position(6, 3)


def test_empty_pages_keep_page_distance():
    pages = make_pages(n_pages=6)
    pages.insert(3, ("blank", []))
    corpus = PageCorpus.build(pages)
    r = DeltaResolver(corpus=corpus)
    result = r.resolve_fragments([pages[2][1][0]], [pages[4][1][0]], corpus.position("p2"))
    assert result.pages == 2
    assert result.fragments == 4
