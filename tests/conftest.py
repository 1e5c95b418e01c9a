from __future__ import annotations

import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable

import pytest

from pagefinder.corpus import PageCorpus
from pagefinder.types import RecognizedFragment

SYLLABLES = ["ka", "lo", "mi", "ne", "ru", "sa", "ti", "vo", "pe", "da",
             "go", "hu", "ji", "be", "fa", "zo", "ce", "wy", "qu", "xe"]


def word(i: int) -> str:
    """Distinct pseudo word for every i < 8000; neighbours share no prefix."""
    n = (i * 2731) % 8000  # 2731 is coprime with 8000
    a, r = divmod(n, 400)
    b, c = divmod(r, 20)
    return SYLLABLES[a] + SYLLABLES[b] + SYLLABLES[c]


def make_pages(
    n_pages: int = 12,
    frags_per_page: int = 4,
    words_per_frag: int = 12,
) -> list[tuple[str, list[str]]]:
    pages = []
    i = 0
    for p in range(n_pages):
        texts = []
        for _ in range(frags_per_page):
            words = [word(i + k) for k in range(words_per_frag)]
            i += words_per_frag
            texts.append(" ".join(words).capitalize() + ".")
        pages.append((f"p{p}", texts))
    return pages


class FakeRecognizer:
    """Maps an image name to the texts "seen" in it; unknown names fail."""

    def __init__(self, screens: dict[str, list[str]], delays: dict[str, float] | None = None):
        self.screens = screens
        self.delays = delays or {}

    def recognize(self, image, request_id: str = "") -> RecognizedFragment:
        name = str(image)
        if name in self.delays:
            time.sleep(self.delays[name])
        if name not in self.screens:
            return RecognizedFragment(source=name, error=f"unreadable_image: {name}")
        return RecognizedFragment.from_texts(self.screens[name], source=name)


@pytest.fixture
def pages() -> list[tuple[str, list[str]]]:
    return make_pages()


@pytest.fixture
def corpus(pages) -> PageCorpus:
    return PageCorpus.build(pages)


@pytest.fixture
def pages_factory() -> Callable[..., list[tuple[str, list[str]]]]:
    return make_pages


@pytest.fixture
def workspace_dir() -> Path:
    """Create temporary workspace."""
    tmp = tempfile.mkdtemp()
    yield Path(tmp)
    shutil.rmtree(tmp, ignore_errors=True)
