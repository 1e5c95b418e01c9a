from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .corpus import PageCorpus
from .utils import load_json

PAGE_BREAK = "\f"


@dataclass(frozen=True)
class PageTextProvider:
    input_path: str
    input_type: str  # json|pdf|text

    def get_page_texts(self) -> Iterator[tuple[str, list[str]]]:
        if self.input_type == "json":
            yield from self._iter_json_pages()
        elif self.input_type == "pdf":
            yield from self._iter_pdf_pages()
        elif self.input_type == "text":
            yield from self._iter_text_pages()
        else:
            raise ValueError(f"Unknown input_type: {self.input_type}")

    def build_corpus(self) -> PageCorpus:
        return PageCorpus.build(self.get_page_texts())

    def _iter_json_pages(self) -> Iterator[tuple[str, list[str]]]:
        """`[{"page_id": ..., "texts": [...]}, ...]` or `{"pages": [...]}`."""
        data = load_json(self.input_path)
        pages = data.get("pages", []) if isinstance(data, dict) else data
        if not isinstance(pages, list):
            raise ValueError("page texts json must be a list or an object with pages")
        for i, entry in enumerate(pages):
            if not isinstance(entry, dict):
                raise ValueError(f"invalid page[{i}]: not an object")
            page_id = entry.get("page_id", f"page_{i + 1:03d}")
            texts = entry.get("texts") or []
            yield str(page_id), [str(t) for t in texts]

    def _iter_pdf_pages(self) -> Iterator[tuple[str, list[str]]]:
        try:
            import fitz  # PyMuPDF
        except Exception as e:  # pragma: no cover
            raise RuntimeError("PyMuPDF is required for --type pdf. Install pymupdf.") from e

        pdf_path = Path(self.input_path)
        with fitz.open(pdf_path) as doc:
            for i in range(doc.page_count):
                page = doc.load_page(i)
                # (x0, y0, x1, y1, text, block_no, block_type); type 0 is text
                blocks = [b for b in page.get_text("blocks", sort=True) if b[6] == 0]
                texts = [" ".join(str(b[4]).split()) for b in blocks]
                yield f"page_{i + 1:03d}", [t for t in texts if t]

    def _iter_text_pages(self) -> Iterator[tuple[str, list[str]]]:
        """Form feed separates pages, blank lines separate fragments."""
        raw = Path(self.input_path).read_text(encoding="utf-8")
        for i, page in enumerate(raw.split(PAGE_BREAK)):
            fragments = []
            for block in page.replace("\r\n", "\n").split("\n\n"):
                text = " ".join(block.split())
                if text:
                    fragments.append(text)
            yield f"page_{i + 1:03d}", fragments
