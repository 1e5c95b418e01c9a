"""OCR adapter: cleaning, reading order, failure reporting and mocked OCR."""
from __future__ import annotations

import json
from io import BytesIO

import pytest
from PIL import Image

from pagefinder.ocr import MockedRecognizer, OCRRecognizer, is_likely_garbage, reading_order
from pagefinder.session import create_session_dirs
from pagefinder.types import OCRToken
from pagefinder.utils import load_json, load_jsonl


class ScriptedRecognizer(OCRRecognizer):
    """OCRRecognizer whose engine returns canned tokens (or raises)."""

    def __init__(self, raw=None, error: Exception | None = None, **kwargs):
        super().__init__(**kwargs)
        self.raw = raw or []
        self.error = error
        self.calls = 0

    def _extract_with_engine(self, image):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.raw)


def _png_bytes() -> bytes:
    buf = BytesIO()
    Image.new("RGB", (40, 20), "white").save(buf, format="PNG")
    return buf.getvalue()


class TestReadingOrder:
    def test_rows_then_columns(self):
        tokens = [
            OCRToken("world", 0.9, (60, 10, 100, 22)),
            OCRToken("second", 0.9, (0, 40, 50, 52)),
            OCRToken("hello", 0.9, (0, 12, 50, 24)),
        ]
        assert [t.text for t in reading_order(tokens)] == ["hello", "world", "second"]

    def test_unboxed_tokens_go_last_in_engine_order(self):
        tokens = [
            OCRToken("b", 0.9),
            OCRToken("boxed", 0.9, (0, 0, 10, 10)),
            OCRToken("a", 0.9),
        ]
        assert [t.text for t in reading_order(tokens)] == ["boxed", "b", "a"]


class TestGarbageFilter:
    @pytest.mark.parametrize("text", ["aaaa", "1111", "!!!", "#$%&", "ab???"])
    def test_garbage(self, text):
        assert is_likely_garbage(text)

    @pytest.mark.parametrize("text", ["Hello.", "don't", "42", "well-known"])
    def test_text(self, text):
        assert not is_likely_garbage(text)


class TestOCRRecognizer:
    def test_unreadable_path(self, workspace_dir):
        paths = create_session_dirs(workspace_dir, "ocr1")
        rec = OCRRecognizer(paths=paths)
        frag = rec.recognize(workspace_dir / "nope.png", request_id="r1")
        assert frag.failed
        assert frag.error.startswith("unreadable_image")
        errors = load_jsonl(paths.errors_jsonl)
        assert errors[0]["stage"] == "ocr"
        assert errors[0]["request_id"] == "r1"

    def test_unreadable_bytes(self):
        frag = OCRRecognizer().recognize(b"not an image")
        assert frag.error.startswith("unreadable_image")
        assert frag.source == "<bytes:12>"

    def test_cleans_and_orders(self, workspace_dir):
        paths = create_session_dirs(workspace_dir, "ocr2")
        raw = [
            OCRToken("second  line", 0.9, (0, 40, 80, 52)),
            OCRToken("faint", 0.1, (0, 10, 30, 22)),
            OCRToken("|||", 0.95, (40, 10, 50, 22)),
            OCRToken("First", 0.8, (0, 12, 30, 24)),
        ]
        rec = ScriptedRecognizer(raw=raw, ocr_cfg={"min_confidence": 0.3}, paths=paths)
        frag = rec.recognize(Image.new("RGB", (100, 60), "white"), request_id="r2")
        assert not frag.failed
        assert frag.texts == ["First", "second line"]
        dumped = load_json(paths.ocr_dir / "r2_raw.json")
        assert dumped["request_id"] == "r2"
        assert len(dumped["tokens"]) == 4

    def test_accepts_bytes(self):
        rec = ScriptedRecognizer(raw=[OCRToken("text", 0.9)])
        assert rec.recognize(_png_bytes()).texts == ["text"]

    def test_engine_failure(self):
        rec = ScriptedRecognizer(
            error=RuntimeError("boom"),
            ocr_cfg={"use_preprocessing": False, "max_retries": 2},
        )
        frag = rec.recognize(Image.new("RGB", (10, 10)))
        assert frag.failed
        assert frag.error == "ocr_engine: boom"
        assert rec.calls == 2

    def test_nothing_recognized_is_not_an_error(self):
        rec = ScriptedRecognizer(raw=[], ocr_cfg={"use_preprocessing": False, "max_retries": 1})
        frag = rec.recognize(Image.new("RGB", (10, 10)))
        assert not frag.failed
        assert frag.tokens == ()

    def test_unknown_engine(self):
        rec = OCRRecognizer(ocr_cfg={"engine": "tesseract", "use_preprocessing": False, "max_retries": 1})
        frag = rec.recognize(Image.new("RGB", (10, 10)))
        assert frag.error.startswith("ocr_engine: Unknown ocr engine")


class TestMockedRecognizer:
    def test_list_of_texts(self, workspace_dir):
        (workspace_dir / "shot1.json").write_text(json.dumps(["one two", "three"]), encoding="utf-8")
        frag = MockedRecognizer(workspace_dir).recognize("screens/shot1.png")
        assert frag.texts == ["one two", "three"]
        assert frag.source == "screens/shot1.png"

    def test_texts_object(self, workspace_dir):
        (workspace_dir / "shot2.ocr.json").write_text(json.dumps({"texts": ["alpha"]}), encoding="utf-8")
        assert MockedRecognizer(workspace_dir).recognize("shot2.jpg").texts == ["alpha"]

    def test_tokens_object_is_reordered(self, workspace_dir):
        data = {"tokens": [
            {"text": "below", "confidence": 0.8, "bbox_xyxy": [0, 50, 40, 62]},
            {"text": "above", "bbox_xyxy": [0, 10, 40, 22]},
        ]}
        (workspace_dir / "shot3.json").write_text(json.dumps(data), encoding="utf-8")
        frag = MockedRecognizer(workspace_dir).recognize("shot3.png")
        assert frag.texts == ["above", "below"]
        assert frag.tokens[1].confidence == pytest.approx(0.8)

    def test_missing(self, workspace_dir):
        frag = MockedRecognizer(workspace_dir).recognize("absent.png")
        assert frag.error == "mocked_ocr_missing: absent"

    def test_unparsable(self, workspace_dir):
        (workspace_dir / "bad.json").write_text("{not json", encoding="utf-8")
        frag = MockedRecognizer(workspace_dir).recognize("bad.png")
        assert frag.error.startswith("mocked_ocr_unparsable")

    def test_needs_path(self, workspace_dir):
        frag = MockedRecognizer(workspace_dir).recognize(_png_bytes())
        assert frag.error == "mocked_ocr_needs_path"
