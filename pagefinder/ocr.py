from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Protocol, Union

import cv2
import numpy as np
from PIL import Image, ImageEnhance

from .session import SessionPaths, record_error
from .types import OCRToken, RecognizedFragment
from .utils import load_json, write_json

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes, Image.Image]


class Recognizer(Protocol):
    def recognize(self, image: ImageSource, request_id: str = "") -> RecognizedFragment: ...


def _poly_to_xyxy(poly: list[list[float]] | list[tuple[float, float]]) -> tuple[int, int, int, int]:
    xs = [p[0] for p in poly]
    ys = [p[1] for p in poly]
    x0, y0, x1, y1 = min(xs), min(ys), max(xs), max(ys)
    return int(x0), int(y0), int(x1), int(y1)


def source_name(image: ImageSource) -> str:
    if isinstance(image, (str, Path)):
        return str(image)
    if isinstance(image, bytes):
        return f"<bytes:{len(image)}>"
    return "<image>"


def load_image(image: ImageSource) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, bytes):
        return Image.open(BytesIO(image)).convert("RGB")
    with Image.open(Path(image)) as img:
        return img.convert("RGB")


def is_likely_garbage(text: str) -> bool:
    # repeated single character (aaa, 111)
    if len(set(text)) == 1 and len(text) > 2:
        return True
    special_count = sum(1 for c in text if not c.isalnum() and not c.isspace())
    if len(text) > 0 and special_count / len(text) > 0.5:
        return True
    # runs of symbols (!!!, ???)
    if re.search(r"[^\w\s]{3,}", text):
        return True
    return False


def reading_order(tokens: list[OCRToken], row_height_px: int = 12) -> list[OCRToken]:
    """Top-to-bottom rows, left-to-right within a row.

    Rows are quantized on the box centre so a line whose boxes wobble by a
    few pixels still reads as one line. Tokens without a box keep their
    engine order after the boxed ones.
    """
    row_h = max(1, int(row_height_px))

    def key(item: tuple[int, OCRToken]) -> tuple:
        i, t = item
        if t.bbox_xyxy is None:
            return (1, 0, 0, i)
        x0, y0, x1, y1 = t.bbox_xyxy
        return (0, ((y0 + y1) // 2) // row_h, x0, i)

    return [t for _, t in sorted(enumerate(tokens), key=key)]


@dataclass
class OCRRecognizer:
    ocr_cfg: dict[str, Any] = field(default_factory=dict)
    paths: SessionPaths | None = None
    _ocr: Any | None = None

    def __post_init__(self) -> None:
        self.engine = str(self.ocr_cfg.get("engine", "auto"))  # auto, easyocr, paddleocr
        self.lang = str(self.ocr_cfg.get("lang", "en"))
        self.min_confidence = float(self.ocr_cfg.get("min_confidence", 0.3))
        self.use_preprocessing = bool(self.ocr_cfg.get("use_preprocessing", True))
        self.max_retries = max(1, int(self.ocr_cfg.get("max_retries", 2)))
        self.row_height_px = int(self.ocr_cfg.get("row_height_px", 12))

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """Binarize, denoise, sharpen; screenshots with tinted themes read better."""
        if not self.use_preprocessing:
            return image
        try:
            img_array = np.array(image.convert("RGB"))
            gray = cv2.cvtColor(img_array, cv2.COLOR_RGB2GRAY)
            binary = cv2.adaptiveThreshold(
                gray, 255,
                cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
                cv2.THRESH_BINARY,
                11, 2,
            )
            denoised = cv2.fastNlMeansDenoising(binary, None, 10, 7, 21)
            kernel = np.array([[-1, -1, -1], [-1, 9, -1], [-1, -1, -1]])
            sharpened = cv2.filter2D(denoised, -1, kernel)
            processed = ImageEnhance.Contrast(Image.fromarray(sharpened)).enhance(1.5)
            return processed.convert("RGB")
        except cv2.error as e:
            logger.warning("preprocessing failed, using original image: %s", e)
            return image

    def recognize(self, image: ImageSource, request_id: str = "") -> RecognizedFragment:
        """OCR one screenshot into reading-ordered tokens.

        Never raises: an unreadable image or a broken engine comes back as a
        fragment with `error` set.
        """
        source = source_name(image)
        try:
            pil_img = load_image(image)
        except (OSError, ValueError) as e:
            return self._failed(request_id, source, f"unreadable_image: {e}")

        last_error = ""
        for attempt in range(self.max_retries):
            processed = pil_img if attempt == 0 else self._preprocess_image(pil_img)
            try:
                raw = self._extract_with_engine(processed)
            except Exception as e:  # engines raise anything from import errors to CUDA errors
                last_error = str(e) or type(e).__name__
                logger.warning("ocr attempt %d failed for %s: %s", attempt + 1, source, last_error)
                continue
            tokens = self._clean(raw)
            if tokens:
                fragment = RecognizedFragment(tokens=tuple(tokens), source=source)
                self._write_raw(request_id, source, raw, attempt + 1)
                return fragment
            if attempt < self.max_retries - 1:
                time.sleep(0.1)

        if last_error:
            return self._failed(request_id, source, f"ocr_engine: {last_error}")
        self._write_raw(request_id, source, [], self.max_retries)
        return RecognizedFragment(tokens=(), source=source)

    def _failed(self, request_id: str, source: str, message: str) -> RecognizedFragment:
        if self.paths is not None:
            record_error(self.paths, request_id=request_id, stage="ocr", message=f"{source}: {message}")
        logger.warning("ocr failed for %s: %s", source, message)
        return RecognizedFragment(tokens=(), source=source, error=message)

    def _write_raw(self, request_id: str, source: str, raw: list[OCRToken], attempt: int) -> None:
        if self.paths is None or not request_id:
            return
        write_json(
            self.paths.ocr_dir / f"{request_id}_raw.json",
            {
                "request_id": request_id,
                "source": source,
                "attempt": attempt,
                "tokens": [
                    {"text": t.text, "confidence": t.confidence, "bbox_xyxy": list(t.bbox_xyxy) if t.bbox_xyxy else None}
                    for t in raw
                ],
            },
        )

    def _clean(self, raw: list[OCRToken]) -> list[OCRToken]:
        kept = []
        for t in raw:
            text = " ".join(t.text.split())
            if not text or t.confidence < self.min_confidence:
                continue
            if is_likely_garbage(text):
                continue
            kept.append(OCRToken(text=text, confidence=t.confidence, bbox_xyxy=t.bbox_xyxy))
        return reading_order(kept, self.row_height_px)

    def _extract_with_engine(self, image: Image.Image) -> list[OCRToken]:
        if self.engine == "auto":
            try:
                return self._extract_easyocr(image)
            except ImportError:
                return self._extract_paddleocr(image)
        if self.engine == "easyocr":
            return self._extract_easyocr(image)
        if self.engine == "paddleocr":
            return self._extract_paddleocr(image)
        raise ValueError(f"Unknown ocr engine: {self.engine}")

    def _extract_easyocr(self, image: Image.Image) -> list[OCRToken]:
        import easyocr

        if self._ocr is None or not isinstance(self._ocr, easyocr.Reader):
            self._ocr = easyocr.Reader(self.lang.split(","), gpu=False)

        results = self._ocr.readtext(np.array(image))
        return [
            OCRToken(text=str(text), confidence=float(confidence), bbox_xyxy=_poly_to_xyxy(bbox))
            for (bbox, text, confidence) in results
        ]

    def _extract_paddleocr(self, image: Image.Image) -> list[OCRToken]:
        from paddleocr import PaddleOCR

        if self._ocr is None or not hasattr(self._ocr, "ocr"):
            self._ocr = PaddleOCR(use_angle_cls=True, lang=self.lang, show_log=False)

        arr = np.array(image)
        try:
            result = self._ocr.ocr(arr, cls=True)
        except TypeError:
            result = self._ocr.ocr(arr)

        tokens = []
        for line in result or []:
            for item in line or []:
                poly, (text, score) = item
                tokens.append(OCRToken(text=str(text), confidence=float(score), bbox_xyxy=_poly_to_xyxy(poly)))
        return tokens


@dataclass
class MockedRecognizer:
    """Serves pre-recognized fragments from `<dir>/<image stem>.json`.

    Accepted file shapes: a list of strings, or an object with `texts`
    (list of strings) or `tokens` (list of {"text", "confidence", "bbox_xyxy"}).
    """

    mocked_dir: str | Path

    def recognize(self, image: ImageSource, request_id: str = "") -> RecognizedFragment:
        source = source_name(image)
        if not isinstance(image, (str, Path)):
            return RecognizedFragment(source=source, error="mocked_ocr_needs_path")

        stem = Path(image).stem
        base = Path(self.mocked_dir)
        candidates = [base / f"{stem}.json", base / f"{stem}.ocr.json"]
        for p in candidates:
            if not p.is_file():
                continue
            try:
                data = load_json(p)
            except (OSError, ValueError) as e:
                return RecognizedFragment(source=source, error=f"mocked_ocr_unparsable: {p.name}: {e}")
            return RecognizedFragment(tokens=tuple(_tokens_from_json(data)), source=source)
        return RecognizedFragment(source=source, error=f"mocked_ocr_missing: {stem}")


def _tokens_from_json(data: Any) -> list[OCRToken]:
    if isinstance(data, list):
        return [OCRToken(text=str(t), confidence=1.0) for t in data]
    if not isinstance(data, dict):
        return []
    if "texts" in data:
        return [OCRToken(text=str(t), confidence=1.0) for t in data.get("texts") or []]
    out = []
    for t in data.get("tokens") or []:
        bbox = t.get("bbox_xyxy")
        out.append(
            OCRToken(
                text=str(t.get("text") or ""),
                confidence=float(t.get("confidence", 1.0)),
                bbox_xyxy=tuple(int(v) for v in bbox) if bbox else None,
            )
        )
    return reading_order(out)
