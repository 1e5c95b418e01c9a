from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .utils import append_jsonl, ensure_dir, utc_now_iso


@dataclass
class SessionPaths:
    session_dir: Path
    ocr_dir: Path
    errors_jsonl: Path
    results_jsonl: Path


def create_session_dirs(workspace: str | Path, session_id: str) -> SessionPaths:
    session_dir = Path(workspace) / "sessions" / session_id
    ocr_dir = session_dir / "ocr"
    for p in [session_dir, ocr_dir]:
        ensure_dir(p)

    paths = SessionPaths(
        session_dir=session_dir,
        ocr_dir=ocr_dir,
        errors_jsonl=session_dir / "errors.jsonl",
        results_jsonl=session_dir / "results.jsonl",
    )
    # Always present, even when nothing goes wrong.
    paths.errors_jsonl.touch(exist_ok=True)
    paths.results_jsonl.touch(exist_ok=True)
    return paths


def new_session_id() -> str:
    """YYYY-MM-DD/HH-MM-SS__<shortid>"""
    now = datetime.now(timezone.utc)
    return f"{now.strftime('%Y-%m-%d')}/{now.strftime('%H-%M-%S')}__{uuid.uuid4().hex[:8]}"


def record_error(paths: SessionPaths, request_id: str, stage: str, message: str) -> None:
    append_jsonl(
        paths.errors_jsonl,
        {"at": utc_now_iso(), "request_id": request_id, "stage": stage, "message": message},
    )


def record_result(paths: SessionPaths, request_id: str, kind: str, corpus_id: str, result: dict[str, Any]) -> None:
    append_jsonl(
        paths.results_jsonl,
        {"at": utc_now_iso(), "request_id": request_id, "kind": kind, "corpus_id": corpus_id, "result": result},
    )
