from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from .config import load_config
from .corpus import PageCorpus
from .delta import DeltaResolver
from .ocr import MockedRecognizer, OCRRecognizer
from .page_texts import PageTextProvider
from .session import create_session_dirs, new_session_id
from .types import Position
from .utils import write_json


def _add_corpus_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--input", required=True, help="Page texts (json file, pdf file or form-feed separated text file)")
    p.add_argument("--type", required=True, choices=["json", "pdf", "text"], help="Input type")


def _add_resolve_args(p: argparse.ArgumentParser) -> None:
    _add_corpus_args(p)
    p.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")
    p.add_argument("--workspace", default=None, help="Workspace root for session records (optional)")
    p.add_argument("--lang", default=None, help="OCR language code(s), comma separated (e.g. en)")
    p.add_argument("--page-id", default=None, help="Current page id (anchor)")
    p.add_argument("--offset", type=int, default=0, help="Current fragment offset within --page-id")
    p.add_argument(
        "--use-mocked-ocr",
        default=None,
        help="Directory containing pre-recognized <image stem>.json files (skips real OCR)",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pagefinder")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    index = sub.add_parser("index", help="Build the page corpus and print its summary")
    _add_corpus_args(index)
    index.add_argument("--out", default=None, help="Also write the summary to this json file")

    locate = sub.add_parser("locate", help="Find the reading position shown in a screenshot")
    _add_resolve_args(locate)
    locate.add_argument("--image", required=True, help="Screenshot path")

    delta = sub.add_parser("delta", help="Distance and direction between two screenshots")
    _add_resolve_args(delta)
    delta.add_argument("--image-1", required=True, help="First screenshot path")
    delta.add_argument("--image-2", required=True, help="Second screenshot path")

    return p


def _build_corpus(args: argparse.Namespace) -> PageCorpus:
    return PageTextProvider(input_path=args.input, input_type=args.type).build_corpus()


def _build_resolver(args: argparse.Namespace, corpus: PageCorpus) -> DeltaResolver:
    cfg = load_config(args.config)
    paths = create_session_dirs(args.workspace, new_session_id()) if args.workspace else None
    if args.use_mocked_ocr:
        recognizer: Any = MockedRecognizer(args.use_mocked_ocr)
    else:
        ocr_cfg = dict(cfg.ocr)
        if args.lang:
            ocr_cfg["lang"] = args.lang
        recognizer = OCRRecognizer(ocr_cfg=ocr_cfg, paths=paths)
    return DeltaResolver(corpus=corpus, recognizer=recognizer, matcher_cfg=cfg.matcher, delta_cfg=cfg.delta)


def _current_position(args: argparse.Namespace, corpus: PageCorpus) -> Position | None:
    if args.page_id is None:
        return None
    return corpus.position(args.page_id, args.offset)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def cmd_index(args: argparse.Namespace) -> int:
    corpus = _build_corpus(args)
    summary = corpus.summary()
    if args.out:
        write_json(args.out, summary)
    _print_json(summary)
    return 0


def cmd_locate(args: argparse.Namespace) -> int:
    corpus = _build_corpus(args)
    resolver = _build_resolver(args, corpus)
    result = resolver.locate(args.image, hint=_current_position(args, corpus))
    out = result.to_dict()
    if result.is_confident:
        out["progress"] = round(corpus.progress(result.position), 4)
    _print_json(out)
    return 0 if result.is_confident else 1


def cmd_delta(args: argparse.Namespace) -> int:
    corpus = _build_corpus(args)
    resolver = _build_resolver(args, corpus)
    result = resolver.resolve(args.image_1, args.image_2, _current_position(args, corpus))
    _print_json(result.to_dict())
    return 0 if result.is_complete else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "index":
            return cmd_index(args)
        if args.command == "locate":
            return cmd_locate(args)
        if args.command == "delta":
            return cmd_delta(args)
    except (OSError, ValueError, KeyError) as e:
        print(f"{args.command}_failed: {e}")
        return 2

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
