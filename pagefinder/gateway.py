"""Off-thread execution of resolution requests.

The interactive thread submits a typed request and gets back a request id.
A worker from a bounded pool runs the request against the resolver snapshot
captured at submission time and delivers exactly one completion, tagged with
the request id and the corpus id it ran against. Completions arrive in any
order. Opening another book swaps the resolver for new requests only;
in-flight work finishes against the book it started with, and callers use
`is_current` to drop completions that belong to a book no longer open.
"""
from __future__ import annotations

import logging
import queue
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Union

from .config import ResolverConfig, default_config
from .corpus import PageCorpus
from .delta import DeltaResolver
from .ocr import ImageSource, Recognizer
from .session import SessionPaths, record_error, record_result
from .types import DeltaResult, MatchResult, Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionMatchRequest:
    image: ImageSource
    hint: Position | None = None


@dataclass(frozen=True)
class DeltaMatchRequest:
    image_1: ImageSource
    image_2: ImageSource
    current_position: Position | None = None


@dataclass(frozen=True)
class PositionMatchCompleted:
    request_id: str
    corpus_id: str
    result: MatchResult

    kind = "position"


@dataclass(frozen=True)
class DeltaMatchCompleted:
    request_id: str
    corpus_id: str
    result: DeltaResult

    kind = "delta"


ResolveRequest = Union[PositionMatchRequest, DeltaMatchRequest]
Completion = Union[PositionMatchCompleted, DeltaMatchCompleted]


class ResultChannel:
    """Thread-safe mailbox the UI side polls for completions."""

    def __init__(self) -> None:
        self._queue: queue.Queue[Completion] = queue.Queue()

    def put(self, completion: Completion) -> None:
        self._queue.put(completion)

    def get(self, timeout: float | None = None) -> Completion:
        """Next completion; raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[Completion]:
        out: list[Completion] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out


def failed_completion(request_id: str, corpus_id: str, request: ResolveRequest, reason: str) -> Completion:
    if isinstance(request, DeltaMatchRequest):
        failure = MatchResult.failure(reason)
        return DeltaMatchCompleted(request_id, corpus_id, DeltaResult(first=failure, second=failure))
    return PositionMatchCompleted(request_id, corpus_id, MatchResult.failure(reason))


class JobGateway:
    def __init__(
        self,
        recognizer: Recognizer | None = None,
        config: ResolverConfig | None = None,
        deliver: Callable[[Completion], Any] | None = None,
        paths: SessionPaths | None = None,
    ):
        self.config = config or default_config()
        self.recognizer = recognizer
        self.paths = paths
        self.channel = ResultChannel()
        self._deliver = deliver or self.channel.put

        max_workers = max(1, int(self.config.gateway.get("max_workers", 2)))
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pagefinder")
        self._lock = threading.Lock()
        self._resolver: DeltaResolver | None = None
        self._closed = False

    # -- book lifecycle ------------------------------------------------------

    def open_book(self, corpus: PageCorpus) -> str:
        """Replace the resolver wholesale; returns the new corpus id."""
        resolver = DeltaResolver(
            corpus=corpus,
            recognizer=self.recognizer,
            matcher_cfg=self.config.matcher,
            delta_cfg=self.config.delta,
        )
        with self._lock:
            self._resolver = resolver
        logger.info("opened corpus %s (%d pages)", corpus.corpus_id[:12], corpus.page_count)
        return corpus.corpus_id

    def close_book(self) -> None:
        with self._lock:
            self._resolver = None

    @property
    def corpus_id(self) -> str:
        with self._lock:
            return self._resolver.corpus.corpus_id if self._resolver else ""

    def is_current(self, completion: Completion) -> bool:
        """False for completions computed against a book that is no longer open."""
        current = self.corpus_id
        return bool(current) and completion.corpus_id == current

    # -- requests ------------------------------------------------------------

    def submit(self, request: ResolveRequest) -> str:
        if not isinstance(request, (PositionMatchRequest, DeltaMatchRequest)):
            raise TypeError(f"Unknown request type: {type(request).__name__}")
        request_id = uuid.uuid4().hex
        with self._lock:
            if self._closed:
                raise RuntimeError("gateway is closed")
            snapshot = self._resolver
            self._executor.submit(self._run, request_id, request, snapshot)
        return request_id

    def _run(self, request_id: str, request: ResolveRequest, resolver: DeltaResolver | None) -> None:
        corpus_id = resolver.corpus.corpus_id if resolver else ""
        try:
            completion = self._execute(request_id, request, resolver)
        except Exception as e:
            logger.exception("request %s failed", request_id)
            self._record(record_error, request_id=request_id, stage="resolve", message=str(e))
            completion = failed_completion(request_id, corpus_id, request, f"internal_error: {e}")
        self._dispatch(completion)

    def _execute(self, request_id: str, request: ResolveRequest, resolver: DeltaResolver | None) -> Completion:
        if resolver is None or resolver.corpus.is_empty:
            corpus_id = resolver.corpus.corpus_id if resolver else ""
            return failed_completion(request_id, corpus_id, request, "empty_corpus")

        corpus_id = resolver.corpus.corpus_id
        if isinstance(request, DeltaMatchRequest):
            delta = resolver.resolve(
                request.image_1,
                request.image_2,
                request.current_position,
                request_id=request_id,
            )
            return DeltaMatchCompleted(request_id, corpus_id, delta)
        result = resolver.locate(request.image, hint=request.hint, request_id=request_id)
        return PositionMatchCompleted(request_id, corpus_id, result)

    def _dispatch(self, completion: Completion) -> None:
        self._record(
            record_result,
            request_id=completion.request_id,
            kind=completion.kind,
            corpus_id=completion.corpus_id,
            result=completion.result.to_dict(),
        )
        try:
            self._deliver(completion)
        except Exception as e:
            # The caller went away; the result is dropped, the worker lives on.
            logger.warning("dropping completion %s: %s", completion.request_id, e)
            self._record(record_error, request_id=completion.request_id, stage="deliver", message=str(e))

    def _record(self, write: Callable[..., None], **fields: Any) -> None:
        """Append a session record; an unwritable session never blocks delivery."""
        if self.paths is None:
            return
        try:
            write(self.paths, **fields)
        except OSError as e:
            logger.warning("could not write session record for %s: %s", fields.get("request_id"), e)

    # -- shutdown ------------------------------------------------------------

    def close(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> JobGateway:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
