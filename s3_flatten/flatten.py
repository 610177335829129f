"""
Concurrent flatten-copy pipeline.

    lister --listed(1000)--> fan_out --+--> tracker.listed ---------------> CompletionTracker
                                       |                                           ^
                                       +--> tasks(1) --> CopyWorkerPool --outcomes-+

The tracker owns the run state and is the only thread that touches it.
Its inputs share one FIFO, so a key is always registered as outstanding
before any worker can report an outcome for it.
"""
from __future__ import annotations
import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from tqdm import tqdm

from .channels import CLOSED, Channel, Selector, fan_out
from .core import copy_object, list_objects
from .errors import CopyError, KeyMappingError, ListError
from .utils import S3Path, gen_dst_key

log = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 128
DEFAULT_DELIMITER = "-"
LISTING_BUFFER = 1000  # about one list_objects_v2 page of lookahead
STAT_INTERVAL = 10.0

LISTED = "listed"
OUTCOMES = "outcomes"
FAULTS = "faults"


@dataclass(frozen=True)
class CopyOutcome:
    src_key: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RunStatus(enum.Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunState:
    start_time: float
    outstanding: Set[str] = field(default_factory=set)
    listing_closed: bool = False
    completed_count: int = 0
    listed_count: int = 0


class CompletionTracker:
    """
    Decides when a run is done. Success needs the listing to be closed and
    every listed key copied; the first failed outcome ends the run at once.
    """

    def __init__(
        self,
        selector: Selector,
        stat_interval: float = STAT_INTERVAL,
        progress: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if stat_interval <= 0:
            raise ValueError("stat_interval must be > 0")
        self.selector = selector
        self.listed = selector.channel(LISTED)
        self.outcomes = selector.channel(OUTCOMES)
        self.faults = selector.channel(FAULTS)
        self.stat_interval = stat_interval
        self._clock = clock
        self.state = RunState(start_time=clock())
        self.status = RunStatus.RUNNING
        self.error: Optional[BaseException] = None
        self.failed_key: Optional[str] = None
        self._bar = tqdm(total=0, desc="Copy", unit="obj") if progress else None

    @property
    def elapsed(self) -> float:
        return self._clock() - self.state.start_time

    def _finish_if_done(self) -> None:
        if self.state.listing_closed and not self.state.outstanding:
            self.status = RunStatus.SUCCEEDED

    def _fail(self, error: BaseException, key: Optional[str] = None) -> None:
        self.status = RunStatus.FAILED
        self.error = error
        self.failed_key = key

    def on_listed(self, key: str) -> None:
        if self.status is not RunStatus.RUNNING:
            return
        self.state.outstanding.add(key)
        self.state.listed_count += 1
        if self._bar is not None:
            self._bar.total = self.state.listed_count

    def on_listing_closed(self) -> None:
        if self.status is not RunStatus.RUNNING:
            return
        self.state.listing_closed = True
        log.debug("Listing finished: %d keys", self.state.listed_count)
        self._finish_if_done()

    def on_outcome(self, outcome: CopyOutcome) -> None:
        if self.status is not RunStatus.RUNNING:
            return
        if not outcome.ok:
            log.error("Copy failed: %s: %s", outcome.src_key, outcome.error)
            self._fail(outcome.error, outcome.src_key)
            return
        self.state.outstanding.discard(outcome.src_key)
        self.state.completed_count += 1
        if self._bar is not None:
            self._bar.update(1)
        self._finish_if_done()

    def on_fault(self, error: BaseException) -> None:
        if self.status is not RunStatus.RUNNING:
            return
        log.error("Listing failed: %s", error)
        self._fail(error)

    def log_stat(self) -> None:
        elapsed = self.elapsed
        speed = self.state.completed_count / elapsed if elapsed > 0 else 0.0
        log.info("Copied %d items in %.1fs, %.2f items/sec", self.state.completed_count, elapsed, speed)

    def _dispatch(self, name: str, item: Any) -> None:
        if name == LISTED:
            if item is CLOSED:
                self.on_listing_closed()
            else:
                self.on_listed(item)
        elif name == OUTCOMES:
            self.on_outcome(item)
        elif name == FAULTS:
            self.on_fault(item)

    def watch(self) -> RunStatus:
        """Block until the run succeeds or fails, logging throughput on the way."""
        next_stat = self.state.start_time + self.stat_interval
        try:
            while self.status is RunStatus.RUNNING:
                timeout = next_stat - self._clock()
                if timeout <= 0:
                    self.log_stat()
                    next_stat = self._clock() + self.stat_interval
                    continue
                try:
                    name, item = self.selector.select(timeout=timeout)
                except queue.Empty:
                    continue
                self._dispatch(name, item)
        finally:
            self.log_stat()
            if self._bar is not None:
                self._bar.close()
        return self.status


class CopyWorkerPool:
    """Fixed set of threads copying keys from `tasks`, one outcome per key."""

    def __init__(
        self,
        s3_client,
        src: S3Path,
        dst: S3Path,
        delimiter: str,
        tasks: Channel,
        outcomes: Channel,
        concurrency: int = DEFAULT_CONCURRENCY,
        dry_run: bool = False,
        cancel: Optional[threading.Event] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.s3_client = s3_client
        self.src = src
        self.dst = dst
        self.delimiter = delimiter
        self.tasks = tasks
        self.outcomes = outcomes
        self.concurrency = concurrency
        self.dry_run = dry_run
        self.cancel = cancel or threading.Event()
        self.workers: List[threading.Thread] = []

    def start(self) -> None:
        for i in range(self.concurrency):
            t = threading.Thread(target=self._work, name=f"copy-{i}", daemon=True)
            t.start()
            self.workers.append(t)

    def join(self, timeout: Optional[float] = None) -> None:
        for t in self.workers:
            t.join(timeout)

    def _work(self) -> None:
        for key in self.tasks:
            # in-flight copies run to completion, new keys are not started
            if self.cancel.is_set():
                return
            try:
                outcome = self.copy_one(key)
            except Exception as e:
                outcome = CopyOutcome(key, CopyError(f"{key}: {e}", key=key))
            self.outcomes.put(outcome)

    def copy_one(self, src_key: str) -> CopyOutcome:
        try:
            dst_key = gen_dst_key(src_key, self.src.prefix, self.dst.prefix, self.delimiter)
        except KeyMappingError as e:
            return CopyOutcome(src_key, e)

        if self.dry_run:
            log.info("[DRY-RUN] %s -> s3://%s/%s", src_key, self.dst.bucket, dst_key)
            return CopyOutcome(src_key)

        log.debug("Starting copy: %s", src_key)
        started = time.monotonic()
        try:
            copy_object(self.s3_client, self.src.bucket, src_key, self.dst.bucket, dst_key)
        except CopyError as e:
            return CopyOutcome(src_key, e)
        except Exception as e:
            return CopyOutcome(src_key, CopyError(f"{src_key} -> {dst_key}: {e}", key=src_key))
        log.debug("Finished copy: %s (%.3fs)", src_key, time.monotonic() - started)
        return CopyOutcome(src_key)


def _list_into(s3_client, src: S3Path, suffix: str, listed: Channel, faults: Channel, cancel: threading.Event) -> None:
    try:
        for key in list_objects(s3_client, src.bucket, prefix=src.prefix, suffix=suffix):
            if cancel.is_set():
                break
            listed.put(key)
    except Exception as e:
        faults.put(e if isinstance(e, ListError) else ListError(f"Failed to list {src}: {e}"))
    finally:
        listed.close()


def flatten_prefix(
    s3_client,
    src: S3Path,
    dst: S3Path,
    delimiter: str = DEFAULT_DELIMITER,
    suffix: str = "",
    concurrency: int = DEFAULT_CONCURRENCY,
    progress: bool = False,
    dry_run: bool = False,
    stat_interval: float = STAT_INTERVAL,
) -> Dict[str, Any]:
    """
    Copy every object under src (ending with suffix) to a flat key under dst.
    Returns a summary on success; raises the first ListError, CopyError or
    KeyMappingError otherwise.
    """
    log.debug("Source path: %s", src)
    log.debug("Destination path: %s", dst)
    log.debug("Delimiter: %r Suffix: %r Concurrency: %d", delimiter, suffix, concurrency)

    cancel = threading.Event()
    tracker = CompletionTracker(Selector(), stat_interval=stat_interval, progress=progress)
    listed = Channel(maxsize=LISTING_BUFFER)
    # one key in hand at a time, so a full listing buffer stalls the lister
    _, tasks = fan_out(listed, first=tracker.listed, second=Channel(maxsize=1))

    pool = CopyWorkerPool(
        s3_client,
        src,
        dst,
        delimiter,
        tasks=tasks,
        outcomes=tracker.outcomes,
        concurrency=concurrency,
        dry_run=dry_run,
        cancel=cancel,
    )
    lister = threading.Thread(
        target=_list_into,
        args=(s3_client, src, suffix, listed, tracker.faults, cancel),
        name="lister",
        daemon=True,
    )
    lister.start()
    pool.start()

    try:
        status = tracker.watch()
    finally:
        cancel.set()

    if status is RunStatus.FAILED:
        raise tracker.error
    pool.join()

    return {
        "copied": tracker.state.completed_count,
        "stats": {
            "source": str(src),
            "destination": str(dst),
            "delimiter": delimiter,
            "suffix": suffix,
            "concurrency": concurrency,
            "dry_run": dry_run,
            "listed": tracker.state.listed_count,
            "elapsed": tracker.elapsed,
        },
    }
