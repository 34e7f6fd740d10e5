"""
Bounded fan-out/fan-in helpers.

Every pipeline stage starts a fresh pool of at most `max_workers` threads,
submits its pre-computed work items and waits for all of them before
returning (barrier). Results are collected in the calling thread.
"""

import concurrent.futures
import math
import threading
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def chunk_evenly(items: Sequence[T], chunk_count: int) -> List[List[T]]:
    """Split items into at most chunk_count contiguous chunks.

    Chunk size is ceil(len(items) / chunk_count), so the last chunk may be
    shorter and fewer than chunk_count chunks come back for small inputs.
    """
    if chunk_count < 1:
        raise ValueError(f"chunk_count must be a positive integer, got: {chunk_count}")
    if not items:
        return []
    size = math.ceil(len(items) / chunk_count)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class TaskOutcome(Generic[T, R]):
    """Settled result of one work item"""

    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_settled(func: Callable[[T], R], items: Sequence[T], max_workers: int,
                on_progress: Optional[Callable[[int, int], None]] = None,
                cancel_event: Optional[threading.Event] = None) -> List[TaskOutcome[T, R]]:
    """Run func over items on a bounded pool and wait for every task.

    Exceptions are captured per item instead of aborting the batch. The
    order of the returned outcomes is unspecified. on_progress, when given,
    is called in the calling thread with (completed, total) after each task.

    On KeyboardInterrupt (or any other BaseException reaching the calling
    thread) tasks not started yet are cancelled, cancel_event is set so
    running tasks can stop between requests, and the exception propagates
    without waiting for the pool.
    """
    if not items:
        return []

    outcomes: List[TaskOutcome[T, R]] = []
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items))))
    future_to_item = {}
    try:
        for item in items:
            future_to_item[executor.submit(func, item)] = item
        for future in concurrent.futures.as_completed(future_to_item):
            item = future_to_item[future]
            try:
                outcomes.append(TaskOutcome(item=item, result=future.result()))
            except Exception as e:
                outcomes.append(TaskOutcome(item=item, error=e))
            if on_progress is not None:
                on_progress(len(outcomes), len(items))
    except BaseException:
        if cancel_event is not None:
            cancel_event.set()
        for future in future_to_item:
            future.cancel()
        executor.shutdown(wait=False)
        raise
    executor.shutdown(wait=True)
    return outcomes


def run_all(func: Callable[[T], R], items: Sequence[T], max_workers: int,
            on_progress: Optional[Callable[[int, int], None]] = None,
            cancel_event: Optional[threading.Event] = None) -> List[R]:
    """Like run_settled but re-raises the first failure once all tasks are done"""
    outcomes = run_settled(func, items, max_workers, on_progress=on_progress, cancel_event=cancel_event)
    for outcome in outcomes:
        if not outcome.ok:
            raise outcome.error
    return [outcome.result for outcome in outcomes]
