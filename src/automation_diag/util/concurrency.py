from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from threading import Event
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from .errors import CollectionCancelled

T = TypeVar("T")
R = TypeVar("R")


def check_cancelled(cancel: Optional[Event], context: str = "") -> None:
    if cancel is not None and cancel.is_set():
        raise CollectionCancelled(f"Cancelled before {context}" if context else "Cancelled")


def parallel_map_ordered(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int,
    *,
    cancel: Optional[Event] = None,
) -> List[R]:
    """
    Run func over items on a thread pool and return the results in input order.

    At most max_workers calls are in flight at any time. The first worker
    exception is re-raised once queued calls are cancelled.

    When cancel is set no further items are started; calls already running
    finish and CollectionCancelled is raised.
    """
    width = max(1, int(max_workers))
    source = iter(enumerate(items))
    finished: Dict[int, R] = {}
    running: Dict[Future[R], int] = {}
    stopped = False

    def _fill(executor: ThreadPoolExecutor) -> None:
        nonlocal stopped
        while not stopped and len(running) < width:
            entry = next(source, None)
            if entry is None:
                return
            if cancel is not None and cancel.is_set():
                stopped = True
                return
            index, item = entry
            running[executor.submit(func, item)] = index

    with ThreadPoolExecutor(max_workers=width) as executor:
        _fill(executor)
        while running:
            done, _ = wait(list(running), return_when=FIRST_COMPLETED)
            for fut in done:
                index = running.pop(fut)
                try:
                    finished[index] = fut.result()
                except BaseException:
                    for queued in running:
                        queued.cancel()
                    raise
            _fill(executor)

    if stopped:
        raise CollectionCancelled(f"Cancelled with {len(finished)} item(s) completed")
    return [finished[i] for i in sorted(finished)]
