"""
Small helpers shared across the SDK: cancellation, clock and bounded fan-out.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar

from .exceptions import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """
    Cooperative cancellation flag.

    Long-running operations call ``raise_if_cancelled`` between pages and
    between candidates; an in-flight HTTP call is not interrupted.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """No-op when no token was supplied"""
    if token is not None:
        token.raise_if_cancelled()


def now_unix() -> float:
    """Current time in seconds since the epoch"""
    return time.time()


def run_bounded(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int = 1,
    cancel_token: Optional[CancellationToken] = None,
) -> List[R]:
    """
    Apply ``func`` to every item, at most ``max_workers`` at a time.

    Results come back in input order whatever the completion order. With
    ``max_workers`` of 1 everything runs on the calling thread. The first
    exception raised by ``func`` propagates after pending work is cancelled.

    Args:
        func: Callable applied to each item
        items: Inputs
        max_workers: Upper bound on concurrent calls
        cancel_token: Checked before each item is started

    Returns:
        List of results aligned with ``items``

    Raises:
        OperationCancelledError: If the token is cancelled
    """
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        results = []
        for item in items:
            check_cancelled(cancel_token)
            results.append(func(item))
        return results

    def guarded(item: T) -> R:
        check_cancelled(cancel_token)
        return func(item)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(guarded, item) for item in items]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise
