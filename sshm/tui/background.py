"""Background work for the TUI.

Long-running operations (import, export, creating tmux sessions) run on a
small thread pool. Their results are handed back to the UI thread through a
``dispatch`` callable; in the application that is the event loop's
``call_soon_threadsafe``. Each piece of work carries a ``LivenessToken``
owned by whoever started it. Once the owner is torn down the token is
revoked and late results are dropped instead of touching dead UI state.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)

__all__ = ["BackgroundRunner", "LivenessToken"]

Dispatch = Callable[[Callable[[], None]], None]


class LivenessToken:
    """Flag shared between an owner and the work it started."""

    def __init__(self) -> None:
        self._revoked = threading.Event()

    @property
    def alive(self) -> bool:
        return not self._revoked.is_set()

    def revoke(self) -> None:
        self._revoked.set()

    def __repr__(self) -> str:
        return f"LivenessToken(alive={self.alive})"


def _call_directly(callback: Callable[[], None]) -> None:
    callback()


class BackgroundRunner:
    """Thread pool plus result marshalling back to the UI thread.

    Args:
        dispatch: Runs a callable on the UI thread (defaults to calling it
            immediately on the worker thread, which is what tests want)
        max_workers: Maximum number of worker threads
    """

    def __init__(self, dispatch: Dispatch | None = None, max_workers: int = 2) -> None:
        if max_workers <= 0:
            max_workers = 1
        self.dispatch: Dispatch = dispatch or _call_directly
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sshm-worker"
        )

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> "Future[Any]":
        return self._executor.submit(fn, *args, **kwargs)

    def run(
        self,
        fn: Callable[[], Any],
        on_done: Callable[["Future[Any]"], None],
        token: LivenessToken,
    ) -> "Future[Any]":
        """Run ``fn`` in the background and deliver the finished future.

        ``on_done`` runs on the UI thread, and only while ``token`` is alive.
        """
        future = self.submit(fn)

        def deliver() -> None:
            if not token.alive:
                logger.debug("Dropping result of %s: owner is gone", getattr(fn, "__name__", fn))
                return
            on_done(future)

        def done(_: "Future[Any]") -> None:
            if token.alive:
                self.dispatch(deliver)

        future.add_done_callback(done)
        return future

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
