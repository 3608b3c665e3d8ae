"""Shared fixtures for TUI tests."""

from __future__ import annotations

import threading
from concurrent.futures import Future, wait
from typing import Any, Callable, Generator

import pytest

from sshm.tui.background import BackgroundRunner
from sshm.tui.models.field import Field, FieldKind
from sshm.tui.models.visibility import visible_when_equals


class QueuedRunner(BackgroundRunner):
    """BackgroundRunner whose UI-thread callbacks wait in a queue.

    ``drain()`` waits for the workers and then runs the queued callbacks on
    the test thread, the way the event loop would. Clearing ``gate`` holds
    submitted work until the next ``drain()``.
    """

    def __init__(self) -> None:
        self.queue: list[Callable[[], None]] = []
        self.futures: list[Future] = []
        self.gate = threading.Event()
        self.gate.set()
        super().__init__(dispatch=self.queue.append)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        def gated() -> Any:
            self.gate.wait()
            return fn(*args, **kwargs)

        future = super().submit(gated)
        self.futures.append(future)
        return future

    def wait_for_workers(self) -> None:
        self.gate.set()
        wait(self.futures)
        # Done callbacks run on the worker threads; joining them flushes those
        self.shutdown(wait=True)

    def drain(self) -> None:
        self.wait_for_workers()
        while self.queue:
            self.queue.pop(0)()


@pytest.fixture
def queued_runner() -> Generator[QueuedRunner, None, None]:
    runner = QueuedRunner()
    yield runner
    runner.gate.set()
    runner.shutdown(wait=True)


@pytest.fixture
def auth_fields() -> list[Field]:
    """Fields for a small login form: auth type switches password/key."""
    return [
        Field("name", required=True),
        Field("auth_type", kind=FieldKind.ENUM, options=["key", "password"]),
        Field(
            "password",
            kind=FieldKind.SECRET,
            visible_when=visible_when_equals("auth_type", "password"),
        ),
        Field(
            "key_path",
            visible_when=visible_when_equals("auth_type", "key"),
        ),
    ]
