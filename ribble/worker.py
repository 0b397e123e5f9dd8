"""Background work dispatch: short and long job queues feeding the console."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)

MAX_SHORT_JOBS = 16
MAX_LONG_JOBS = 2 * MAX_SHORT_JOBS


class RibbleError(Exception):
    """An application error, tagged with a broad category."""

    def __init__(self, message: str, category: str = "core") -> None:
        super().__init__(message)
        self.message = message
        self.category = category

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ConsoleMessage:
    """A message for the console: a status line or an error."""

    content: Union[str, RibbleError]

    @property
    def is_error(self) -> bool:
        return isinstance(self.content, RibbleError)

    @classmethod
    def status(cls, text: str) -> "ConsoleMessage":
        return cls(text)

    @classmethod
    def error(cls, error: RibbleError) -> "ConsoleMessage":
        return cls(error)


class WorkKind(Enum):
    """Which queue a request goes to, or a request to stop."""

    SHORT = "short"
    LONG = "long"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class WorkRequest:
    """A running job handed to the worker engine to be awaited."""

    kind: WorkKind
    job: Optional["Future[Any]"] = field(default=None)

    @classmethod
    def short(cls, job: "Future[Any]") -> "WorkRequest":
        return cls(WorkKind.SHORT, job)

    @classmethod
    def long(cls, job: "Future[Any]") -> "WorkRequest":
        return cls(WorkKind.LONG, job)

    @classmethod
    def shutdown(cls) -> "WorkRequest":
        return cls(WorkKind.SHUTDOWN)


def spawn(func: Callable[..., Any], *args: Any) -> "Future[Any]":
    """Run func(*args) on a new thread and return a future for its outcome."""
    future: "Future[Any]" = Future()
    future.set_running_or_notify_cancel()

    def _run() -> None:
        try:
            result = func(*args)
        except BaseException as exc:  # the future carries any failure to the joiner
            future.set_exception(exc)
        else:
            future.set_result(result)

    threading.Thread(target=_run, daemon=True).start()
    return future


_SENTINEL = object()


class WorkerEngine:
    """Awaits submitted jobs and reports their outcomes to the console queue.

    A job may return a ConsoleMessage (forwarded), a RibbleError (forwarded as an
    error), or None (nothing to report). A job that raises RibbleError is logged
    and forwarded; any other exception is reported as a thread panic.
    """

    def __init__(
        self,
        incoming_requests: "queue.Queue[WorkRequest]",
        console_sender: "queue.Queue[ConsoleMessage]",
    ) -> None:
        self._incoming = incoming_requests
        self._console = console_sender
        self._short: "queue.Queue[Any]" = queue.Queue(MAX_SHORT_JOBS)
        self._long: "queue.Queue[Any]" = queue.Queue(MAX_LONG_JOBS)
        self._threads = [
            threading.Thread(target=self._forward, name="worker-forwarder", daemon=True),
            threading.Thread(
                target=self._drain, args=(self._short,), name="worker-short", daemon=True
            ),
            threading.Thread(
                target=self._drain, args=(self._long,), name="worker-long", daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()
        self._closed = False

    def _forward(self) -> None:
        while True:
            request = self._incoming.get()
            if request.kind is WorkKind.LONG:
                self._long.put(request.job)
            elif request.kind is WorkKind.SHORT:
                self._short.put(request.job)
            else:
                self._long.put(_SENTINEL)
                self._short.put(_SENTINEL)
                break

    def _drain(self, jobs: "queue.Queue[Any]") -> None:
        while True:
            job = jobs.get()
            if job is _SENTINEL:
                break
            try:
                result = job.result()
            except RibbleError as err:
                self._handle_error(err)
            except BaseException as exc:
                self._handle_error(RibbleError(repr(exc), "thread_panic"))
            else:
                self._handle_result(result)

    def _handle_result(self, result: Any) -> None:
        if isinstance(result, ConsoleMessage):
            self._console.put(result)
        elif isinstance(result, RibbleError):
            self._console.put(ConsoleMessage.error(result))

    def _handle_error(self, error: RibbleError) -> None:
        logger.error("%s", error)
        self._console.put(ConsoleMessage.error(error))

    def close(self) -> None:
        """Request shutdown and wait for all queued jobs to be reported."""
        if self._closed:
            return
        self._closed = True
        if self._threads[0].is_alive():
            self._incoming.put(WorkRequest.shutdown())
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> "WorkerEngine":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()