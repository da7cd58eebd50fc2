"""Cooperative cancellation and deadline propagation.

A :class:`Context` is passed explicitly to every blocking call (file opens, byte
copies, backend runs, collection). Children observe their parent's cancellation
and the earliest deadline in their chain.
"""

from __future__ import annotations

import threading
import time
import weakref

from envexec.errors import ContextCancelledError, ContextError, DeadlineExceededError


class Context:
    """Cancellation token with an optional monotonic deadline."""

    def __init__(self, *, deadline: float | None = None, parent: Context | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        self._parent = parent
        self._deadline = deadline
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> Context:
        """Return a root context that is never cancelled and has no deadline."""

        return cls()

    def with_cancel(self) -> Context:
        return Context(parent=self)

    def with_timeout(self, seconds: float) -> Context:
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_deadline(self, deadline: float) -> Context:
        return Context(deadline=deadline, parent=self)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    @property
    def deadline(self) -> float | None:
        """Earliest ``time.monotonic()`` deadline along the parent chain."""

        parent_deadline = self._parent.deadline if self._parent is not None else None
        if parent_deadline is None:
            return self._deadline
        if self._deadline is None:
            return parent_deadline
        return min(parent_deadline, self._deadline)

    def remaining(self) -> float | None:
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def err(self) -> ContextError | None:
        """Return the reason this context is done, or ``None`` while still live."""

        if self._event.is_set():
            return ContextCancelledError()
        deadline = self.deadline
        if deadline is not None and time.monotonic() >= deadline:
            return DeadlineExceededError()
        return None

    @property
    def done(self) -> bool:
        return self.err() is not None

    def raise_if_done(self) -> None:
        error = self.err()
        if error is not None:
            raise error

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; return ``True`` once the context is done."""

        limit = self.remaining()
        if timeout is not None:
            limit = timeout if limit is None else min(limit, timeout)
        self._event.wait(limit)
        return self.done

    def _adopt(self, child: Context) -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.add(child)
        if cancelled:
            child.cancel()


__all__ = ["Context"]
