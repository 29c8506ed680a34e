"""At-most-once settlement shared by racing signal sources."""

from __future__ import annotations

from concurrent.futures import Future
import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleResolution(Generic[T]):
    """Settle once with a value or an error; later attempts are ignored.

    Several event sources (a load listener, a status poll, a timeout) may race
    to settle the same wait. Only the first call to ``resolve`` or ``reject``
    takes effect and the others return ``False``.
    """

    def __init__(self) -> None:
        self._future: Future[T] = Future()
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: T) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(value)
            return True

    def reject(self, error: BaseException) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(error)
            return True

    def result(self) -> T:
        """Return the settled value or raise the settled error."""
        if not self._future.done():
            raise RuntimeError("SingleResolution has not been settled yet.")
        return self._future.result()
