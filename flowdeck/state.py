"""Loading and error state shared by dashboard calls."""

from __future__ import annotations

import enum
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

from pydantic import BaseModel

from .errors import FlowdeckError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _NoResult:
    """Marker returned by :meth:`OperationState.with_loading` after a failure."""

    _instance: Optional["_NoResult"] = None

    def __new__(cls) -> "_NoResult":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_RESULT"


NO_RESULT = _NoResult()


class OperationState:
    """Busy flag and last error shared by every call made through one instance.

    Both fields are singletons per instance: overlapping calls interleave
    their writes and the last call to finish wins. Use one instance per
    logical operation, or :meth:`track`, when calls may overlap.
    """

    def __init__(self) -> None:
        self.loading: bool = False
        self.error: Optional[str] = None

    async def with_loading(
        self, fn: Callable[[], Awaitable[T]]
    ) -> Union[T, _NoResult]:
        """Run ``fn`` while flagging the state as loading.

        Returns the operation's result, or ``NO_RESULT`` when it raised; the
        failure's message is then available in :attr:`error`.
        """
        self.loading = True
        self.error = None
        try:
            return await fn()
        except Exception as exc:
            self.error = str(exc)
            logger.warning(f"Operation failed: {self.error}")
            return NO_RESULT
        finally:
            self.loading = False

    async def track(self, fn: Callable[[], Awaitable[T]]) -> "CallResult[T]":
        """Run ``fn`` without touching the shared fields."""
        return await run_call(fn)


class CallStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class CallResult(BaseModel, Generic[T]):
    """Outcome of a single call, independent of any other call."""

    status: CallStatus = CallStatus.PENDING
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.SUCCESS

    def unwrap(self) -> T:
        """Return the value, raising when the call did not succeed."""
        if self.status is CallStatus.SUCCESS:
            return self.value
        if self.status is CallStatus.FAILURE:
            raise FlowdeckError(self.error or "Call failed")
        raise FlowdeckError("Call has not completed")


async def run_call(fn: Callable[[], Awaitable[T]]) -> CallResult[T]:
    """Await ``fn`` and capture its outcome in a fresh :class:`CallResult`."""
    try:
        value = await fn()
    except Exception as exc:
        logger.warning(f"Call failed: {exc}")
        return CallResult(status=CallStatus.FAILURE, error=str(exc))
    return CallResult(status=CallStatus.SUCCESS, value=value)
