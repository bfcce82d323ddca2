import re
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from clamor.node.errors import CancelledError, InvalidRequestError

# containerd identifier rules: alphanumeric components joined by '.', '_' or '-'
_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9]+(?:[._-][A-Za-z0-9]+)*$")
MAX_NAMESPACE_LENGTH = 76


@dataclass(frozen=True)
class RequestContext:
    """
    Per-request call context: the containerd namespace, an optional deadline on
    the time.monotonic() clock, and a cancellation event shared by copies.
    """
    namespace: str = ""
    deadline: Optional[float] = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        """
        Abort work that checks this context. The HTTP gateway never calls it;
        a request whose client disconnects still runs until it finishes or its
        deadline passes, so request_timeout is the only bound on gateway work.
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, operation: str) -> None:
        if self.cancelled:
            raise CancelledError(operation, "context cancelled")
        if self.expired:
            raise CancelledError(operation, "context deadline exceeded")


def with_namespace(namespace: str, timeout: Optional[float] = None,
                   parent: Optional[RequestContext] = None) -> RequestContext:
    deadline = time.monotonic() + timeout if timeout is not None else None
    if parent is not None:
        if parent.deadline is not None and (deadline is None or parent.deadline < deadline):
            deadline = parent.deadline
        return RequestContext(namespace=namespace, deadline=deadline, _cancelled=parent._cancelled)
    return RequestContext(namespace=namespace, deadline=deadline)


def valid_namespace(namespace) -> bool:
    return (
        isinstance(namespace, str)
        and 0 < len(namespace) <= MAX_NAMESPACE_LENGTH
        and _NAMESPACE_RE.match(namespace) is not None
    )


def require_namespace(ctx: Optional[RequestContext], operation: str) -> str:
    if ctx is None or not ctx.namespace:
        raise InvalidRequestError(f"{operation}: namespace is required", operation=operation)
    if not valid_namespace(ctx.namespace):
        raise InvalidRequestError(f"{operation}: invalid namespace {ctx.namespace!r}", operation=operation)
    return ctx.namespace
