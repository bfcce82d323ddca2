"""
Failure taxonomy shared by the façade, the resolvers and the gateway.

  - InvalidRequestError: malformed or missing input; never reaches the runtime.
  - NotFoundError: the named entity does not exist in the runtime.
  - CancelledError: the request context was cancelled or its deadline passed.
  - InternalError: any other runtime or transport failure.
"""

import contextlib
from typing import Optional

import grpc

from clamor.utils.containerd.runtime_client import RuntimeClientError

_CANCELLED_CODES = (grpc.StatusCode.CANCELLED, grpc.StatusCode.DEADLINE_EXCEEDED)


class ClamorError(Exception):
    code = "INTERNAL"

    def __init__(self, message: str, operation: Optional[str] = None,
                 inner: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.inner = inner

    @property
    def public_message(self) -> str:
        return self.message

    def __str__(self) -> str:
        if self.inner is not None:
            return f"{self.message}: {self.inner}"
        return self.message


class InvalidRequestError(ClamorError):
    code = "INVALID_REQUEST"


class NotFoundError(ClamorError):
    code = "NOT_FOUND"

    def __init__(self, name: str, inner: Optional[BaseException] = None,
                 operation: Optional[str] = None, message: Optional[str] = None) -> None:
        super().__init__(message or f"{name} not found", operation=operation, inner=inner)
        self.name = name


class CancelledError(ClamorError):
    code = "CANCELLED"

    def __init__(self, operation: str, reason: str = "cancelled",
                 inner: Optional[BaseException] = None) -> None:
        super().__init__(f"{operation}: {reason}", operation=operation, inner=inner)


class InternalError(ClamorError):
    code = "INTERNAL"

    def __init__(self, operation: str, inner: Optional[BaseException] = None,
                 detail: Optional[str] = None) -> None:
        message = f"{operation} failed"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, operation=operation, inner=inner)

    @property
    def public_message(self) -> str:
        return f"{self.operation} failed"


def classify(operation: str, name: str, err: RuntimeClientError) -> ClamorError:
    if err.code == grpc.StatusCode.NOT_FOUND:
        return NotFoundError(name, inner=err, operation=operation)
    if err.code in _CANCELLED_CODES:
        return CancelledError(operation, err.code.name.lower(), inner=err)
    return InternalError(operation, inner=err, detail=name or None)


@contextlib.contextmanager
def classified(operation: str, name: str = ""):
    """Re-raise RuntimeClientError from the enclosed runtime call as a ClamorError."""
    try:
        yield
    except RuntimeClientError as err:
        raise classify(operation, name, err) from err
