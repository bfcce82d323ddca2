"""
runtime_client.py
The capability clamor-node consumes from a container runtime daemon.

Every method takes the request context first; namespace scoping and deadlines
travel with it. Failures are raised as RuntimeClientError carrying a
grpc.StatusCode so callers can classify them without inspecting message text.
"""

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import grpc


class RuntimeClientError(Exception):
    def __init__(self, code: grpc.StatusCode, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.name}: {message}" if message else code.name)

    @classmethod
    def from_rpc_error(cls, err: grpc.RpcError) -> "RuntimeClientError":
        code = err.code() if hasattr(err, "code") else grpc.StatusCode.UNKNOWN
        details = err.details() if hasattr(err, "details") else str(err)
        return cls(code or grpc.StatusCode.UNKNOWN, details or "")


@dataclass(frozen=True)
class ExitStatus:
    code: int
    exited_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProcessInfo:
    pid: int


class RuntimeImage(abc.ABC):
    @property
    @abc.abstractmethod
    def name(self) -> str: ...


class ExitWaiter(abc.ABC):
    """Pending exit notification for a task, registered before it is signalled."""

    @abc.abstractmethod
    def result(self, timeout: Optional[float] = None) -> ExitStatus:
        """
        Block until the task exits. Raises TimeoutError when timeout elapses
        first (the wait stays registered) and RuntimeClientError when the
        wait itself fails.
        """

    @abc.abstractmethod
    def cancel(self) -> None: ...


class RuntimeTask(abc.ABC):
    @property
    @abc.abstractmethod
    def id(self) -> str: ...

    @property
    @abc.abstractmethod
    def pid(self) -> int: ...

    @abc.abstractmethod
    def status(self, ctx) -> str: ...

    @abc.abstractmethod
    def pids(self, ctx) -> List[ProcessInfo]: ...

    @abc.abstractmethod
    def kill(self, ctx, signal: int) -> None: ...

    @abc.abstractmethod
    def wait(self, ctx) -> ExitWaiter: ...

    @abc.abstractmethod
    def delete(self, ctx) -> ExitStatus: ...


class RuntimeContainer(abc.ABC):
    @property
    @abc.abstractmethod
    def id(self) -> str: ...

    @abc.abstractmethod
    def image(self, ctx) -> RuntimeImage: ...

    @abc.abstractmethod
    def new_task(self, ctx) -> RuntimeTask:
        """Create the container's task with default process I/O."""

    @abc.abstractmethod
    def task(self, ctx) -> RuntimeTask:
        """Return the container's task; NOT_FOUND when it has none."""


class RuntimeClient(abc.ABC):
    @abc.abstractmethod
    def pull(self, ctx, ref: str) -> RuntimeImage: ...

    @abc.abstractmethod
    def get_image(self, ctx, name: str) -> RuntimeImage: ...

    @abc.abstractmethod
    def list_images(self, ctx, filter: str = "") -> List[RuntimeImage]: ...

    @abc.abstractmethod
    def delete_image(self, ctx, name: str) -> None: ...

    @abc.abstractmethod
    def new_container(self, ctx, id: str, image: RuntimeImage) -> RuntimeContainer: ...

    @abc.abstractmethod
    def load_container(self, ctx, id: str) -> RuntimeContainer: ...

    @abc.abstractmethod
    def list_containers(self, ctx, filter: str = "") -> List[RuntimeContainer]: ...

    @abc.abstractmethod
    def delete_container(self, ctx, id: str) -> None: ...

    def close(self) -> None:
        pass
