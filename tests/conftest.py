import itertools
import logging
import signal
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional

import grpc
import pytest

from clamor.logpkg.log_clamor import LogClamor
from clamor.node.context import with_namespace
from clamor.node.node import Node
from clamor.utils.containerd.runtime_client import (
    ExitStatus,
    ExitWaiter,
    ProcessInfo,
    RuntimeClient,
    RuntimeClientError,
    RuntimeContainer,
    RuntimeImage,
    RuntimeTask,
)

NAMESPACE = "clamor-testing"
IMAGE_REF = "docker.io/library/hello-world:latest"


def not_found(what: str) -> RuntimeClientError:
    return RuntimeClientError(grpc.StatusCode.NOT_FOUND, f"{what}: not found")


class FakeImage(RuntimeImage):
    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> str:
        return self._name


class FakeTaskState:
    def __init__(self, pid: int):
        self.pid = pid
        self.status = "created"
        self.exit_code: Optional[int] = None
        self.exited_at: Optional[datetime] = None
        self.exited = threading.Event()

    def exit(self, code: int) -> None:
        self.status = "stopped"
        self.exit_code = code
        self.exited_at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.exited.set()

    def exit_status(self) -> ExitStatus:
        return ExitStatus(code=self.exit_code if self.exit_code is not None else 0, exited_at=self.exited_at)


class FakeExitWaiter(ExitWaiter):
    def __init__(self, state: FakeTaskState):
        self.state = state
        self.cancelled = False

    def result(self, timeout=None) -> ExitStatus:
        if not self.state.exited.wait(timeout):
            raise TimeoutError("still running")
        return self.state.exit_status()

    def cancel(self) -> None:
        self.cancelled = True


class FakeTask(RuntimeTask):
    def __init__(self, runtime: "FakeRuntime", namespace: str, container_id: str, state: FakeTaskState):
        self.runtime = runtime
        self.namespace = namespace
        self.container_id = container_id
        self.state = state

    @property
    def id(self) -> str:
        return self.container_id

    @property
    def pid(self) -> int:
        return self.state.pid

    def _live(self, method: str) -> FakeTaskState:
        self.runtime._record(method)
        state = self.runtime.tasks.get(self.namespace, {}).get(self.container_id)
        if state is not self.state:
            raise not_found(f"task {self.container_id}")
        return state

    def status(self, ctx) -> str:
        return self._live("task.status").status

    def pids(self, ctx) -> List[ProcessInfo]:
        state = self._live("task.pids")
        return [] if state.exited.is_set() else [ProcessInfo(pid=state.pid)]

    def kill(self, ctx, signal: int) -> None:
        state = self._live("task.kill")
        self.runtime.signals.append((self.container_id, signal))
        if not self.runtime.ignore_signals:
            state.exit(128 + int(signal))

    def wait(self, ctx) -> ExitWaiter:
        waiter = FakeExitWaiter(self._live("task.wait"))
        self.runtime.waiters.append(waiter)
        return waiter

    def delete(self, ctx) -> ExitStatus:
        state = self._live("task.delete")
        if state.status == "running":
            raise RuntimeClientError(grpc.StatusCode.FAILED_PRECONDITION, "task must be stopped before deletion")
        del self.runtime.tasks[self.namespace][self.container_id]
        return state.exit_status()


class FakeContainer(RuntimeContainer):
    def __init__(self, runtime: "FakeRuntime", namespace: str, id: str, image_name: str):
        self.runtime = runtime
        self.namespace = namespace
        self._id = id
        self.image_name = image_name

    @property
    def id(self) -> str:
        return self._id

    def image(self, ctx) -> RuntimeImage:
        self.runtime._record("container.image")
        return self.runtime._image(self.namespace, self.image_name)

    def new_task(self, ctx) -> RuntimeTask:
        self.runtime._record("container.new_task")
        tasks = self.runtime.tasks.setdefault(self.namespace, {})
        if self._id in tasks:
            raise RuntimeClientError(grpc.StatusCode.ALREADY_EXISTS, f"task {self._id}: already exists")
        state = FakeTaskState(next(self.runtime._pids))
        tasks[self._id] = state
        return FakeTask(self.runtime, self.namespace, self._id, state)

    def task(self, ctx) -> RuntimeTask:
        self.runtime._record("container.task")
        failure = self.runtime.task_failures.get(self._id)
        if failure is not None:
            raise failure
        state = self.runtime.tasks.get(self.namespace, {}).get(self._id)
        if state is None:
            raise not_found(f"task {self._id}")
        return FakeTask(self.runtime, self.namespace, self._id, state)


class FakeRuntime(RuntimeClient):
    """In-memory, namespace-partitioned RuntimeClient that counts every call."""

    def __init__(self, pullable=(IMAGE_REF,)):
        self.pullable = set(pullable)
        self.images: Dict[str, Dict[str, FakeImage]] = {}
        self.containers: Dict[str, Dict[str, FakeContainer]] = {}
        self.tasks: Dict[str, Dict[str, FakeTaskState]] = {}
        self.calls: Counter = Counter()
        self.failures: Dict[str, RuntimeClientError] = {}
        self.task_failures: Dict[str, RuntimeClientError] = {}
        self.signals = []
        self.waiters: List[FakeExitWaiter] = []
        self.ignore_signals = False
        self._pids = itertools.count(1000)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _record(self, method: str) -> None:
        self.calls[method] += 1
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def _image(self, ns: str, name: str) -> FakeImage:
        image = self.images.get(ns, {}).get(name)
        if image is None:
            raise not_found(f"image {name}")
        return image

    def pull(self, ctx, ref: str) -> RuntimeImage:
        self._record("pull")
        if ref not in self.pullable:
            raise not_found(f"{ref}")
        return self.images.setdefault(ctx.namespace, {}).setdefault(ref, FakeImage(ref))

    def get_image(self, ctx, name: str) -> RuntimeImage:
        self._record("get_image")
        return self._image(ctx.namespace, name)

    def list_images(self, ctx, filter: str = "") -> List[RuntimeImage]:
        self._record("list_images")
        return [i for n, i in sorted(self.images.get(ctx.namespace, {}).items()) if filter in n]

    def delete_image(self, ctx, name: str) -> None:
        self._record("delete_image")
        self._image(ctx.namespace, name)
        del self.images[ctx.namespace][name]

    def new_container(self, ctx, id: str, image: RuntimeImage) -> RuntimeContainer:
        self._record("new_container")
        containers = self.containers.setdefault(ctx.namespace, {})
        if id in containers:
            raise RuntimeClientError(grpc.StatusCode.ALREADY_EXISTS, f"container {id}: already exists")
        container = FakeContainer(self, ctx.namespace, id, image.name)
        containers[id] = container
        return container

    def load_container(self, ctx, id: str) -> RuntimeContainer:
        self._record("load_container")
        container = self.containers.get(ctx.namespace, {}).get(id)
        if container is None:
            raise not_found(f"container {id}")
        return container

    def list_containers(self, ctx, filter: str = "") -> List[RuntimeContainer]:
        self._record("list_containers")
        return [c for i, c in sorted(self.containers.get(ctx.namespace, {}).items()) if filter in i]

    def delete_container(self, ctx, id: str) -> None:
        self._record("delete_container")
        self.load_container(ctx, id)
        del self.containers[ctx.namespace][id]


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def node(runtime) -> Node:
    return Node(runtime, kill_signal=signal.SIGKILL, kill_timeout=2.0)


@pytest.fixture
def ctx():
    return with_namespace(NAMESPACE, timeout=5.0)


@pytest.fixture
def clamor_logger():
    logger = LogClamor()
    logger.logger.setLevel(logging.DEBUG)
    yield logger
    logger.logger.setLevel(logging.NOTSET)
