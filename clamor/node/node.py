"""
node.py
Lifecycle façade over a RuntimeClient.

Node is stateless: every call validates the request context, performs its
runtime calls in a fixed load-then-act order and classifies failures into the
clamor error taxonomy (see clamor.node.errors).
"""

import signal
import time
from typing import List, Optional

import grpc

from clamor.logpkg.log_clamor import LogClamor
from clamor.node.context import RequestContext, require_namespace
from clamor.node.errors import (
    CancelledError,
    ClamorError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
    classified,
    classify,
)
from clamor.node.models import Container, ExitStatus, Image, Task
from clamor.node.service import Service
from clamor.utils.containerd.runtime_client import RuntimeClient, RuntimeClientError, RuntimeTask

logger = LogClamor()

DEFAULT_KILL_TIMEOUT = 10.0
EXIT_POLL_INTERVAL = 0.25


class Node(Service):
    def __init__(self, ctr: RuntimeClient, kill_signal: int = signal.SIGKILL,
                 kill_timeout: float = DEFAULT_KILL_TIMEOUT) -> None:
        self.ctr = ctr
        self.kill_signal = kill_signal
        self.kill_timeout = kill_timeout

    def _begin(self, ctx: Optional[RequestContext], operation: str, **identifiers) -> None:
        require_namespace(ctx, operation)
        for field, value in identifiers.items():
            if not isinstance(value, str) or not value:
                raise InvalidRequestError(f"{operation}: {field} is required", operation=operation)
        ctx.check(operation)

    # ========== Images ==========
    def pull_image(self, ctx: RequestContext, ref: str) -> Image:
        self._begin(ctx, "PullImage", ref=ref)
        with classified("PullImage", ref):
            return Image(self.ctr.pull(ctx, ref))

    def get_image(self, ctx: RequestContext, name: str) -> Image:
        self._begin(ctx, "GetImage", name=name)
        with classified("GetImage", name):
            return Image(self.ctr.get_image(ctx, name))

    def list_images(self, ctx: RequestContext, filter: str = "") -> List[Image]:
        self._begin(ctx, "ListImages")
        with classified("ListImages", filter):
            return [Image(i) for i in self.ctr.list_images(ctx, filter or "")]

    def delete_image(self, ctx: RequestContext, name: str) -> None:
        self._begin(ctx, "DeleteImage", name=name)
        with classified("DeleteImage", name):
            self.ctr.delete_image(ctx, name)

    # ========== Containers ==========
    def create_container(self, ctx: RequestContext, image_name: str, id: str) -> Container:
        op = "CreateContainer"
        self._begin(ctx, op, image_name=image_name, id=id)

        try:
            with classified(op, image_name):
                image = self.ctr.get_image(ctx, image_name)
        except NotFoundError as err:
            raise NotFoundError(
                image_name, inner=err.inner, operation=op,
                message=f"image {image_name} not found, container {id} not created",
            ) from err
        except InternalError as err:
            raise InternalError(op, inner=err.inner,
                                detail=f"resolving image {image_name} for container {id}") from err

        with classified(op, id):
            return Container(self.ctr.new_container(ctx, id, image))

    def get_container(self, ctx: RequestContext, id: str) -> Container:
        self._begin(ctx, "GetContainer", id=id)
        with classified("GetContainer", id):
            return Container(self.ctr.load_container(ctx, id))

    def list_containers(self, ctx: RequestContext, filter: str = "") -> List[Container]:
        self._begin(ctx, "ListContainers")
        with classified("ListContainers", filter):
            return [Container(c) for c in self.ctr.list_containers(ctx, filter or "")]

    def delete_container(self, ctx: RequestContext, id: str) -> None:
        self._begin(ctx, "DeleteContainer", id=id)
        with classified("DeleteContainer", id):
            self.ctr.delete_container(ctx, id)

    # ========== Tasks ==========
    def _load_task(self, ctx: RequestContext, operation: str, container_id: str) -> RuntimeTask:
        with classified(operation, container_id):
            container = self.ctr.load_container(ctx, container_id)
        ctx.check(operation)
        with classified(operation, f"task of container {container_id}"):
            return container.task(ctx)

    def create_task(self, ctx: RequestContext, container_id: str) -> Task:
        op = "CreateTask"
        self._begin(ctx, op, container_id=container_id)
        with classified(op, container_id):
            container = self.ctr.load_container(ctx, container_id)
        ctx.check(op)
        with classified(op, container_id):
            return Task(container.new_task(ctx), container_id)

    def get_task(self, ctx: RequestContext, container_id: str) -> Task:
        self._begin(ctx, "GetTask", container_id=container_id)
        return Task(self._load_task(ctx, "GetTask", container_id), container_id)

    def list_tasks(self, ctx: RequestContext, filter: str = "") -> List[Task]:
        """
        Tasks of every container matching filter. Containers without a task are
        skipped; any other failure loading a task fails the whole listing.
        """
        op = "ListTasks"
        self._begin(ctx, op)
        with classified(op, filter):
            containers = self.ctr.list_containers(ctx, filter or "")

        tasks = []
        for container in containers:
            ctx.check(op)
            try:
                task = container.task(ctx)
            except RuntimeClientError as err:
                if err.code == grpc.StatusCode.NOT_FOUND:
                    logger.debug("container has no task", container_id=container.id)
                    continue
                raise classify(op, container.id, err) from err
            tasks.append(Task(task, container.id))
        return tasks

    def kill_task(self, ctx: RequestContext, container_id: str) -> None:
        op = "KillTask"
        self._begin(ctx, op, container_id=container_id)
        task = self._load_task(ctx, op, container_id)

        # the exit wait must be registered before the signal is sent
        with classified(op, container_id):
            waiter = task.wait(ctx)
        try:
            with classified(op, container_id):
                task.kill(ctx, self.kill_signal)
                self._await_exit(ctx, op, waiter)
        except ClamorError:
            waiter.cancel()
            raise

    def _await_exit(self, ctx: RequestContext, operation: str, waiter) -> ExitStatus:
        timeout = ctx.remaining()
        if timeout is None:
            timeout = self.kill_timeout
        deadline = time.monotonic() + timeout

        while True:
            ctx.check(operation)
            left = deadline - time.monotonic()
            if left <= 0:
                raise CancelledError(operation, "timed out waiting for task exit")
            try:
                return waiter.result(timeout=min(left, EXIT_POLL_INTERVAL))
            except TimeoutError:
                continue

    def delete_task(self, ctx: RequestContext, container_id: str) -> ExitStatus:
        op = "DeleteTask"
        self._begin(ctx, op, container_id=container_id)
        task = self._load_task(ctx, op, container_id)
        ctx.check(op)
        with classified(op, f"task of container {container_id}"):
            return task.delete(ctx)
