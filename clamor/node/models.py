"""
Domain wrappers around runtime handles.

Each wrapper exposes only what the gateway projects and classifies runtime
failures of its lazy lookups the same way the façade does.
"""

from typing import List

from clamor.node.context import RequestContext
from clamor.node.errors import classified
from clamor.utils.containerd.runtime_client import (
    ExitStatus,
    RuntimeContainer,
    RuntimeImage,
    RuntimeTask,
)

__all__ = ["Image", "Container", "Task", "ExitStatus"]


class Image:
    def __init__(self, image: RuntimeImage) -> None:
        self._image = image

    @property
    def name(self) -> str:
        return self._image.name

    def __repr__(self) -> str:
        return f"Image(name={self.name!r})"


class Task:
    def __init__(self, task: RuntimeTask, container_id: str) -> None:
        self._task = task
        self.container_id = container_id

    @property
    def id(self) -> str:
        return self._task.id

    @property
    def pid(self) -> int:
        return self._task.pid

    def status(self, ctx: RequestContext) -> str:
        with classified("TaskStatus", self.container_id):
            return self._task.status(ctx)

    def pids(self, ctx: RequestContext) -> List[int]:
        with classified("TaskPids", self.container_id):
            return [p.pid for p in self._task.pids(ctx)]

    def __repr__(self) -> str:
        return f"Task(id={self.id!r}, container_id={self.container_id!r})"


class Container:
    def __init__(self, container: RuntimeContainer) -> None:
        self._container = container

    @property
    def id(self) -> str:
        return self._container.id

    def image(self, ctx: RequestContext) -> Image:
        with classified("ContainerImage", f"image of container {self.id}"):
            return Image(self._container.image(ctx))

    def task(self, ctx: RequestContext) -> Task:
        with classified("ContainerTask", f"task of container {self.id}"):
            return Task(self._container.task(ctx), self.id)

    def __repr__(self) -> str:
        return f"Container(id={self.id!r})"
