"""
Flat response shapes the gateway hands to the GraphQL layer, plus the
projections from node domain objects into them.

Composite projections follow one policy: a sub-resource that is NotFound
(a container's deleted image, a container without a task, a task whose
process is gone) degrades to an empty value; any other failure propagates.
"""

from datetime import timezone
from typing import Callable, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from clamor.node.context import RequestContext
from clamor.node.errors import NotFoundError
from clamor.node.models import Container, ExitStatus, Image, Task

T = TypeVar("T")


class ImageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)
    name: str


class TaskInfo(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    container_id: str
    pid: int = 0
    pids: List[int] = Field(default_factory=list)
    status: str = ""


class ContainerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    image: Optional[ImageInfo] = None
    task: Optional[TaskInfo] = None


class ExitStatusInfo(BaseModel):
    model_config = ConfigDict(frozen=True)
    code: int
    exited_at: Optional[str] = None


def _unless_not_found(fetch: Callable[[], T], default: T) -> T:
    try:
        return fetch()
    except NotFoundError:
        return default


def image_info(image: Image) -> ImageInfo:
    return ImageInfo(name=image.name)


def task_info(ctx: RequestContext, task: Task) -> TaskInfo:
    return TaskInfo(
        id=task.id,
        container_id=task.container_id,
        pid=task.pid,
        pids=_unless_not_found(lambda: task.pids(ctx), []),
        status=_unless_not_found(lambda: task.status(ctx), ""),
    )


def container_info(ctx: RequestContext, container: Container) -> ContainerInfo:
    image = _unless_not_found(lambda: container.image(ctx), None)
    task = _unless_not_found(lambda: container.task(ctx), None)
    return ContainerInfo(
        id=container.id,
        image=image_info(image) if image is not None else None,
        task=task_info(ctx, task) if task is not None else None,
    )


def exit_status_info(status: ExitStatus) -> ExitStatusInfo:
    exited_at = None
    if status.exited_at is not None:
        ts = status.exited_at
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        exited_at = ts.isoformat()
    return ExitStatusInfo(code=status.code, exited_at=exited_at)
