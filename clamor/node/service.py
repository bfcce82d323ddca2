import abc
from typing import List

from clamor.node.context import RequestContext
from clamor.node.models import Container, ExitStatus, Image, Task


class ImageService(abc.ABC):
    @abc.abstractmethod
    def pull_image(self, ctx: RequestContext, ref: str) -> Image: ...

    @abc.abstractmethod
    def get_image(self, ctx: RequestContext, name: str) -> Image: ...

    @abc.abstractmethod
    def list_images(self, ctx: RequestContext, filter: str = "") -> List[Image]: ...

    @abc.abstractmethod
    def delete_image(self, ctx: RequestContext, name: str) -> None: ...


class ContainerService(abc.ABC):
    @abc.abstractmethod
    def create_container(self, ctx: RequestContext, image_name: str, id: str) -> Container: ...

    @abc.abstractmethod
    def get_container(self, ctx: RequestContext, id: str) -> Container: ...

    @abc.abstractmethod
    def list_containers(self, ctx: RequestContext, filter: str = "") -> List[Container]: ...

    @abc.abstractmethod
    def delete_container(self, ctx: RequestContext, id: str) -> None: ...


class TaskService(abc.ABC):
    """Task operations are addressed by their parent container's id."""

    @abc.abstractmethod
    def create_task(self, ctx: RequestContext, container_id: str) -> Task: ...

    @abc.abstractmethod
    def get_task(self, ctx: RequestContext, container_id: str) -> Task: ...

    @abc.abstractmethod
    def list_tasks(self, ctx: RequestContext, filter: str = "") -> List[Task]: ...

    @abc.abstractmethod
    def kill_task(self, ctx: RequestContext, container_id: str) -> None: ...

    @abc.abstractmethod
    def delete_task(self, ctx: RequestContext, container_id: str) -> ExitStatus: ...


class Service(ImageService, ContainerService, TaskService):
    pass
