"""
interceptors.py
Cross-cutting concerns composed around a Service.

InterceptedNode implements Service by turning every method call into a
ServiceCall and running it through an ordered chain of interceptors, the first
one outermost, the wrapped service last. Interceptors follow the grpc client
interceptor shape: intercept(continuation, call) -> result.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple

from clamor.logpkg.log_clamor import _LogClamor
from clamor.node.context import RequestContext
from clamor.node.errors import InvalidRequestError, NotFoundError
from clamor.node.models import Container, ExitStatus, Image, Task
from clamor.node.service import Service


@dataclass(frozen=True)
class ServiceCall:
    operation: str
    method: str
    ctx: RequestContext
    args: Tuple[Any, ...] = ()
    fields: Dict[str, Any] = field(default_factory=dict)


Continuation = Callable[[ServiceCall], Any]


class Interceptor:
    def intercept(self, continuation: Continuation, call: ServiceCall) -> Any:
        return continuation(call)


class LoggingInterceptor(Interceptor):
    """
    One record per call: INFO on success, WARNING for NotFound and invalid
    input, ERROR for everything else. Results and errors pass through untouched.
    """

    def __init__(self, logger: _LogClamor) -> None:
        self.logger = logger

    def intercept(self, continuation: Continuation, call: ServiceCall) -> Any:
        fields = {}
        if call.ctx is not None and call.ctx.namespace:
            fields["namespace"] = call.ctx.namespace
        fields.update(call.fields)

        start = time.perf_counter()
        try:
            result = continuation(call)
        except (NotFoundError, InvalidRequestError) as err:
            self.logger.warning(call.operation, **fields, took=_took(start), error=str(err))
            raise
        except Exception as err:
            self.logger.error(call.operation, **fields, took=_took(start), error=str(err))
            raise
        self.logger.info(call.operation, **fields, took=_took(start))
        return result


def _took(start: float) -> str:
    return f"{(time.perf_counter() - start) * 1000:.3f}ms"


class InterceptedNode(Service):
    def __init__(self, next: Service, interceptors: Sequence[Interceptor] = ()) -> None:
        self.next = next
        self.interceptors: List[Interceptor] = list(interceptors)

    def _invoke(self, call: ServiceCall) -> Any:
        def dispatch(index: int, c: ServiceCall) -> Any:
            if index == len(self.interceptors):
                return getattr(self.next, c.method)(c.ctx, *c.args)
            return self.interceptors[index].intercept(lambda nc: dispatch(index + 1, nc), c)

        return dispatch(0, call)

    def pull_image(self, ctx: RequestContext, ref: str) -> Image:
        return self._invoke(ServiceCall("PullImage", "pull_image", ctx, (ref,), {"image": ref}))

    def get_image(self, ctx: RequestContext, name: str) -> Image:
        return self._invoke(ServiceCall("GetImage", "get_image", ctx, (name,), {"image": name}))

    def list_images(self, ctx: RequestContext, filter: str = "") -> List[Image]:
        return self._invoke(ServiceCall("ListImages", "list_images", ctx, (filter,), {"filter": filter}))

    def delete_image(self, ctx: RequestContext, name: str) -> None:
        return self._invoke(ServiceCall("DeleteImage", "delete_image", ctx, (name,), {"image": name}))

    def create_container(self, ctx: RequestContext, image_name: str, id: str) -> Container:
        return self._invoke(ServiceCall("CreateContainer", "create_container", ctx, (image_name, id),
                                        {"image": image_name, "id": id}))

    def get_container(self, ctx: RequestContext, id: str) -> Container:
        return self._invoke(ServiceCall("GetContainer", "get_container", ctx, (id,), {"id": id}))

    def list_containers(self, ctx: RequestContext, filter: str = "") -> List[Container]:
        return self._invoke(ServiceCall("ListContainers", "list_containers", ctx, (filter,), {"filter": filter}))

    def delete_container(self, ctx: RequestContext, id: str) -> None:
        return self._invoke(ServiceCall("DeleteContainer", "delete_container", ctx, (id,), {"id": id}))

    def create_task(self, ctx: RequestContext, container_id: str) -> Task:
        return self._invoke(ServiceCall("CreateTask", "create_task", ctx, (container_id,),
                                        {"container_id": container_id}))

    def get_task(self, ctx: RequestContext, container_id: str) -> Task:
        return self._invoke(ServiceCall("GetTask", "get_task", ctx, (container_id,),
                                        {"container_id": container_id}))

    def list_tasks(self, ctx: RequestContext, filter: str = "") -> List[Task]:
        return self._invoke(ServiceCall("ListTasks", "list_tasks", ctx, (filter,), {"filter": filter}))

    def kill_task(self, ctx: RequestContext, container_id: str) -> None:
        return self._invoke(ServiceCall("KillTask", "kill_task", ctx, (container_id,),
                                        {"container_id": container_id}))

    def delete_task(self, ctx: RequestContext, container_id: str) -> ExitStatus:
        return self._invoke(ServiceCall("DeleteTask", "delete_task", ctx, (container_id,),
                                        {"container_id": container_id}))


def new_logging_node(logger: _LogClamor, svc: Service) -> Service:
    return InterceptedNode(svc, [LoggingInterceptor(logger)])
