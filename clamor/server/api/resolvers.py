"""
resolvers.py
One resolver per exposed GraphQL field.

Every resolver has the same shape, resolver(args: dict) -> result: it
validates args against a request model, builds the namespace-scoped request
context once, makes exactly one façade call and projects the result into the
flat response models of api_models.
"""

import time
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Optional

from clamor.logpkg.log_clamor import _LogClamor
from clamor.node.context import RequestContext, with_namespace
from clamor.node.errors import InvalidRequestError, NotFoundError
from clamor.node.service import Service
from clamor.server.api.api_models import (
    ContainerInfo,
    ExitStatusInfo,
    ImageInfo,
    TaskInfo,
    container_info,
    exit_status_info,
    image_info,
    task_info,
)
from clamor.server.api.requests import (
    ContainerRequest,
    CreateContainerRequest,
    ImageRequest,
    ListRequest,
    NamespacedRequest,
    TaskQueryRequest,
    TaskRequest,
    parse_request,
)

Resolver = Callable[[Dict[str, Any]], Any]


@dataclass(frozen=True)
class ResolverSet:
    # queries
    image: Resolver
    images: Resolver
    container: Resolver
    containers: Resolver
    task: Resolver
    tasks: Resolver
    # mutations
    create_image: Resolver
    create_container: Resolver
    create_task: Resolver
    delete_image: Resolver
    delete_container: Resolver
    delete_task: Resolver
    kill_task: Resolver


def new_resolver_set(svc: Service, request_timeout: Optional[float] = None) -> ResolverSet:
    def scoped(req: NamespacedRequest) -> RequestContext:
        return with_namespace(req.namespace, timeout=request_timeout)

    # ========== Queries ==========
    def image(args) -> ImageInfo:
        req = parse_request(ImageRequest, args)
        return image_info(svc.get_image(scoped(req), req.ref))

    def images(args) -> List[ImageInfo]:
        req = parse_request(ListRequest, args)
        return [image_info(i) for i in svc.list_images(scoped(req), req.filter)]

    def container(args) -> ContainerInfo:
        req = parse_request(ContainerRequest, args)
        ctx = scoped(req)
        return container_info(ctx, svc.get_container(ctx, req.id))

    def containers(args) -> List[ContainerInfo]:
        req = parse_request(ListRequest, args)
        ctx = scoped(req)
        return [container_info(ctx, c) for c in svc.list_containers(ctx, req.filter)]

    def task(args) -> TaskInfo:
        req = parse_request(TaskQueryRequest, args)
        ctx = scoped(req)
        return task_info(ctx, svc.get_task(ctx, req.container_id))

    def tasks(args) -> List[TaskInfo]:
        req = parse_request(ListRequest, args)
        ctx = scoped(req)
        return [task_info(ctx, t) for t in svc.list_tasks(ctx, req.filter)]

    # ========== Mutations ==========
    def create_image(args) -> ImageInfo:
        req = parse_request(ImageRequest, args)
        return image_info(svc.pull_image(scoped(req), req.ref))

    def create_container(args) -> ContainerInfo:
        req = parse_request(CreateContainerRequest, args)
        ctx = scoped(req)
        return container_info(ctx, svc.create_container(ctx, req.image_ref, req.id))

    def create_task(args) -> TaskInfo:
        req = parse_request(TaskRequest, args)
        ctx = scoped(req)
        return task_info(ctx, svc.create_task(ctx, req.container_id))

    def delete_image(args) -> bool:
        req = parse_request(ImageRequest, args)
        svc.delete_image(scoped(req), req.ref)
        return True

    def delete_container(args) -> bool:
        req = parse_request(ContainerRequest, args)
        svc.delete_container(scoped(req), req.id)
        return True

    def delete_task(args) -> ExitStatusInfo:
        req = parse_request(TaskRequest, args)
        return exit_status_info(svc.delete_task(scoped(req), req.container_id))

    def kill_task(args) -> bool:
        req = parse_request(TaskRequest, args)
        svc.kill_task(scoped(req), req.container_id)
        return True

    return ResolverSet(
        image=image,
        images=images,
        container=container,
        containers=containers,
        task=task,
        tasks=tasks,
        create_image=create_image,
        create_container=create_container,
        create_task=create_task,
        delete_image=delete_image,
        delete_container=delete_container,
        delete_task=delete_task,
        kill_task=kill_task,
    )


def new_logging_resolver(logger: _LogClamor, name: str, fn: Resolver) -> Resolver:
    """Log every invocation of fn with its name, arguments and duration."""

    def resolve(args):
        start = time.perf_counter()
        try:
            result = fn(args)
        except (NotFoundError, InvalidRequestError) as err:
            logger.warning(f"resolver {name}", args=args, took=_took(start), error=str(err))
            raise
        except Exception as err:
            logger.error(f"resolver {name}", args=args, took=_took(start), error=str(err))
            raise
        logger.info(f"resolver {name}", args=args, took=_took(start))
        return result

    return resolve


def new_logging_resolver_set(logger: _LogClamor, rs: ResolverSet) -> ResolverSet:
    return ResolverSet(**{
        f.name: new_logging_resolver(logger, f.name, getattr(rs, f.name)) for f in fields(rs)
    })


def _took(start: float) -> str:
    return f"{(time.perf_counter() - start) * 1000:.3f}ms"
