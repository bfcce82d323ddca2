# clamor/server/api/requests.py
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clamor.node.errors import InvalidRequestError


class NamespacedRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True, frozen=True)
    namespace: str = Field(min_length=1)


class ImageRequest(NamespacedRequest):
    ref: str = Field(min_length=1)


class ContainerRequest(NamespacedRequest):
    id: str = Field(min_length=1)


class TaskRequest(NamespacedRequest):
    container_id: str = Field(min_length=1)


class TaskQueryRequest(NamespacedRequest):
    # optional on the task query; an empty id is rejected by the node
    container_id: str = ""


class ListRequest(NamespacedRequest):
    filter: str = ""


class CreateContainerRequest(NamespacedRequest):
    id: str = Field(min_length=1)
    image_ref: str = Field(min_length=1)


R = TypeVar("R", bound=BaseModel)


def parse_request(model: Type[R], args: Dict[str, Any]) -> R:
    """
    Validate raw resolver arguments. None values count as absent so that
    optional arguments fall back to their defaults.
    """
    if not isinstance(args, dict):
        raise InvalidRequestError("invalid request: arguments must be a mapping")
    present = {k: v for k, v in args.items() if v is not None}
    try:
        return model.model_validate(present)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidRequestError(f"invalid request: {problems}") from e
