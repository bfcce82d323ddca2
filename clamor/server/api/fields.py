# clamor/server/api/fields.py
from typing import Any, Dict

from graphql import (
    GraphQLArgument,
    GraphQLBoolean,
    GraphQLField,
    GraphQLInt,
    GraphQLList,
    GraphQLNonNull,
    GraphQLObjectType,
    GraphQLString,
)

from clamor.server.api.resolvers import Resolver

# ========== Object types ==========
image_type = GraphQLObjectType(
    "Image",
    lambda: {
        "name": GraphQLField(GraphQLString),
    },
)

task_type = GraphQLObjectType(
    "Task",
    lambda: {
        "id": GraphQLField(GraphQLString),
        "container_id": GraphQLField(GraphQLString),
        "pid": GraphQLField(GraphQLInt),
        "pids": GraphQLField(GraphQLList(GraphQLNonNull(GraphQLInt))),
        "status": GraphQLField(GraphQLString),
    },
)

container_type = GraphQLObjectType(
    "Container",
    lambda: {
        "id": GraphQLField(GraphQLString),
        "image": GraphQLField(image_type),
        "task": GraphQLField(task_type),
    },
)

exit_status_type = GraphQLObjectType(
    "ExitStatus",
    lambda: {
        "code": GraphQLField(GraphQLInt),
        "exited_at": GraphQLField(GraphQLString),
    },
)


# ========== Arguments ==========
# Every argument is a nullable String; presence and emptiness are checked by
# the resolvers so a bad request never reaches the node.
def _args(*names: str, **defaults: str) -> Dict[str, GraphQLArgument]:
    args = {name: GraphQLArgument(GraphQLString) for name in names}
    for name, value in defaults.items():
        args[name] = GraphQLArgument(GraphQLString, default_value=value)
    return args


def image_args():
    return _args("namespace", "ref")


def list_args():
    return _args("namespace", filter="")


def container_args():
    return _args("namespace", "id")


def create_container_args():
    return _args("namespace", "id", "image_ref")


def task_args():
    return _args("namespace", "container_id")


# ========== Fields ==========
def _adapt(resolver: Resolver):
    def resolve(_root: Any, _info, **args):
        return resolver(args)
    return resolve


def image_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(image_type, args=args, resolve=_adapt(resolver))


def images_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(GraphQLList(image_type), args=args, resolve=_adapt(resolver))


def container_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(container_type, args=args, resolve=_adapt(resolver))


def containers_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(GraphQLList(container_type), args=args, resolve=_adapt(resolver))


def task_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(task_type, args=args, resolve=_adapt(resolver))


def tasks_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(GraphQLList(task_type), args=args, resolve=_adapt(resolver))


def exit_status_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(exit_status_type, args=args, resolve=_adapt(resolver))


def boolean_field(resolver: Resolver, args) -> GraphQLField:
    return GraphQLField(GraphQLBoolean, args=args, resolve=_adapt(resolver))
