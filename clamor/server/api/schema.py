"""
schema.py
Wires a ResolverSet into the GraphQL schema served at /graphql.

The schema is built once at startup and never mutated afterwards.
"""

from graphql import GraphQLObjectType, GraphQLSchema

from clamor.server.api import fields as f
from clamor.server.api.resolvers import ResolverSet


def new_graphql_schema(resolvers: ResolverSet) -> GraphQLSchema:
    query = GraphQLObjectType(
        "Query",
        {
            "image": f.image_field(resolvers.image, f.image_args()),
            "images": f.images_field(resolvers.images, f.list_args()),
            "container": f.container_field(resolvers.container, f.container_args()),
            "containers": f.containers_field(resolvers.containers, f.list_args()),
            "task": f.task_field(resolvers.task, f.task_args()),
            "tasks": f.tasks_field(resolvers.tasks, f.list_args()),
        },
    )

    mutation = GraphQLObjectType(
        "Mutation",
        {
            "createImage": f.image_field(resolvers.create_image, f.image_args()),
            "createContainer": f.container_field(resolvers.create_container, f.create_container_args()),
            "createTask": f.task_field(resolvers.create_task, f.task_args()),
            "deleteImage": f.boolean_field(resolvers.delete_image, f.image_args()),
            "deleteContainer": f.boolean_field(resolvers.delete_container, f.container_args()),
            "deleteTask": f.exit_status_field(resolvers.delete_task, f.task_args()),
            "killTask": f.boolean_field(resolvers.kill_task, f.task_args()),
        },
    )

    return GraphQLSchema(query=query, mutation=mutation)
