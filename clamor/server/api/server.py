"""
server.py
FastAPI gateway exposing the clamor GraphQL schema over HTTP.

    GET  /graphql?query=...&variables=...&operationName=...
    POST /graphql   {"query": ..., "variables": ..., "operationName": ...}

Both return {"data": ..., "errors": [...]}; every error carries
extensions.code (INVALID_REQUEST, NOT_FOUND, CANCELLED or INTERNAL).
"""

import json
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from graphql import ExecutionResult, GraphQLError, GraphQLSchema, graphql_sync
from pydantic import BaseModel, ConfigDict

from clamor import __version__
from clamor.logpkg.log_clamor import LogClamor, log_to_file
from clamor.node.errors import ClamorError

logger = LogClamor()


class GraphQLRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    query: str
    variables: Optional[Dict[str, Any]] = None
    operationName: Optional[str] = None


def format_error(error: GraphQLError) -> Dict[str, Any]:
    original = error.original_error
    if isinstance(original, ClamorError):
        code, message = original.code, original.public_message
    elif original is None:
        # parse and validation failures
        code, message = "INVALID_REQUEST", error.message
    else:
        logger.error("unexpected resolver failure", path=error.path, error=repr(original))
        code, message = "INTERNAL", "internal error"

    formatted = {"message": message, "extensions": {"code": code}}
    if error.path:
        formatted["path"] = error.path
    if error.locations:
        formatted["locations"] = [{"line": loc.line, "column": loc.column} for loc in error.locations]
    return formatted


def _invalid(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"data": None, "errors": [{"message": message, "extensions": {"code": "INVALID_REQUEST"}}]},
    )


def _respond(result: ExecutionResult) -> JSONResponse:
    body: Dict[str, Any] = {"data": result.data}
    if result.errors:
        body["errors"] = [format_error(e) for e in result.errors]
    # no data at all means the document never executed
    status_code = 400 if result.data is None and result.errors else 200
    return JSONResponse(status_code=status_code, content=body)


def create_app(schema: GraphQLSchema) -> FastAPI:
    app = FastAPI(title="clamor-node", version=__version__)

    @app.exception_handler(RequestValidationError)
    def invalid_transport(_request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return _invalid(f"invalid request: {problems}")

    @log_to_file(logger)
    def execute(query: str, variables: Optional[Dict[str, Any]], operation_name: Optional[str]) -> JSONResponse:
        result = graphql_sync(schema, query, variable_values=variables, operation_name=operation_name)
        return _respond(result)

    # plain def endpoints run in the threadpool; resolvers block on gRPC
    @app.get("/graphql")
    def graphql_get(query: str = Query(...), variables: Optional[str] = None,
                    operationName: Optional[str] = None):
        parsed = None
        if variables:
            try:
                parsed = json.loads(variables)
            except json.JSONDecodeError as e:
                return _invalid(f"variables is not valid JSON: {e}")
            if not isinstance(parsed, dict):
                return _invalid("variables must be a JSON object")
        return execute(query, parsed, operationName)

    @app.post("/graphql")
    def graphql_post(request: GraphQLRequest):
        return execute(request.query, request.variables, request.operationName)

    return app
