import argparse
import sys
from typing import List, Optional

import uvicorn
from fastapi import FastAPI

from clamor.logpkg.log_clamor import LogClamor, log_to_file
from clamor.node.interceptors import new_logging_node
from clamor.node.node import Node
from clamor.server.api.resolvers import new_logging_resolver_set, new_resolver_set
from clamor.server.api.schema import new_graphql_schema
from clamor.server.api.server import create_app
from clamor.utils.ReadConfig import ConfigError, NodeConfig, ReadConfig as rc
from clamor.utils.containerd.runtime_client import RuntimeClient

logger = LogClamor()


@log_to_file(logger)
def build_app(node_config: NodeConfig, runtime: RuntimeClient) -> FastAPI:
    """Node -> logging node -> resolvers -> logging resolvers -> schema -> app."""
    svc = new_logging_node(logger, Node(runtime, kill_timeout=node_config.kill_timeout))
    resolvers = new_logging_resolver_set(logger, new_resolver_set(svc, node_config.request_timeout))
    return create_app(new_graphql_schema(resolvers))


@log_to_file(logger)
def serve(config_path: Optional[str]) -> int:
    read_config = rc(config_path)
    log_conf = read_config.logging_config
    logger.configure(log_conf.level, log_conf.file, log_conf.format)
    node_config = read_config.node_config

    # the containerd stubs are only needed by a serving node
    from clamor.utils.containerd.containerd_client import ContainerdRuntime

    runtime = ContainerdRuntime(node_config.containerd_path, snapshotter=node_config.snapshotter,
                                ctr_path=node_config.ctr_path)
    try:
        app = build_app(node_config, runtime)
        logger.info("serving", name=node_config.name, host=node_config.api_host, port=node_config.api_port,
                    containerd=node_config.containerd_path)
        uvicorn.run(app, host=node_config.api_host, port=node_config.api_port, log_config=None)
    finally:
        runtime.close()
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="clamor-node", description="containerd lifecycle GraphQL gateway")
    sub = parser.add_subparsers(dest="command", required=True)
    serve_cmd = sub.add_parser("serve", help="serve the GraphQL API for the local containerd")
    serve_cmd.add_argument("--config", type=str, default=None, help="path to the JSON config file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.command == "serve":
        try:
            return serve(args.config)
        except ConfigError as e:
            print(f"clamor-node: {e}", file=sys.stderr)
            return 2
    return 1


if __name__ == '__main__':
    sys.exit(main())
