# clamor/utils/containerd/grpc_ns.py
import grpc

NAMESPACE_HEADER = "containerd-namespace"


class NamespaceInterceptor(grpc.UnaryUnaryClientInterceptor,
                           grpc.UnaryStreamClientInterceptor):
    """Scopes every call on the intercepted channel to one containerd namespace."""

    def __init__(self, namespace: str, extra_md=None):
        self.namespace = namespace
        self.extra_md = list(extra_md or [])

    def _inject(self, client_call_details):
        md = [(k, v) for k, v in (client_call_details.metadata or []) if k != NAMESPACE_HEADER]
        md.append((NAMESPACE_HEADER, self.namespace))
        md.extend(self.extra_md)
        return client_call_details._replace(metadata=md)

    def intercept_unary_unary(self, continuation, client_call_details, request):
        return continuation(self._inject(client_call_details), request)

    def intercept_unary_stream(self, continuation, client_call_details, request):
        return continuation(self._inject(client_call_details), request)


def namespaced_channel(channel: grpc.Channel, namespace: str) -> grpc.Channel:
    return grpc.intercept_channel(channel, NamespaceInterceptor(namespace))
