"""
containerd_client.py
RuntimeClient over containerd's native gRPC API.

Requires the `containerd` distribution (generated containerd API stubs):
    pip install clamor-node[containerd]

Every call is scoped to the request's namespace by NamespaceInterceptor and
bounded by the request deadline. grpc.RpcError never escapes this module; it
is re-raised as RuntimeClientError with the original status code.
"""

import contextlib
import json
import subprocess
from datetime import timezone
from typing import List, Optional

import grpc

from containerd.services.containers.v1 import containers_pb2, containers_pb2_grpc
from containerd.services.content.v1 import content_pb2, content_pb2_grpc
from containerd.services.images.v1 import images_pb2, images_pb2_grpc
from containerd.services.snapshots.v1 import snapshots_pb2, snapshots_pb2_grpc
from containerd.services.tasks.v1 import tasks_pb2, tasks_pb2_grpc

from clamor.logpkg.log_clamor import LogClamor, log_to_file
from clamor.utils.containerd.grpc_ns import namespaced_channel
from clamor.utils.containerd.manifests import (
    compute_chain_id,
    detect_platform,
    diff_ids,
    is_index,
    is_manifest,
    select_manifest,
)
from clamor.utils.containerd.oci_spec import OciSpecBuilder
from clamor.utils.containerd.runtime_client import (
    ExitStatus,
    ExitWaiter,
    ProcessInfo,
    RuntimeClient,
    RuntimeClientError,
    RuntimeContainer,
    RuntimeImage,
    RuntimeTask,
)

logger = LogClamor()

DEFAULT_SNAPSHOTTER = "overlayfs"
DEFAULT_RUNTIME = "io.containerd.runc.v2"

# containerd.v1.types.Status
_TASK_STATUS = {
    0: "unknown",
    1: "created",
    2: "running",
    3: "stopped",
    4: "paused",
    5: "pausing",
}


def normalize_unix_target(sock: str) -> str:
    """
    Accepts a plain socket path or a unix:// target and returns a valid gRPC
    target of the form 'unix:///run/containerd/containerd.sock'.
    """
    if not sock:
        raise ValueError("socket path/target is empty")
    if sock.startswith("unix://"):
        after = sock[len("unix://"):]
        if after.startswith("/"):
            return sock
        return "unix:///" + after
    if not sock.startswith("/"):
        sock = "/" + sock
    return "unix://" + sock


@contextlib.contextmanager
def _rpc_errors():
    try:
        yield
    except grpc.RpcError as e:
        raise RuntimeClientError.from_rpc_error(e) from e


class _Stubs:
    def __init__(self, channel: grpc.Channel):
        self.images = images_pb2_grpc.ImagesStub(channel)
        self.content = content_pb2_grpc.ContentStub(channel)
        self.snapshots = snapshots_pb2_grpc.SnapshotsStub(channel)
        self.containers = containers_pb2_grpc.ContainersStub(channel)
        self.tasks = tasks_pb2_grpc.TasksStub(channel)


# ========== Handles ==========
class ContainerdImage(RuntimeImage):
    def __init__(self, record):
        self._record = record

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def target(self):
        return self._record.target


class GrpcExitWaiter(ExitWaiter):
    def __init__(self, future):
        self._future = future

    def result(self, timeout: Optional[float] = None) -> ExitStatus:
        try:
            resp = self._future.result(timeout=timeout)
        except grpc.FutureTimeoutError:
            raise TimeoutError("task has not exited yet")
        except grpc.FutureCancelledError as e:
            raise RuntimeClientError(grpc.StatusCode.CANCELLED, "exit wait cancelled") from e
        except grpc.RpcError as e:
            raise RuntimeClientError.from_rpc_error(e) from e
        return _exit_status(resp)

    def cancel(self) -> None:
        self._future.cancel()


class ContainerdTask(RuntimeTask):
    def __init__(self, runtime: "ContainerdRuntime", container_id: str, pid: int):
        self._runtime = runtime
        self._container_id = container_id
        self._pid = pid

    @property
    def id(self) -> str:
        # containerd names a container's init task after the container
        return self._container_id

    @property
    def pid(self) -> int:
        return self._pid

    @log_to_file(logger)
    def status(self, ctx) -> str:
        with _rpc_errors():
            resp = self._runtime.stubs(ctx).tasks.Get(
                tasks_pb2.GetRequest(container_id=self._container_id), timeout=ctx.remaining())
        return _TASK_STATUS.get(int(resp.process.status), "unknown")

    @log_to_file(logger)
    def pids(self, ctx) -> List[ProcessInfo]:
        with _rpc_errors():
            resp = self._runtime.stubs(ctx).tasks.ListPids(
                tasks_pb2.ListPidsRequest(container_id=self._container_id), timeout=ctx.remaining())
        return [ProcessInfo(pid=p.pid) for p in resp.processes]

    @log_to_file(logger)
    def kill(self, ctx, signal: int) -> None:
        with _rpc_errors():
            self._runtime.stubs(ctx).tasks.Kill(
                tasks_pb2.KillRequest(container_id=self._container_id, signal=int(signal)),
                timeout=ctx.remaining())

    @log_to_file(logger)
    def wait(self, ctx) -> ExitWaiter:
        with _rpc_errors():
            future = self._runtime.stubs(ctx).tasks.Wait.future(
                tasks_pb2.WaitRequest(container_id=self._container_id), timeout=ctx.remaining())
        return GrpcExitWaiter(future)

    @log_to_file(logger)
    def delete(self, ctx) -> ExitStatus:
        with _rpc_errors():
            resp = self._runtime.stubs(ctx).tasks.Delete(
                tasks_pb2.DeleteTaskRequest(container_id=self._container_id), timeout=ctx.remaining())
        return _exit_status(resp)


class ContainerdContainer(RuntimeContainer):
    def __init__(self, runtime: "ContainerdRuntime", record):
        self._runtime = runtime
        self._record = record

    @property
    def id(self) -> str:
        return self._record.id

    @log_to_file(logger)
    def image(self, ctx) -> RuntimeImage:
        return self._runtime.get_image(ctx, self._record.image)

    @log_to_file(logger)
    def new_task(self, ctx) -> RuntimeTask:
        stubs = self._runtime.stubs(ctx)
        with _rpc_errors():
            mounts = stubs.snapshots.Mounts(
                snapshots_pb2.MountsRequest(snapshotter=self._record.snapshotter,
                                            key=self._record.snapshot_key),
                timeout=ctx.remaining()).mounts
            # no stdin/stdout/stderr paths: the task gets containerd's default I/O
            resp = stubs.tasks.Create(
                tasks_pb2.CreateTaskRequest(container_id=self.id, rootfs=mounts),
                timeout=ctx.remaining())
        return ContainerdTask(self._runtime, self.id, resp.pid)

    @log_to_file(logger)
    def task(self, ctx) -> RuntimeTask:
        with _rpc_errors():
            resp = self._runtime.stubs(ctx).tasks.Get(
                tasks_pb2.GetRequest(container_id=self.id), timeout=ctx.remaining())
        return ContainerdTask(self._runtime, self.id, resp.process.pid)


# ========== Client ==========
class ContainerdRuntime(RuntimeClient):
    @log_to_file(logger)
    def __init__(self, socket: str, snapshotter: str = DEFAULT_SNAPSHOTTER,
                 runtime: str = DEFAULT_RUNTIME, ctr_path: str = "ctr"):
        self.target = normalize_unix_target(socket)
        self.socket_path = self.target[len("unix://"):]
        self.snapshotter = snapshotter
        self.runtime = runtime
        self.ctr_path = ctr_path
        self.platform = detect_platform()
        self.channel = grpc.insecure_channel(self.target)

    def stubs(self, ctx) -> _Stubs:
        return _Stubs(namespaced_channel(self.channel, ctx.namespace))

    # ========== Images ==========
    @log_to_file(logger)
    def pull(self, ctx, ref: str) -> RuntimeImage:
        # ctr fetches and unpacks into the default snapshotter in one step
        cmd = [self.ctr_path, "--address", self.socket_path, "--namespace", ctx.namespace,
               "images", "pull", "--snapshotter", self.snapshotter, ref]
        try:
            res = subprocess.run(cmd, capture_output=True, text=True, timeout=ctx.remaining())
        except subprocess.TimeoutExpired as e:
            raise RuntimeClientError(grpc.StatusCode.DEADLINE_EXCEEDED, f"pull {ref} timed out") from e
        except OSError as e:
            raise RuntimeClientError(grpc.StatusCode.UNAVAILABLE, f"cannot run {self.ctr_path}: {e}") from e
        if res.returncode != 0:
            detail = (res.stderr or res.stdout).strip()
            raise RuntimeClientError(grpc.StatusCode.UNKNOWN, f"pull {ref} failed: {detail}")
        return self.get_image(ctx, ref)

    @log_to_file(logger)
    def get_image(self, ctx, name: str) -> RuntimeImage:
        with _rpc_errors():
            resp = self.stubs(ctx).images.Get(images_pb2.GetImageRequest(name=name), timeout=ctx.remaining())
        return ContainerdImage(resp.image)

    @log_to_file(logger)
    def list_images(self, ctx, filter: str = "") -> List[RuntimeImage]:
        with _rpc_errors():
            resp = self.stubs(ctx).images.List(
                images_pb2.ListImagesRequest(filters=_filters(filter)), timeout=ctx.remaining())
        return [ContainerdImage(i) for i in resp.images]

    @log_to_file(logger)
    def delete_image(self, ctx, name: str) -> None:
        with _rpc_errors():
            self.stubs(ctx).images.Delete(images_pb2.DeleteImageRequest(name=name), timeout=ctx.remaining())

    # ========== Containers ==========
    def _read_blob_json(self, ctx, stubs: _Stubs, digest: str) -> dict:
        with _rpc_errors():
            stream = stubs.content.Read(content_pb2.ReadContentRequest(digest=digest), timeout=ctx.remaining())
            data = b"".join(part.data for part in stream if part.data)
        return json.loads(data.decode("utf-8"))

    @log_to_file(logger)
    def _image_config(self, ctx, stubs: _Stubs, image: ContainerdImage) -> dict:
        target = image.target
        digest = target.digest
        if is_index(target.media_type):
            index = self._read_blob_json(ctx, stubs, digest)
            digest = select_manifest(index, self.platform)["digest"]
        elif not is_manifest(target.media_type):
            raise RuntimeClientError(grpc.StatusCode.FAILED_PRECONDITION,
                                     f"unsupported image media type {target.media_type}")
        manifest = self._read_blob_json(ctx, stubs, digest)
        return self._read_blob_json(ctx, stubs, manifest["config"]["digest"])

    @log_to_file(logger)
    def new_container(self, ctx, id: str, image: RuntimeImage) -> RuntimeContainer:
        stubs = self.stubs(ctx)
        if not isinstance(image, ContainerdImage):
            image = self.get_image(ctx, image.name)
        try:
            config = self._image_config(ctx, stubs, image)
            layers = diff_ids(config)
            if not layers:
                raise ValueError("image config lists no layers")
            spec = OciSpecBuilder(hostname=id).build(config)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # malformed or unrunnable image metadata, JSONDecodeError included
            raise RuntimeClientError(grpc.StatusCode.FAILED_PRECONDITION,
                                     f"image {image.name} cannot back a container: {e}") from e

        with _rpc_errors():
            stubs.snapshots.Prepare(
                snapshots_pb2.PrepareSnapshotRequest(snapshotter=self.snapshotter, key=id,
                                                     parent=compute_chain_id(layers)),
                timeout=ctx.remaining())
        try:
            with _rpc_errors():
                resp = stubs.containers.Create(
                    containers_pb2.CreateContainerRequest(
                        container=containers_pb2.Container(
                            id=id,
                            image=image.name,
                            spec=spec,
                            runtime=containers_pb2.Container.Runtime(name=self.runtime),
                            snapshotter=self.snapshotter,
                            snapshot_key=id,
                        )
                    ),
                    timeout=ctx.remaining())
        except RuntimeClientError:
            try:
                self._remove_snapshot(ctx, stubs, self.snapshotter, id)
            except RuntimeClientError as cleanup:
                logger.error("snapshot cleanup failed", id=id, error=str(cleanup))
            raise
        return ContainerdContainer(self, resp.container)

    @log_to_file(logger)
    def load_container(self, ctx, id: str) -> RuntimeContainer:
        with _rpc_errors():
            resp = self.stubs(ctx).containers.Get(containers_pb2.GetContainerRequest(id=id), timeout=ctx.remaining())
        return ContainerdContainer(self, resp.container)

    @log_to_file(logger)
    def list_containers(self, ctx, filter: str = "") -> List[RuntimeContainer]:
        with _rpc_errors():
            resp = self.stubs(ctx).containers.List(
                containers_pb2.ListContainersRequest(filters=_filters(filter)), timeout=ctx.remaining())
        return [ContainerdContainer(self, c) for c in resp.containers]

    @log_to_file(logger)
    def delete_container(self, ctx, id: str) -> None:
        stubs = self.stubs(ctx)
        with _rpc_errors():
            record = stubs.containers.Get(containers_pb2.GetContainerRequest(id=id), timeout=ctx.remaining()).container
            stubs.containers.Delete(containers_pb2.DeleteContainerRequest(id=id), timeout=ctx.remaining())
        if record.snapshot_key:
            self._remove_snapshot(ctx, stubs, record.snapshotter or self.snapshotter, record.snapshot_key)

    @log_to_file(logger)
    def _remove_snapshot(self, ctx, stubs: _Stubs, snapshotter: str, key: str) -> None:
        try:
            stubs.snapshots.Remove(snapshots_pb2.RemoveSnapshotRequest(snapshotter=snapshotter, key=key),
                                   timeout=ctx.remaining())
        except grpc.RpcError as e:
            if e.code() != grpc.StatusCode.NOT_FOUND:
                raise RuntimeClientError.from_rpc_error(e) from e
            logger.debug("snapshot already removed", snapshotter=snapshotter, key=key)

    def close(self) -> None:
        self.channel.close()


def _filters(filter: str) -> List[str]:
    return [filter] if filter else []


def _exit_status(resp) -> ExitStatus:
    exited_at = None
    if resp.HasField("exited_at"):
        exited_at = resp.exited_at.ToDatetime(tzinfo=timezone.utc)
    return ExitStatus(code=int(resp.exit_status), exited_at=exited_at)
