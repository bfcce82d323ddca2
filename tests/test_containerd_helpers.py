import collections
import hashlib
import json

import pytest

from clamor.utils.containerd.grpc_ns import NAMESPACE_HEADER, NamespaceInterceptor
from clamor.utils.containerd.manifests import (
    DOCKER_LIST,
    DOCKER_MANIFEST,
    OCI_INDEX,
    OCI_MANIFEST,
    compute_chain_id,
    detect_platform,
    diff_ids,
    is_index,
    is_manifest,
    select_manifest,
)
from clamor.utils.containerd.oci_spec import OCI_SPEC_TYPEURL, OciSpecBuilder

# ========== manifests ==========
INDEX = {
    "manifests": [
        {"mediaType": OCI_MANIFEST, "digest": "sha256:arm", "size": 10,
         "platform": {"os": "linux", "architecture": "arm64"}},
        {"mediaType": OCI_MANIFEST, "digest": "sha256:amd", "size": 20,
         "platform": {"os": "linux", "architecture": "amd64"}},
    ]
}


def test_media_types():
    assert is_index(OCI_INDEX) and is_index(DOCKER_LIST)
    assert is_manifest(OCI_MANIFEST) and is_manifest(DOCKER_MANIFEST)
    assert not is_index(OCI_MANIFEST)
    assert not is_manifest(DOCKER_LIST)


@pytest.mark.parametrize("machine, arch", [("x86_64", "amd64"), ("aarch64", "arm64"), ("armv7l", "arm"),
                                           ("riscv64", "riscv64")])
def test_detect_platform(machine, arch):
    assert detect_platform(machine) == ("linux", arch)


def test_select_manifest_by_platform():
    assert select_manifest(INDEX, ("linux", "amd64"))["digest"] == "sha256:amd"
    assert select_manifest(INDEX, ("linux", "arm64"))["digest"] == "sha256:arm"


def test_select_manifest_falls_back_to_first():
    assert select_manifest(INDEX, ("linux", "s390x"))["digest"] == "sha256:arm"


def test_select_manifest_empty_index():
    with pytest.raises(ValueError):
        select_manifest({"manifests": []}, ("linux", "amd64"))


def test_chain_id_single_layer_is_diff_id():
    assert compute_chain_id(["sha256:a"]) == "sha256:a"


def test_chain_id_of_layers():
    expected = "sha256:" + hashlib.sha256(b"sha256:a sha256:b").hexdigest()
    assert compute_chain_id(["sha256:a", "sha256:b"]) == expected
    third = "sha256:" + hashlib.sha256(f"{expected} sha256:c".encode()).hexdigest()
    assert compute_chain_id(["sha256:a", "sha256:b", "sha256:c"]) == third


def test_chain_id_needs_layers():
    with pytest.raises(ValueError):
        compute_chain_id([])


def test_diff_ids():
    assert diff_ids({"rootfs": {"type": "layers", "diff_ids": ["sha256:a"]}}) == ["sha256:a"]
    assert diff_ids({}) == []


# ========== OCI spec ==========
HELLO_CONFIG = {
    "architecture": "amd64",
    "config": {
        "Env": ["PATH=/usr/local/bin:/usr/bin", "LANG=C.UTF-8"],
        "Cmd": ["/hello"],
        "WorkingDir": "",
    },
    "rootfs": {"type": "layers", "diff_ids": ["sha256:a"]},
}


def test_spec_process_from_image_config():
    spec = OciSpecBuilder(hostname="c1").build_dict(HELLO_CONFIG)
    assert spec["process"]["args"] == ["/hello"]
    assert spec["process"]["cwd"] == "/"
    assert "PATH=/usr/local/bin:/usr/bin" in spec["process"]["env"]
    assert "LANG=C.UTF-8" in spec["process"]["env"]
    assert spec["hostname"] == "c1"
    assert spec["root"] == {"path": "rootfs", "readonly": False}
    assert {"type": "pid"} in spec["linux"]["namespaces"]


def test_spec_entrypoint_and_cmd_are_joined():
    config = {"config": {"Entrypoint": ["/bin/sh", "-c"], "Cmd": ["echo hi"], "WorkingDir": "/app", "User": "1000:1000"}}
    spec = OciSpecBuilder().build_dict(config, env={"A": "1"})
    assert spec["process"]["args"] == ["/bin/sh", "-c", "echo hi"]
    assert spec["process"]["cwd"] == "/app"
    assert spec["process"]["user"] == {"uid": 1000, "gid": 1000}
    assert "A=1" in spec["process"]["env"]


def test_spec_named_user_falls_back_to_root():
    spec = OciSpecBuilder().build_dict({"config": {"Cmd": ["x"], "User": "nobody"}})
    assert spec["process"]["user"] == {"uid": 0, "gid": 0}


def test_spec_requires_a_command():
    with pytest.raises(ValueError):
        OciSpecBuilder().build_dict({"config": {}})


def test_build_wraps_spec_in_any():
    packed = OciSpecBuilder(hostname="c1").build(HELLO_CONFIG)
    assert packed.type_url == OCI_SPEC_TYPEURL
    assert json.loads(packed.value.decode("utf-8"))["process"]["args"] == ["/hello"]


# ========== namespace interceptor ==========
CallDetails = collections.namedtuple("CallDetails", ["method", "timeout", "metadata", "credentials"])


def test_interceptor_injects_namespace():
    seen = {}

    def continuation(details, request):
        seen["details"] = details
        return "ok"

    interceptor = NamespaceInterceptor("clamor-testing")
    details = CallDetails("/containerd.services.images.v1.Images/Get", 5.0, [("x-trace", "1")], None)
    assert interceptor.intercept_unary_unary(continuation, details, object()) == "ok"
    assert seen["details"].metadata == [("x-trace", "1"), (NAMESPACE_HEADER, "clamor-testing")]
    assert seen["details"].timeout == 5.0


def test_interceptor_replaces_existing_namespace():
    seen = {}

    def continuation(details, request):
        seen["details"] = details

    details = CallDetails("/m", None, [(NAMESPACE_HEADER, "other")], None)
    NamespaceInterceptor("default").intercept_unary_stream(continuation, details, object())
    assert seen["details"].metadata == [(NAMESPACE_HEADER, "default")]
