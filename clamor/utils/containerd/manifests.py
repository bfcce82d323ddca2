"""
manifests.py
Pure helpers for walking OCI / Docker image metadata.

Nothing here talks to containerd; blobs are passed in as decoded JSON so the
selection and chain-id rules can be exercised directly.
"""

import hashlib
import os
from typing import Dict, List, Optional, Tuple

from clamor.logpkg.log_clamor import LogClamor, log_to_file

logger = LogClamor()

# ----- Media types -----
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

_ARCH_MAP = {
    "x86_64": "amd64", "amd64": "amd64",
    "aarch64": "arm64", "arm64": "arm64",
    "armv7l": "arm", "armv6l": "arm",
    "ppc64le": "ppc64le", "s390x": "s390x",
}


def is_index(media_type: str) -> bool:
    return media_type.endswith("image.index.v1+json") or media_type == DOCKER_LIST


def is_manifest(media_type: str) -> bool:
    return media_type.endswith("image.manifest.v1+json") or media_type == DOCKER_MANIFEST


@log_to_file(logger)
def detect_platform(machine: Optional[str] = None) -> Tuple[str, str]:
    """(os, architecture) of this host in OCI platform terms."""
    m = (machine if machine is not None else os.uname().machine).lower()
    return ("linux", _ARCH_MAP.get(m, m or "amd64"))


@log_to_file(logger)
def select_manifest(index: dict, platform: Tuple[str, str]) -> Dict:
    """
    Pick the manifest entry of an image index matching platform, falling back
    to the first entry when none matches.
    """
    manifests = index.get("manifests") or []
    if not manifests:
        raise ValueError("image index lists no manifests")
    want_os, want_arch = platform
    for m in manifests:
        plat = m.get("platform") or {}
        if plat.get("os") == want_os and plat.get("architecture") == want_arch:
            return m
    return manifests[0]


@log_to_file(logger)
def compute_chain_id(diff_ids: List[str]) -> str:
    if not diff_ids:
        raise ValueError("chain id needs at least one diff_id")
    chain = diff_ids[0]
    for d in diff_ids[1:]:
        h = hashlib.sha256()
        h.update(chain.encode("utf-8"))
        h.update(b" ")
        h.update(d.encode("utf-8"))
        chain = f"sha256:{h.hexdigest()}"
    return chain


def diff_ids(config: dict) -> List[str]:
    return list((config.get("rootfs") or {}).get("diff_ids") or [])
