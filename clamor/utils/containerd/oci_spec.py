"""
oci_spec.py
Builds the OCI runtime spec stored on a containerd container record.

The process section is derived from the image config (Entrypoint, Cmd, Env,
WorkingDir, User); the rest is the stock Linux default used by `ctr run`.
"""

import json
from typing import Dict, List, Optional

from google.protobuf import any_pb2

from clamor.logpkg.log_clamor import LogClamor, log_to_file

logger = LogClamor()

OCI_SPEC_TYPEURL = "types.containerd.io/opencontainers/runtime-spec/1/Spec"
OCI_VERSION = "1.1.0"
DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

DEFAULT_CAPABILITIES = [
    "CAP_CHOWN", "CAP_DAC_OVERRIDE", "CAP_FSETID", "CAP_FOWNER", "CAP_MKNOD",
    "CAP_NET_RAW", "CAP_SETGID", "CAP_SETUID", "CAP_SETFCAP", "CAP_SETPCAP",
    "CAP_NET_BIND_SERVICE", "CAP_SYS_CHROOT", "CAP_KILL", "CAP_AUDIT_WRITE",
]

DEFAULT_NAMESPACES = ["pid", "ipc", "uts", "mount", "network"]


def _default_mounts() -> List[Dict]:
    return [
        {"destination": "/proc", "type": "proc", "source": "proc",
         "options": ["nosuid", "noexec", "nodev"]},
        {"destination": "/dev", "type": "tmpfs", "source": "tmpfs",
         "options": ["nosuid", "strictatime", "mode=755", "size=65536k"]},
        {"destination": "/dev/pts", "type": "devpts", "source": "devpts",
         "options": ["nosuid", "noexec", "newinstance", "ptmxmode=0666", "mode=0620", "gid=5"]},
        {"destination": "/dev/shm", "type": "tmpfs", "source": "shm",
         "options": ["nosuid", "noexec", "nodev", "mode=1777", "size=65536k"]},
        {"destination": "/dev/mqueue", "type": "mqueue", "source": "mqueue",
         "options": ["nosuid", "noexec", "nodev"]},
        {"destination": "/sys", "type": "sysfs", "source": "sysfs",
         "options": ["nosuid", "noexec", "nodev", "ro"]},
        {"destination": "/run", "type": "tmpfs", "source": "tmpfs",
         "options": ["nosuid", "strictatime", "mode=755", "size=65536k"]},
    ]


def _user(value: str) -> Dict[str, int]:
    # only numeric uid[:gid] can be resolved without reading the rootfs
    uid, _, gid = (value or "").partition(":")
    if uid.isdigit() and (not gid or gid.isdigit()):
        return {"uid": int(uid), "gid": int(gid or 0)}
    return {"uid": 0, "gid": 0}


def _merge_env(image_env: List[str], env: Optional[Dict[str, str]]) -> List[str]:
    merged: Dict[str, str] = {"PATH": DEFAULT_PATH}
    for entry in image_env or []:
        key, sep, value = entry.partition("=")
        if sep:
            merged[key] = value
    if env:
        merged.update(env)
    return [f"{k}={v}" for k, v in merged.items()]


class OciSpecBuilder:
    def __init__(self, hostname: Optional[str] = None):
        self.hostname = hostname or ""

    @log_to_file(logger)
    def build_dict(self, image_config: dict, env: Optional[Dict[str, str]] = None,
                   args: Optional[List[str]] = None) -> Dict:
        """
        image_config is the decoded image config blob; its "config" section
        follows the docker/OCI image spec. args overrides Entrypoint + Cmd.
        """
        cfg = (image_config or {}).get("config") or {}
        process_args = list(args) if args else (cfg.get("Entrypoint") or []) + (cfg.get("Cmd") or [])
        if not process_args:
            raise ValueError("image config defines no Entrypoint or Cmd")

        return {
            "ociVersion": OCI_VERSION,
            "process": {
                "terminal": False,
                "user": _user(cfg.get("User", "")),
                "cwd": cfg.get("WorkingDir") or "/",
                "args": process_args,
                "env": _merge_env(cfg.get("Env") or [], env),
                "capabilities": {
                    "bounding": list(DEFAULT_CAPABILITIES),
                    "effective": list(DEFAULT_CAPABILITIES),
                    "permitted": list(DEFAULT_CAPABILITIES),
                },
                "rlimits": [{"type": "RLIMIT_NOFILE", "hard": 1024, "soft": 1024}],
                "noNewPrivileges": True,
            },
            "root": {"path": "rootfs", "readonly": False},
            "hostname": self.hostname,
            "mounts": _default_mounts(),
            "linux": {
                "namespaces": [{"type": ns} for ns in DEFAULT_NAMESPACES],
                "resources": {"devices": [{"allow": False, "access": "rwm"}]},
                "maskedPaths": ["/proc/kcore", "/proc/keys", "/proc/timer_list", "/sys/firmware"],
                "readonlyPaths": ["/proc/bus", "/proc/fs", "/proc/irq", "/proc/sys", "/proc/sysrq-trigger"],
            },
        }

    def build(self, image_config: dict, env: Optional[Dict[str, str]] = None,
              args: Optional[List[str]] = None) -> any_pb2.Any:
        spec = self.build_dict(image_config, env=env, args=args)
        a = any_pb2.Any()
        a.type_url = OCI_SPEC_TYPEURL
        a.value = json.dumps(spec).encode("utf-8")
        return a
