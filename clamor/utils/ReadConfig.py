import json
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from clamor.utils.singleton import Singleton

DEFAULT_CONFIG_PATH = os.environ.get("CLAMOR_CONFIG", "config/config.json")


class ConfigError(Exception):
    pass


class NodeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    name: str = "clamor-node"
    containerd_path: str = "/run/containerd/containerd.sock"
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8080, gt=0, lt=65536)
    request_timeout: float = Field(default=30.0, gt=0)
    kill_timeout: float = Field(default=10.0, gt=0)
    snapshotter: str = "overlayfs"
    ctr_path: str = "ctr"


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s %(levelname)s %(name)s %(message)s"


class ClamorConfig(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)
    node: NodeConfig = Field(default_factory=NodeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class _ReadConfig:

    def __init__(self, file_path: Optional[str] = None) -> None:
        self.file_path = file_path or DEFAULT_CONFIG_PATH
        self._config_data: Optional[ClamorConfig] = None
        self.load_config()

    def load_config(self) -> None:
        try:
            with open(self.file_path, 'r') as file:
                raw = json.load(file)
        except OSError as e:
            raise ConfigError(f"failed to open {self.file_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"failed to decode {self.file_path}: {e}") from e

        try:
            self._config_data = ClamorConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"invalid configuration in {self.file_path}: {e}") from e

    @property
    def config(self) -> ClamorConfig:
        return self._config_data

    @property
    def node_config(self) -> NodeConfig:
        return self._config_data.node

    @property
    def logging_config(self) -> LoggingConfig:
        return self._config_data.logging


class ReadConfig(_ReadConfig, metaclass=Singleton):
    pass
