from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigError


@dataclass(frozen=True)
class RunnerConfig:
    delete_pods_after_completion: bool
    image: str
    cpu: str
    memory: str
    timeout_ms: Optional[int]
    pod_template: Optional[Path] = None
    response_file: str = "/output/response.txt"
    target_container: str = "runner"
    sidecar_container: str = "tailer"
    name_prefix: str = "podrunner"
    owner: str = "podrunner"


class Settings(BaseSettings):
    # ---- cluster ----
    namespace: str = "default"
    context: Optional[str] = None

    # ---- runner ----
    runner_name: str = "kubernetes"
    image: str = "ghcr.io/podrunner/runner:latest"
    cpu: str = "500m"
    memory: str = "256Mi"
    timeout_ms: Optional[int] = None
    delete_pods_after_completion: bool = True
    max_workers: int = 8

    # ---- pod contract ----
    pod_template: Optional[Path] = None  # None -> packaged template
    response_file: str = "/output/response.txt"
    target_container: str = "runner"
    sidecar_container: str = "tailer"
    name_prefix: str = "podrunner"

    log_level: str = "INFO"

    # env prefix PODRUNNER_*
    model_config = SettingsConfigDict(env_prefix="PODRUNNER_", extra="ignore")

    def runner_config(self) -> RunnerConfig:
        return RunnerConfig(
            delete_pods_after_completion=self.delete_pods_after_completion,
            image=self.image,
            cpu=self.cpu,
            memory=self.memory,
            timeout_ms=self.timeout_ms,
            pod_template=self.pod_template,
            response_file=self.response_file,
            target_container=self.target_container,
            sidecar_container=self.sidecar_container,
            name_prefix=self.name_prefix,
        )


# YAML keys accepted in camelCase as well as snake_case
_ALIASES = {
    "deletePodsAfterCompletion": "delete_pods_after_completion",
    "timeoutMs": "timeout_ms",
    "podTemplate": "pod_template",
    "responseFile": "response_file",
    "targetContainer": "target_container",
    "sidecarContainer": "sidecar_container",
    "namePrefix": "name_prefix",
    "maxWorkers": "max_workers",
    "runnerName": "runner_name",
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid configuration file {path}: {e}", cause=e)
    if not isinstance(data, dict):
        raise ConfigError(f"configuration file {path} must contain a mapping")
    return data


def load_settings(path: Optional[Path] = None) -> Settings:
    # 0) base from env PODRUNNER_*
    s = Settings()

    # 1) conf/runner.yaml (or PODRUNNER_CONF)
    conf = path or Path(os.environ.get("PODRUNNER_CONF", "conf/runner.yaml"))
    data = _read_yaml(conf)

    # sections are optional: keys may sit at top level or under kubernetes:/runner:
    flat: Dict[str, Any] = {}
    for section in ("kubernetes", "runner"):
        block = data.get(section) or {}
        if not isinstance(block, dict):
            raise ConfigError(f"section '{section}' in {conf} must be a mapping")
        flat.update(block)
    flat.update({k: v for k, v in data.items() if k not in ("kubernetes", "runner")})

    update: Dict[str, Any] = {}
    for key, value in flat.items():
        name = _ALIASES.get(key, key)
        if name in Settings.model_fields:
            update[name] = value

    # 2) validate the merged values through the model
    merged = {**s.model_dump(), **update}
    return Settings.model_validate(merged)
