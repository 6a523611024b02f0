from __future__ import annotations
import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from kubernetes.utils import parse_quantity

from ..core.errors import ConfigError
from ..core.models import JobSpec
from ..core.utils import new_job_name

log = structlog.get_logger(__name__)

DEFAULT_TEMPLATE = Path(__file__).resolve().parent.parent / "templates" / "pod.template.yaml"


def load_template(path: Optional[Path] = None, runner_name: str = "") -> Dict[str, Any]:
    """Read the pod template (YAML or JSON) and check it is a pod-shaped mapping."""
    p = Path(path) if path else DEFAULT_TEMPLATE
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"pod template not found: {p}", runner_name=runner_name, cause=e)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"pod template {p} is unreadable: {e}", runner_name=runner_name, cause=e)

    if not isinstance(doc, dict):
        raise ConfigError(f"pod template {p} must be a mapping", runner_name=runner_name)
    containers = (doc.get("spec") or {}).get("containers")
    if not isinstance(containers, list) or not containers:
        raise ConfigError(f"pod template {p} has no spec.containers", runner_name=runner_name)
    return doc


class SpecBuilder:
    def __init__(
        self,
        template_path: Optional[Path] = None,
        target_container: str = "runner",
        name_prefix: str = "podrunner",
        runner_name: str = "",
    ):
        self.runner_name = runner_name
        self.template_path = template_path
        self.target_container = target_container
        self.name_prefix = name_prefix

    def build(
        self,
        image: str,
        args: List[str],
        resources: Dict[str, str],
        labels: Dict[str, str],
    ) -> JobSpec:
        template = load_template(self.template_path, runner_name=self.runner_name)
        manifest = copy.deepcopy(template)

        requests = {}
        for key, quantity in resources.items():
            try:
                parse_quantity(quantity)
            except ValueError as e:
                raise ConfigError(
                    f"invalid {key} quantity '{quantity}'", runner_name=self.runner_name, cause=e
                )
            requests[key] = str(quantity)

        target = next(
            (c for c in manifest["spec"]["containers"]
             if isinstance(c, dict) and c.get("name") == self.target_container),
            None,
        )
        if target is None:
            raise ConfigError(
                f"container '{self.target_container}' not found in pod template",
                runner_name=self.runner_name,
            )

        name = new_job_name(self.name_prefix)
        metadata = manifest.get("metadata") or {}
        manifest["metadata"] = metadata
        metadata["name"] = name
        metadata["labels"] = {**(metadata.get("labels") or {}), **labels}

        target["image"] = image
        target["args"] = list(args)
        target["resources"] = {**(target.get("resources") or {}), "requests": requests}

        log.debug("pod_spec_built", pod=name, image=image)
        return JobSpec(
            name=name,
            labels=dict(labels),
            image=image,
            args=list(args),
            resources=dict(requests),
            manifest=manifest,
        )
