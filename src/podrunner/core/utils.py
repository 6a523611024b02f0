from __future__ import annotations
import json
import uuid
from typing import Dict


def new_runner_id() -> str:
    return str(uuid.uuid4())


def new_job_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def encode_request(function: str, payload: str) -> str:
    """
    JSON document handed to the job: payload is embedded as JSON when it
    parses as such, otherwise as a plain string.
    """
    try:
        body = json.loads(payload)
    except ValueError:
        body = payload
    return json.dumps({"function": function, "payload": body})


def label_selector(labels: Dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
