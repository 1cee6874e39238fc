# Central configuration: defaults, environment settings and task definition loading.
import json
import os
import tempfile
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

import yaml

from .errors import ScanValidationError

DEFAULT_IMAGE = "sodadata/soda-core"
DATA_SOURCE_NAME = "kestra"

CONFIGURATION_FILE = "configuration.yml"
CHECKS_FILE = "checks.yml"
DRIVER_FILE = "main.py"
RESULT_FILE = "result.json"

# Path the working directory is mounted at inside a container
CONTAINER_WORKING_DIR = "/sodascan/working-dir"

INTERPRETER = ["/bin/sh", "-c"]

EXTRA_ENV = {
    "PYTHONUNBUFFERED": "true",
    "PIP_ROOT_USER_ACTION": "ignore",
}

TASK_TYPES = ("sodascan.Scan", "io.kestra.plugin.soda.Scan")

# camelCase keys of a task definition -> Scan field names
TASK_KEYS = {
    "id": "id",
    "configuration": "configuration",
    "checks": "checks",
    "variables": "variables",
    "verbose": "verbose",
    "requirements": "requirements",
    "env": "env",
    "inputFiles": "input_files",
    "containerImage": "container_image",
    "taskRunner": "task_runner",
    "emptyConfiguration": "empty_configuration",
    "runner": "runner",
    "docker": "docker",
    "dockerOptions": "docker_options",
}


def _as_bool(value: Optional[str]) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    storage_dir: str
    workdir_base: str
    keep_workdir: bool = False
    log_level: str = "INFO"
    audit_key: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        tmp = tempfile.gettempdir()
        return cls(
            storage_dir=env.get("SODASCAN_STORAGE_DIR", os.path.join(tmp, "sodascan", "storage")),
            workdir_base=env.get("SODASCAN_WORKDIR_BASE", os.path.join(tmp, "sodascan", "runs")),
            keep_workdir=_as_bool(env.get("SODASCAN_KEEP_WORKDIR")),
            log_level=env.get("SODASCAN_LOG_LEVEL", "INFO").upper(),
            audit_key=env.get("SODASCAN_AUDIT_KEY") or None,
        )


def normalize_task(item: Dict[str, Any]) -> Dict[str, Any]:
    """Maps a task definition (camelCase or snake_case keys) onto Scan keyword arguments."""
    fields = set(TASK_KEYS.values())
    kwargs = {}
    for key, value in item.items():
        if key == "type":
            continue
        name = TASK_KEYS.get(key, key)
        if name not in fields:
            raise ScanValidationError(f"Unknown task property '{key}'")
        kwargs[name] = value

    # inputFiles may be given as a JSON string
    if isinstance(kwargs.get("input_files"), str):
        kwargs["input_files"] = json.loads(kwargs["input_files"])
    return kwargs


def load_tasks(path: str) -> List[Dict[str, Any]]:
    """
    Loads scan task definitions from a YAML file.
    Accepts a single task mapping, a list of tasks, or a flow with a `tasks` list.
    Tasks of another type are ignored.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []

    if isinstance(data, dict):
        items = data.get("tasks", [data])
    else:
        items = data

    tasks = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ScanValidationError(f"Task #{idx} in {path} is not a mapping")
        task_type = item.get("type", TASK_TYPES[0])
        if task_type not in TASK_TYPES:
            continue
        item = dict(item)
        item.setdefault("id", f"scan_{idx}")
        tasks.append(normalize_task(item))
    return tasks
