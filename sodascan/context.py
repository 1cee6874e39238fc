import base64
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Union

from .audit import AuditTrail
from .errors import TemplateRenderError
from .storage import InternalStorage
from .templating import Renderer


@dataclass(frozen=True)
class Counter:
    name: str
    value: Union[int, float]
    tags: Dict[str, str] = field(default_factory=dict)


class RunContext:
    """
    Everything a task needs from its host for one execution:
    variable rendering, secrets, metrics, internal storage, logging and working directories.
    """

    def __init__(self, variables: Optional[Dict[str, Any]] = None,
                 secrets: Optional[Dict[str, str]] = None,
                 storage: Optional[InternalStorage] = None,
                 audit: Optional[AuditTrail] = None,
                 task_id: str = "scan",
                 workdir_base: Optional[str] = None,
                 keep_workdir: bool = False):
        self.run_id = uuid.uuid4().hex
        self.task_id = task_id
        self.variables = variables or {}
        self.secrets = secrets
        self.storage = storage or InternalStorage(os.path.join(tempfile.gettempdir(), "sodascan", "storage"))
        self.audit = audit
        self.workdir_base = workdir_base
        self.keep_workdir = keep_workdir
        self.metrics: List[Counter] = []
        self.logger = logging.getLogger(f"sodascan.task.{task_id}")
        self.renderer = Renderer(self.variables, self.secret)
        self._working_dirs: List[str] = []

    def secret(self, name: str) -> str:
        """Explicit secrets first, then base64 text in the `SECRET_<NAME>` environment variable."""
        if self.secrets is not None and name in self.secrets:
            return self.secrets[name]
        encoded = os.environ.get(f"SECRET_{name}")
        if encoded is None:
            raise KeyError(name)
        try:
            return base64.b64decode(encoded).decode("utf-8")
        except ValueError as e:
            raise TemplateRenderError(f"secret('{name}')", f"SECRET_{name} does not hold base64 text: {e}") from e

    def render(self, value: Any, extra: Optional[Dict[str, Any]] = None) -> Any:
        return self.renderer.render(value, extra)

    def metric(self, counter: Counter) -> None:
        self.metrics.append(counter)
        self.logger.debug("Metric %s=%s %s", counter.name, counter.value, counter.tags)
        self.log_event("METRIC", {"name": counter.name, "value": counter.value, "tags": counter.tags})

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.log_event(event_type, dict(data, task_id=self.task_id))

    def new_working_dir(self) -> str:
        if self.workdir_base:
            os.makedirs(self.workdir_base, exist_ok=True)
        path = tempfile.mkdtemp(prefix=f"{self.task_id}-", dir=self.workdir_base)
        self._working_dirs.append(path)
        return path

    def remove_working_dir(self, path: str) -> None:
        shutil.rmtree(path, ignore_errors=True)
        if path in self._working_dirs:
            self._working_dirs.remove(path)

    def cleanup(self) -> None:
        if self.keep_workdir:
            self.logger.info("Keeping working directories: %s", ", ".join(self._working_dirs))
            return
        for path in self._working_dirs:
            shutil.rmtree(path, ignore_errors=True)
        self._working_dirs = []
