import logging
import posixpath
import shlex
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, TYPE_CHECKING

import yaml

from .config import (
    CHECKS_FILE, CONFIGURATION_FILE, DRIVER_FILE, EXTRA_ENV, INTERPRETER, RESULT_FILE,
)
from .driver import build_driver_script
from .errors import ScanValidationError
from .models import ConfigurationPolicy, ScriptOutput
from .runners import TaskRunner
from .storage import resolve_input_files, write_files

if TYPE_CHECKING:
    from .context import RunContext
    from .scan import Scan

logger = logging.getLogger("sodascan.assembler")


def to_yaml(data: Any) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


@dataclass
class CommandsWrapper:
    """A staged working directory plus the command that runs in it."""
    working_dir: str
    commands: List[str]
    task_runner: TaskRunner
    env: Dict[str, str] = field(default_factory=dict)
    interpreter: List[str] = field(default_factory=lambda: list(INTERPRETER))
    output_files: List[str] = field(default_factory=lambda: [RESULT_FILE])
    container_image: Optional[str] = None
    files: Dict[str, str] = field(default_factory=dict)
    configuration: Dict[str, Any] = field(default_factory=dict)

    def command_line(self) -> List[str]:
        return self.interpreter + ["\n".join(self.commands)]

    def run(self, run_context: "RunContext") -> ScriptOutput:
        return self.task_runner.run(self, run_context)


def virtualenv_command(working_dir: str, requirements: List[str]) -> str:
    lines = [
        "set -o errexit",
        f"python -m venv --system-site-packages {shlex.quote(working_dir)} > /dev/null",
    ]
    if requirements:
        lines.append("./bin/pip install pip --upgrade > /dev/null")
        lines.append("./bin/pip install " + " ".join(shlex.quote(r) for r in requirements) + " > /dev/null")
    return "\n".join(lines)


def build_commands(working_dir: str, requirements: Optional[List[str]]) -> List[str]:
    driver = shlex.quote(posixpath.join(working_dir, DRIVER_FILE))
    if requirements is not None:
        return [virtualenv_command(working_dir, requirements), f"./bin/python {driver}"]
    return [f"python {driver}"]


class ExecutionAssembler:
    """
    Prepares one scan execution: renders the task properties, stages
    configuration.yml / checks.yml / main.py (plus user input files) in a fresh
    working directory and returns the command to run there. Never starts the process.
    """

    def __init__(self, run_context: "RunContext"):
        self.run_context = run_context

    def render_configuration(self, scan: "Scan", extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        rendered = self.run_context.render(scan.configuration or {}, extra)
        if not isinstance(rendered, dict):
            raise ScanValidationError("configuration must be a mapping")
        return rendered

    def prepare(self, scan: "Scan", task_runner: TaskRunner) -> CommandsWrapper:
        ctx = self.run_context

        # every property may refer to {{ workingDir }}, the path the command sees
        host_dir = ctx.new_working_dir()
        command_dir = task_runner.working_dir_path(host_dir)
        try:
            return self._stage(scan, task_runner, host_dir, command_dir)
        except Exception:
            ctx.remove_working_dir(host_dir)
            raise

    def _stage(self, scan: "Scan", task_runner: TaskRunner, host_dir: str, command_dir: str) -> CommandsWrapper:
        ctx = self.run_context
        extra = {"workingDir": command_dir}

        # 1. Render everything before writing any file
        configuration = self.render_configuration(scan, extra)
        checks = ctx.render(scan.checks, extra)
        variables = ctx.render(scan.variables, extra) if scan.variables is not None else None
        env = {str(k): str(v) for k, v in (ctx.render(scan.env, extra) or {}).items()}
        requirements = [str(r) for r in ctx.render(scan.requirements, extra)] if scan.requirements is not None else None
        container_image = ctx.render(scan.container_image, extra) if scan.container_image else None
        verbose = scan.verbose
        if isinstance(verbose, str):
            verbose = str(ctx.render(verbose, extra)).strip().lower() == "true"

        if not configuration and scan.empty_configuration == ConfigurationPolicy.REJECT:
            raise ScanValidationError("configuration must not be empty")

        input_files = {}
        if scan.input_files:
            input_files = resolve_input_files(ctx.render(scan.input_files, extra), ctx.storage)

        # 2. Generate files against the path the command will see
        files = dict(input_files)
        if configuration:
            files[CONFIGURATION_FILE] = to_yaml(configuration)
        files[CHECKS_FILE] = to_yaml(checks)
        files[DRIVER_FILE] = build_driver_script(
            command_dir,
            verbose=bool(verbose),
            variables=variables,
            with_configuration=bool(configuration),
        )

        # 3. Stage
        write_files(host_dir, files)
        logger.debug("Staged %s in %s", sorted(files), host_dir)
        ctx.log_event("FILES_STAGED", {"working_dir": host_dir, "files": sorted(files)})

        full_env = dict(env)
        full_env.update(EXTRA_ENV)

        return CommandsWrapper(
            working_dir=host_dir,
            commands=build_commands(command_dir, requirements),
            task_runner=task_runner,
            env=full_env,
            container_image=container_image,
            files=files,
            configuration=configuration,
        )
