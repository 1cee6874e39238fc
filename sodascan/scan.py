import json
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional, Union

from .assembler import ExecutionAssembler
from .config import DEFAULT_IMAGE
from .context import RunContext
from .errors import ScanResultError, ScanValidationError
from .interpreter import ResultInterpreter
from .models import ConfigurationPolicy, DockerOptions, Output, RunnerType
from .runners import DockerRunner, ProcessRunner, TaskRunner, runner_from_dict

logger = logging.getLogger("sodascan.scan")


def inject_defaults(options: Optional[DockerOptions]) -> DockerOptions:
    if options is None:
        return DockerOptions(image=DEFAULT_IMAGE, entry_point=[])
    return replace(
        options,
        image=options.image or DEFAULT_IMAGE,
        entry_point=[] if options.entry_point is None else options.entry_point,
    )


@dataclass
class Scan:
    """
    Runs a Soda scan and reports its results.

    `configuration` is written to configuration.yml and `checks` (SodaCL) to
    checks.yml; both are rendered first. The scan is bound to the `kestra`
    data source. With `requirements`, a virtualenv is built in the working
    directory before the scan runs.

    `runner`, `docker` and `docker_options` are deprecated: prefer `task_runner`.
    """
    id: str = "scan"
    configuration: Optional[Dict[str, Any]] = None
    checks: Optional[Dict[str, Any]] = None
    variables: Optional[Dict[str, Any]] = None
    verbose: Union[bool, str] = False
    requirements: Optional[List[str]] = None
    env: Optional[Dict[str, str]] = None
    input_files: Optional[Union[Dict[str, str], str]] = None
    container_image: str = DEFAULT_IMAGE
    task_runner: Optional[Union[TaskRunner, Dict[str, Any]]] = None
    empty_configuration: ConfigurationPolicy = ConfigurationPolicy.SKIP
    runner: Optional[RunnerType] = None
    docker: Optional[DockerOptions] = None
    docker_options: Optional[DockerOptions] = field(default=None, repr=False)

    def __post_init__(self):
        if isinstance(self.task_runner, dict):
            self.task_runner = runner_from_dict(self.task_runner)
        if self.task_runner is None:
            self.task_runner = DockerRunner()

        if isinstance(self.runner, str):
            self.runner = RunnerType(self.runner.upper())
        if isinstance(self.empty_configuration, str):
            self.empty_configuration = ConfigurationPolicy(self.empty_configuration.upper())

        if isinstance(self.docker, dict):
            self.docker = DockerOptions.from_dict(self.docker)
        if isinstance(self.docker_options, dict):
            self.docker_options = DockerOptions.from_dict(self.docker_options)
        if self.docker_options is not None:
            self.docker = self.docker_options

        if isinstance(self.input_files, str):
            self.input_files = json.loads(self.input_files)

    def validate(self) -> None:
        if self.configuration is None:
            raise ScanValidationError(f"[{self.id}] configuration is required")
        if not isinstance(self.configuration, dict):
            raise ScanValidationError(f"[{self.id}] configuration must be a mapping")
        if not isinstance(self.checks, dict) or not self.checks:
            raise ScanValidationError(f"[{self.id}] checks must be a non-empty mapping")
        if self.variables is not None and not isinstance(self.variables, dict):
            raise ScanValidationError(f"[{self.id}] variables must be a mapping")
        if self.requirements is not None and not isinstance(self.requirements, list):
            raise ScanValidationError(f"[{self.id}] requirements must be a list")

    def resolve_runner(self) -> TaskRunner:
        """The deprecated `runner` wins over `task_runner` when it is set."""
        if self.runner == RunnerType.PROCESS:
            logger.warning("[%s] 'runner' is deprecated, use 'task_runner' instead", self.id)
            return ProcessRunner()
        if self.runner == RunnerType.DOCKER:
            logger.warning("[%s] 'runner' is deprecated, use 'task_runner' instead", self.id)
            return DockerRunner(inject_defaults(self.docker))
        return self.task_runner

    def run(self, run_context: RunContext) -> Output:
        self.validate()
        run_context.log_event("TASK_START", {"task": self.id})

        assembler = ExecutionAssembler(run_context)
        interpreter = ResultInterpreter(run_context)
        try:
            commands = assembler.prepare(self, self.resolve_runner())
            script_output = commands.run(run_context)
            result = interpreter.interpret(script_output)

            exit_code = script_output.vars.get("exitCode")
            if exit_code is None:
                raise ScanResultError(f"[{self.id}] the scan did not report an exitCode output")

            output = Output(
                result=result,
                std_out_line_count=script_output.std_out_line_count,
                std_err_line_count=script_output.std_err_line_count,
                exit_code=int(exit_code),
                configuration=commands.configuration,
            )
        finally:
            run_context.cleanup()

        state = output.final_state()
        run_context.logger.info("Scan finished with state %s (exit code %s)", state.value, output.exit_code)
        run_context.log_event("TASK_END", {"task": self.id, "state": state.value, "exit_code": output.exit_code})
        return output
