import json
import logging
import os
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, TYPE_CHECKING

import docker
from docker.errors import DockerException, ImageNotFound

from .config import CONTAINER_WORKING_DIR
from .errors import RunnerError, RunnerExitError
from .models import DockerOptions, ScriptOutput

if TYPE_CHECKING:
    from .assembler import CommandsWrapper
    from .context import RunContext

logger = logging.getLogger("sodascan.runners")

# ::{"outputs": {...}}::
MARKER = re.compile(r"^::(\{.*\})::\s*$")


def parse_output_vars(line: str) -> Optional[Dict[str, Any]]:
    """Returns the `outputs` of a marker line, or None when the line is not a marker."""
    match = MARKER.match(line.strip())
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except ValueError:
        logger.warning("Ignoring malformed output marker: %s", line.strip())
        return None
    if not isinstance(payload, dict):
        return None
    outputs = payload.get("outputs")
    return outputs if isinstance(outputs, dict) else None


class TaskRunner(ABC):
    """
    Executes an assembled command to completion.
    Subclasses only launch the process; line accounting, marker parsing and
    output file collection are shared.
    """

    TYPE: str = "generic"
    container_based: bool = False

    def working_dir_path(self, host_dir: str) -> str:
        """Path of the working directory as seen by the command."""
        return host_dir

    @abstractmethod
    def run(self, commands: "CommandsWrapper", run_context: "RunContext") -> ScriptOutput:
        pass

    def _complete(self, commands: "CommandsWrapper", run_context: "RunContext",
                  exit_code: int, stdout: str, stderr: str) -> ScriptOutput:
        out_lines = stdout.splitlines()
        err_lines = stderr.splitlines()

        variables: Dict[str, Any] = {}
        for line in out_lines:
            outputs = parse_output_vars(line)
            if outputs is not None:
                variables.update(outputs)
            else:
                run_context.logger.info(line)
        for line in err_lines:
            run_context.logger.warning(line)

        run_context.log_event("PROCESS_EXIT", {
            "runner": self.TYPE,
            "exit_code": exit_code,
            "stdout_lines": len(out_lines),
            "stderr_lines": len(err_lines),
        })

        if exit_code != 0:
            raise RunnerExitError(exit_code, len(out_lines), len(err_lines))

        output_files = {}
        for name in commands.output_files:
            path = os.path.join(commands.working_dir, name)
            if os.path.isfile(path):
                output_files[name] = run_context.storage.put_file(path, name, namespace=run_context.run_id)
            else:
                logger.debug("Declared output file %s was not produced", name)

        return ScriptOutput(
            exit_code=exit_code,
            std_out_line_count=len(out_lines),
            std_err_line_count=len(err_lines),
            vars=variables,
            output_files=output_files,
        )


class ProcessRunner(TaskRunner):
    """Runs the command as a local process in the working directory."""

    TYPE = "process"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(self, commands: "CommandsWrapper", run_context: "RunContext") -> ScriptOutput:
        env = dict(os.environ)
        env.update(commands.env)
        run_context.logger.debug("Running %s in %s", commands.command_line(), commands.working_dir)
        try:
            proc = subprocess.run(
                commands.command_line(),
                cwd=commands.working_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RunnerError(f"Unable to run command: {e}") from e

        return self._complete(commands, run_context, proc.returncode, proc.stdout, proc.stderr)


class DockerRunner(TaskRunner):
    """Runs the command in a disposable container with the working directory mounted."""

    TYPE = "docker"
    container_based = True

    def __init__(self, options: Optional[DockerOptions] = None, mount: str = CONTAINER_WORKING_DIR):
        self.options = options or DockerOptions()
        self.mount = mount

    def working_dir_path(self, host_dir: str) -> str:
        return self.mount

    def _ensure_image(self, client, image: str) -> None:
        policy = (self.options.pull_policy or "IF_NOT_PRESENT").upper()
        if policy == "NEVER":
            return
        if policy == "IF_NOT_PRESENT":
            try:
                client.images.get(image)
                return
            except ImageNotFound:
                pass
        logger.info("Pulling image %s", image)
        client.images.pull(image)

    def run(self, commands: "CommandsWrapper", run_context: "RunContext") -> ScriptOutput:
        image = self.options.image or commands.container_image
        if not image:
            raise RunnerError("No container image configured")

        kwargs: Dict[str, Any] = {
            "command": commands.command_line(),
            "working_dir": self.mount,
            "volumes": {commands.working_dir: {"bind": self.mount, "mode": "rw"}},
            "environment": dict(commands.env),
            "detach": True,
            # an empty entrypoint clears the image one, e.g. ENTRYPOINT ["soda"]
            "entrypoint": self.options.entry_point if self.options.entry_point is not None else [],
        }
        if self.options.user:
            kwargs["user"] = self.options.user
        if self.options.network_mode:
            kwargs["network_mode"] = self.options.network_mode
        if self.options.mem_limit:
            kwargs["mem_limit"] = self.options.mem_limit
        if self.options.extra_hosts:
            kwargs["extra_hosts"] = self.options.extra_hosts

        try:
            client = docker.from_env()
            self._ensure_image(client, image)
            run_context.logger.debug("Starting container from %s", image)
            container = client.containers.run(image, **kwargs)
        except DockerException as e:
            raise RunnerError(f"Unable to start container from {image}: {e}") from e

        try:
            status = container.wait()
            exit_code = int(status.get("StatusCode", 1))
            stdout = container.logs(stdout=True, stderr=False).decode("utf-8", errors="replace")
            stderr = container.logs(stdout=False, stderr=True).decode("utf-8", errors="replace")
        except DockerException as e:
            raise RunnerError(f"Container from {image} failed: {e}") from e
        finally:
            try:
                container.remove(force=True)
            except DockerException as e:
                logger.warning("Unable to remove container: %s", e)

        return self._complete(commands, run_context, exit_code, stdout, stderr)


RUNNERS = {
    ProcessRunner.TYPE: ProcessRunner,
    DockerRunner.TYPE: DockerRunner,
}


def runner_from_dict(data: Dict[str, Any]) -> TaskRunner:
    """Builds a runner from a task definition, e.g. `{type: docker, pullPolicy: NEVER}`."""
    data = dict(data)
    runner_type = str(data.pop("type", DockerRunner.TYPE)).lower()
    # accept fully qualified names such as io.kestra.plugin.scripts.runner.docker.Docker
    runner_type = runner_type.rsplit(".", 1)[-1]
    if runner_type == ProcessRunner.TYPE:
        return ProcessRunner(timeout=data.get("timeout"))
    if runner_type == DockerRunner.TYPE:
        mount = data.pop("mount", CONTAINER_WORKING_DIR)
        return DockerRunner(DockerOptions.from_dict(data), mount=mount)
    raise ValueError(f"Unknown task runner type: {runner_type} (expected one of {sorted(RUNNERS)})")
