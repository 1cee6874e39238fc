import unittest
import sys
import os
import json
import shutil
import tempfile

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sodascan.audit import AuditTrail
from sodascan.context import Counter, RunContext
from sodascan.errors import RunnerExitError, ScanResultError, ScanValidationError
from sodascan.models import DockerOptions, RunnerType, State
from sodascan.runners import DockerRunner, ProcessRunner, TaskRunner
from sodascan.scan import Scan, inject_defaults
from sodascan.storage import InternalStorage

CONFIGURATION = {"data_source kestra": {"type": "duckdb", "path": "{{ db }}"}}
CHECKS = {"checks for orders": ["row_count > 0"]}


def scan_payload(warnings=False, failures=False, errors=False, metrics=None):
    return {
        "definitionName": None,
        "defaultDataSource": "kestra",
        "dataTimestamp": "2024-03-01T10:00:00+00:00",
        "scanStartTimestamp": "2024-03-01T10:00:00+00:00",
        "scanEndTimestamp": "2024-03-01T10:00:02+00:00",
        "hasErrors": errors,
        "hasWarnings": warnings,
        "hasFailures": failures,
        "metrics": metrics or [],
        "checks": [],
        "automatedMonitoringChecks": [],
        "profiling": [],
        "metadata": [],
    }


class FakeRunner(TaskRunner):
    """Plays the driver script: writes result.json and prints the exit code marker."""

    TYPE = "fake"

    def __init__(self, payload=None, exit_code=0, stdout_lines=("Scan summary:",), stderr_lines=(), marker=True):
        self.payload = payload
        self.exit_code = exit_code
        self.stdout_lines = list(stdout_lines)
        self.stderr_lines = list(stderr_lines)
        self.marker = marker
        self.seen = None

    def run(self, commands, run_context):
        self.seen = commands
        if self.payload is not None:
            with open(os.path.join(commands.working_dir, "result.json"), "w") as f:
                f.write(self.payload if isinstance(self.payload, str) else json.dumps(self.payload))
        stdout = list(self.stdout_lines)
        if self.marker:
            stdout.append('::{"outputs": {"exitCode": %d}}::' % self.exit_code)
        return self._complete(commands, run_context, 0, "\n".join(stdout), "\n".join(self.stderr_lines))


class ScanTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.ctx = RunContext(
            variables={"db": "/data/warehouse.duckdb"},
            storage=InternalStorage(os.path.join(self.tmp, "storage")),
            workdir_base=os.path.join(self.tmp, "runs"),
        )

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def scan(self, runner, **kwargs):
        kwargs.setdefault("configuration", CONFIGURATION)
        kwargs.setdefault("checks", CHECKS)
        return Scan(id="unit-test", task_runner=runner, **kwargs)


class TestRun(ScanTestCase):
    def test_warning(self):
        runner = FakeRunner(scan_payload(warnings=True), exit_code=1)
        output = self.scan(runner).run(self.ctx)

        self.assertTrue(output.result.has_warnings)
        self.assertFalse(output.result.has_failures)
        self.assertEqual(output.final_state(), State.WARNING)
        self.assertEqual(output.exit_code, 1)

    def test_failed(self):
        output = self.scan(FakeRunner(scan_payload(failures=True), exit_code=2)).run(self.ctx)
        self.assertEqual(output.final_state(), State.FAILED)

    def test_error(self):
        output = self.scan(FakeRunner(scan_payload(errors=True), exit_code=3)).run(self.ctx)
        self.assertTrue(output.result.has_errors)
        self.assertEqual(output.final_state(), State.FAILED)

    def test_warning_beats_failure(self):
        output = self.scan(FakeRunner(scan_payload(warnings=True, failures=True), exit_code=2)).run(self.ctx)
        self.assertEqual(output.final_state(), State.WARNING)

    def test_success(self):
        output = self.scan(FakeRunner(scan_payload(), exit_code=0)).run(self.ctx)
        self.assertEqual(output.final_state(), State.SUCCESS)
        self.assertEqual(output.exit_code, 0)

    def test_output_details(self):
        runner = FakeRunner(scan_payload(), stdout_lines=["a", "b"], stderr_lines=["w1", "w2", "w3"])
        output = self.scan(runner).run(self.ctx)

        self.assertEqual(output.std_out_line_count, 3)
        self.assertEqual(output.std_err_line_count, 3)
        self.assertEqual(output.configuration,
                         {"data_source kestra": {"type": "duckdb", "path": "/data/warehouse.duckdb"}})

    def test_metrics_reported(self):
        metrics = [
            {"identity": "metric-orders-row_count", "metricName": "row_count", "value": 99},
            {"identity": "metric-orders-missing", "metricName": "missing_count", "value": None},
        ]
        self.scan(FakeRunner(scan_payload(metrics=metrics))).run(self.ctx)
        self.assertEqual(self.ctx.metrics, [Counter("metric-orders-row_count", 99, {"type": "row_count"})])

    def test_working_directory_is_removed(self):
        runner = FakeRunner(scan_payload())
        self.scan(runner).run(self.ctx)
        self.assertFalse(os.path.exists(runner.seen.working_dir))

    def test_audit_trail(self):
        self.ctx.audit = AuditTrail()
        self.scan(FakeRunner(scan_payload(warnings=True))).run(self.ctx)

        types = [e["type"] for e in self.ctx.audit.events]
        self.assertEqual(types[0], "RUN_START")
        self.assertEqual(types[1], "TASK_START")
        self.assertIn("FILES_STAGED", types)
        self.assertIn("PROCESS_EXIT", types)
        self.assertEqual(types[-1], "TASK_END")
        self.assertEqual(self.ctx.audit.events[-1]["data"]["state"], "WARNING")
        self.assertTrue(AuditTrail.verify_chain(self.ctx.audit.events))


class TestExecutionErrors(ScanTestCase):
    def test_missing_exit_code(self):
        with self.assertRaises(ScanResultError):
            self.scan(FakeRunner(scan_payload(), marker=False)).run(self.ctx)

    def test_missing_result_file(self):
        with self.assertRaises(ScanResultError):
            self.scan(FakeRunner(None)).run(self.ctx)

    def test_malformed_result(self):
        with self.assertRaises(ScanResultError):
            self.scan(FakeRunner("{\"hasErrors\": tru")).run(self.ctx)

    def test_runner_failure_propagates(self):
        # python cannot be found, so the shell exits with 127
        scan = self.scan(ProcessRunner(), env={"PATH": "/nonexistent"})
        with self.assertRaises(RunnerExitError):
            scan.run(self.ctx)


class TestValidation(ScanTestCase):
    def test_configuration_required(self):
        runner = FakeRunner(scan_payload())
        with self.assertRaises(ScanValidationError):
            Scan(checks=CHECKS, task_runner=runner).run(self.ctx)
        self.assertIsNone(runner.seen)

    def test_checks_required(self):
        with self.assertRaises(ScanValidationError):
            Scan(configuration=CONFIGURATION, task_runner=FakeRunner()).run(self.ctx)

    def test_checks_not_empty(self):
        with self.assertRaises(ScanValidationError):
            Scan(configuration=CONFIGURATION, checks={}, task_runner=FakeRunner()).run(self.ctx)

    def test_variables_must_be_mapping(self):
        with self.assertRaises(ScanValidationError):
            self.scan(FakeRunner(), variables=["a"]).validate()


class TestRunnerSelection(unittest.TestCase):
    def test_default_is_docker(self):
        self.assertIsInstance(Scan().resolve_runner(), DockerRunner)

    def test_task_runner_from_mapping(self):
        self.assertIsInstance(Scan(task_runner={"type": "process"}).resolve_runner(), ProcessRunner)

    def test_legacy_process_runner(self):
        scan = Scan(runner="process", task_runner={"type": "docker"})
        self.assertEqual(scan.runner, RunnerType.PROCESS)
        self.assertIsInstance(scan.resolve_runner(), ProcessRunner)

    def test_legacy_docker_runner_gets_defaults(self):
        runner = Scan(runner=RunnerType.DOCKER, docker={"networkMode": "host"}).resolve_runner()
        self.assertIsInstance(runner, DockerRunner)
        self.assertEqual(runner.options.image, "sodadata/soda-core")
        self.assertEqual(runner.options.entry_point, [])
        self.assertEqual(runner.options.network_mode, "host")

    def test_docker_options_alias(self):
        scan = Scan(docker_options={"image": "my/soda"})
        self.assertEqual(scan.docker.image, "my/soda")

    def test_inject_defaults_keeps_explicit_values(self):
        options = inject_defaults(DockerOptions(image="x", entry_point=["/bin/bash"]))
        self.assertEqual(options.image, "x")
        self.assertEqual(options.entry_point, ["/bin/bash"])

    def test_input_files_json_string(self):
        self.assertEqual(Scan(input_files='{"a.sql": "select 1"}').input_files, {"a.sql": "select 1"})


if __name__ == '__main__':
    unittest.main()
