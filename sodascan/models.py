from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional


class State(str, Enum):
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    FAILED = "FAILED"


class CheckOutcome(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class RunnerType(str, Enum):
    """Deprecated runner selection, superseded by `task_runner`."""
    PROCESS = "PROCESS"
    DOCKER = "DOCKER"


class ConfigurationPolicy(str, Enum):
    """What to do when the rendered configuration mapping is empty."""
    SKIP = "SKIP"      # omit configuration.yml
    REJECT = "REJECT"  # fail validation


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    # fromisoformat only accepts a trailing 'Z' from 3.11 on
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _parse_outcome(value: Optional[str]) -> Optional[CheckOutcome]:
    if value is None:
        return None
    try:
        return CheckOutcome(str(value).lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class Metric:
    identity: str
    metric_name: str
    value: Any = None

    @property
    def is_numeric(self) -> bool:
        # bool is an int subclass but never a measurement
        return isinstance(self.value, (int, float)) and not isinstance(self.value, bool)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metric":
        return cls(
            identity=data.get("identity"),
            metric_name=data.get("metricName"),
            value=data.get("value"),
        )


@dataclass(frozen=True)
class Check:
    identity: str
    name: str
    type: str
    definition: str
    data_source: Optional[str] = None
    table: Optional[str] = None
    column: Optional[str] = None
    metrics: List[str] = field(default_factory=list)
    outcome: Optional[CheckOutcome] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Check":
        return cls(
            identity=data.get("identity"),
            name=data.get("name"),
            type=data.get("type"),
            definition=data.get("definition"),
            data_source=data.get("dataSource"),
            table=data.get("table"),
            column=data.get("column"),
            metrics=list(data.get("metrics") or []),
            outcome=_parse_outcome(data.get("outcome")),
        )


@dataclass(frozen=True)
class Log:
    level: str
    message: str
    timestamp: Optional[datetime] = None
    index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Log":
        return cls(
            level=data.get("level"),
            message=data.get("message"),
            timestamp=parse_timestamp(data.get("timestamp")),
            index=data.get("index"),
        )


@dataclass(frozen=True)
class ScanResult:
    """Verdict of one scan, as serialized by the scanning library."""
    definition_name: Optional[str] = None
    default_data_source: Optional[str] = None
    data_timestamp: Optional[datetime] = None
    scan_start_timestamp: Optional[datetime] = None
    scan_end_timestamp: Optional[datetime] = None
    has_errors: bool = False
    has_warnings: bool = False
    has_failures: bool = False
    metrics: List[Metric] = field(default_factory=list)
    checks: List[Check] = field(default_factory=list)
    automated_monitoring_checks: List[Any] = field(default_factory=list)
    profiling: List[Any] = field(default_factory=list)
    metadata: List[Any] = field(default_factory=list)
    logs: List[Log] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanResult":
        """Builds a result from the library's camelCase payload. Unknown keys are ignored."""
        if not isinstance(data, dict):
            raise TypeError(f"Scan result must be a JSON object, got {type(data).__name__}")

        return cls(
            definition_name=data.get("definitionName"),
            default_data_source=data.get("defaultDataSource"),
            data_timestamp=parse_timestamp(data.get("dataTimestamp")),
            scan_start_timestamp=parse_timestamp(data.get("scanStartTimestamp")),
            scan_end_timestamp=parse_timestamp(data.get("scanEndTimestamp")),
            has_errors=bool(data.get("hasErrors")),
            has_warnings=bool(data.get("hasWarnings")),
            has_failures=bool(data.get("hasFailures")),
            metrics=[Metric.from_dict(m) for m in data.get("metrics") or []],
            checks=[Check.from_dict(c) for c in data.get("checks") or []],
            automated_monitoring_checks=list(data.get("automatedMonitoringChecks") or []),
            profiling=list(data.get("profiling") or []),
            metadata=list(data.get("metadata") or []),
            logs=[Log.from_dict(entry) for entry in data.get("logs") or []],
        )

    def final_state(self) -> State:
        # Warnings win over failures and errors.
        if self.has_warnings:
            return State.WARNING
        if self.has_failures or self.has_errors:
            return State.FAILED
        return State.SUCCESS


@dataclass
class DockerOptions:
    """Deprecated container settings, kept for task definitions that still use them."""
    image: Optional[str] = None
    entry_point: Optional[List[str]] = None
    user: Optional[str] = None
    network_mode: Optional[str] = None
    mem_limit: Optional[str] = None
    pull_policy: str = "IF_NOT_PRESENT"
    extra_hosts: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DockerOptions":
        return cls(
            image=data.get("image"),
            entry_point=data.get("entryPoint", data.get("entry_point")),
            user=data.get("user"),
            network_mode=data.get("networkMode", data.get("network_mode")),
            mem_limit=data.get("memory", data.get("mem_limit")),
            pull_policy=data.get("pullPolicy", data.get("pull_policy", "IF_NOT_PRESENT")),
            extra_hosts=dict(data.get("extraHosts", data.get("extra_hosts")) or {}),
        )


@dataclass
class ScriptOutput:
    """What a task runner hands back once the command has completed."""
    exit_code: int
    std_out_line_count: int = 0
    std_err_line_count: int = 0
    vars: Dict[str, Any] = field(default_factory=dict)
    output_files: Dict[str, str] = field(default_factory=dict)  # name -> storage URI


@dataclass
class Output:
    result: ScanResult
    std_out_line_count: int
    std_err_line_count: int
    exit_code: int
    configuration: Dict[str, Any] = field(default_factory=dict)

    def final_state(self) -> State:
        return self.result.final_state()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.final_state().value
        return data
