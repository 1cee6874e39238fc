import json
import logging
from typing import List, TYPE_CHECKING

from .config import RESULT_FILE
from .context import Counter
from .errors import ScanResultError
from .models import ScanResult, ScriptOutput, State

if TYPE_CHECKING:
    from .context import RunContext

logger = logging.getLogger("sodascan.interpreter")


class ResultInterpreter:
    """Reads `result.json` back from storage, reports its metrics and derives the final state."""

    def __init__(self, run_context: "RunContext"):
        self.run_context = run_context

    def read_result(self, output: ScriptOutput) -> ScanResult:
        uri = output.output_files.get(RESULT_FILE)
        if uri is None:
            raise ScanResultError(f"The scan did not produce {RESULT_FILE}")

        try:
            path = self.run_context.storage.get_file(uri)
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ScanResultError(f"{RESULT_FILE} is missing: {e}") from e
        except ValueError as e:
            raise ScanResultError(f"{RESULT_FILE} is not valid JSON: {e}") from e

        try:
            return ScanResult.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ScanResultError(f"{RESULT_FILE} does not describe a scan result: {e}") from e

    def report_metrics(self, result: ScanResult) -> List[Counter]:
        reported = []
        for metric in result.metrics:
            if not metric.is_numeric:
                continue
            counter = Counter(metric.identity, metric.value, {"type": metric.metric_name})
            self.run_context.metric(counter)
            reported.append(counter)
        logger.debug("Reported %d of %d metrics", len(reported), len(result.metrics))
        return reported

    def interpret(self, output: ScriptOutput) -> ScanResult:
        result = self.read_result(output)
        self.report_metrics(result)
        return result

    @staticmethod
    def final_state(result: ScanResult) -> State:
        return result.final_state()
