import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Tuple

from colorama import Fore, Style

from .models import CheckOutcome, Output, State

STATE_COLORS = {
    State.SUCCESS: Fore.GREEN,
    State.WARNING: Fore.YELLOW,
    State.FAILED: Fore.RED,
}

OUTCOME_LABELS = {
    CheckOutcome.PASS: f"{Fore.GREEN}PASS{Style.RESET_ALL}",
    CheckOutcome.WARN: f"{Fore.YELLOW}WARN{Style.RESET_ALL}",
    CheckOutcome.FAIL: f"{Fore.RED}FAIL{Style.RESET_ALL}",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class ConsoleReporter:
    def print_summary(self, outputs: List[Tuple[str, Output]]):
        print(f"\n{Style.BRIGHT}=== DATA QUALITY SCAN REPORT ==={Style.RESET_ALL}\n")

        for task_id, output in outputs:
            state = output.final_state()
            result = output.result
            color = STATE_COLORS[state]
            print(f"[{color}{state.value}{Style.RESET_ALL}] {task_id} (exit code {output.exit_code})")

            for check in result.checks:
                label = OUTCOME_LABELS.get(check.outcome, f"{Fore.WHITE}N/A {Style.RESET_ALL}")
                target = f" on {check.table}" if check.table else ""
                print(f"      [{label}] {check.name or check.definition}{target}")

            if result.has_errors:
                print(f"      {Fore.RED}Scan reported errors{Style.RESET_ALL}")
                for entry in result.logs:
                    if (entry.level or "").upper() == "ERROR":
                        print(f"      {Fore.RED}- {entry.message}{Style.RESET_ALL}")

        total = len(outputs)
        passed = sum(1 for _, o in outputs if o.final_state() == State.SUCCESS)
        print(f"\nPassed: {passed}/{total}")


def build_report(outputs: List[Tuple[str, Output]]) -> Dict[str, Any]:
    states = [o.final_state() for _, o in outputs]
    return {
        "summary": {
            "total": len(outputs),
            "success": states.count(State.SUCCESS),
            "warning": states.count(State.WARNING),
            "failed": states.count(State.FAILED),
        },
        "results": [dict(o.to_dict(), task_id=task_id) for task_id, o in outputs],
    }


def generate_json_report(outputs: List[Tuple[str, Output]], output_path: str):
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(build_report(outputs), f, indent=2, default=_json_default)
    print(f"\nJSON Report written to: {output_path}")
