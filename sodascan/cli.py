import argparse
import logging
import sys
from typing import Dict, List, Optional, Tuple

import yaml
from colorama import Fore, Style, init

from .assembler import ExecutionAssembler
from .audit import AuditTrail
from .config import DRIVER_FILE, Settings, load_tasks
from .context import RunContext
from .errors import SodaScanError
from .models import Output, State
from .reporting import ConsoleReporter, generate_json_report
from .runners import runner_from_dict
from .scan import Scan
from .storage import InternalStorage

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_WARNING = 2


def parse_pairs(pairs: Optional[List[str]], flag: str) -> Dict[str, str]:
    result = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"{flag} expects KEY=VALUE, got '{pair}'")
        key, value = pair.split("=", 1)
        result[key.strip()] = value
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sodascan",
        description="Run Soda data quality scans defined as YAML tasks",
    )
    parser.add_argument("-v", "--version", action="version", version="sodascan 0.4.0")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run scan tasks")
    run.add_argument("file", help="YAML file holding a task, a list of tasks or a flow")
    run.add_argument("--task", help="Only run the task with this id")
    run.add_argument("--var", action="append", help="Render variable (KEY=VALUE)")
    run.add_argument("--secret", action="append", help="Secret (NAME=VALUE)")
    run.add_argument("--runner", choices=["process", "docker"], help="Override the task runner")
    run.add_argument("--json-report", help="Path to JSON output")
    run.add_argument("--audit-log", help="Path to a hash-chained audit log (JSON lines)")
    run.add_argument("--verbose", action="store_true")

    render = sub.add_parser("render", help=f"Print the generated {DRIVER_FILE} without running it")
    render.add_argument("file")
    render.add_argument("--task")
    render.add_argument("--var", action="append")
    render.add_argument("--secret", action="append")
    render.add_argument("--runner", choices=["process", "docker"])

    verify = sub.add_parser("verify-audit", help="Check the hash chain and seal of an audit log")
    verify.add_argument("file")
    return parser


def select_tasks(args) -> List[Scan]:
    tasks = [Scan(**kwargs) for kwargs in load_tasks(args.file)]
    if args.task:
        tasks = [t for t in tasks if t.id == args.task]
        if not tasks:
            raise SodaScanError(f"No scan task with id '{args.task}' in {args.file}")
    if args.runner:
        for task in tasks:
            task.runner = None
            task.task_runner = runner_from_dict({"type": args.runner})
    return tasks


def exit_status(states: List[State], crashed: bool) -> int:
    if crashed or State.FAILED in states:
        return EXIT_FAILED
    if State.WARNING in states:
        return EXIT_WARNING
    return EXIT_SUCCESS


def cmd_render(args, settings: Settings) -> int:
    for task in select_tasks(args):
        ctx = RunContext(
            variables=parse_pairs(args.var, "--var"),
            secrets=parse_pairs(args.secret, "--secret") or None,
            storage=InternalStorage(settings.storage_dir),
            task_id=task.id,
            workdir_base=settings.workdir_base,
        )
        try:
            task.validate()
            commands = ExecutionAssembler(ctx).prepare(task, task.resolve_runner())
            print(f"{Style.BRIGHT}# {task.id}: {' '.join(commands.command_line()[:-1])}{Style.RESET_ALL}")
            print(commands.files[DRIVER_FILE])
        finally:
            ctx.cleanup()
    return EXIT_SUCCESS


def cmd_run(args, settings: Settings) -> int:
    audit = AuditTrail(log_file=args.audit_log, signing_key=settings.audit_key) if args.audit_log else None
    if audit:
        print(f"[*] Audit log initialized: {args.audit_log}")

    tasks = select_tasks(args)
    print(f"[*] TASKS: {len(tasks)}")

    outputs: List[Tuple[str, Output]] = []
    crashed = False
    for task in tasks:
        print(f"[*] Running {task.id}...")
        ctx = RunContext(
            variables=parse_pairs(args.var, "--var"),
            secrets=parse_pairs(args.secret, "--secret") or None,
            storage=InternalStorage(settings.storage_dir),
            audit=audit,
            task_id=task.id,
            workdir_base=settings.workdir_base,
            keep_workdir=settings.keep_workdir,
        )
        try:
            output = task.run(ctx)
        except SodaScanError as e:
            crashed = True
            print(f"{Fore.RED}[!] {task.id} failed: {e}{Style.RESET_ALL}")
            if audit:
                audit.log_event("CRASH", {"task_id": task.id, "error": str(e)})
            continue
        outputs.append((task.id, output))

    ConsoleReporter().print_summary(outputs)
    if args.json_report:
        generate_json_report(outputs, args.json_report)
    if audit:
        integrity = audit.seal()
        state = "signed" if integrity["signed"] else "unsigned, set SODASCAN_AUDIT_KEY to sign it"
        print(f"[*] Audit trail sealed ({state}): {integrity['final_hash'][:16]}...")

    return exit_status([o.final_state() for _, o in outputs], crashed)


def cmd_verify_audit(args, settings: Settings) -> int:
    events = AuditTrail.load(args.file)
    if AuditTrail.verify(events, settings.audit_key):
        scope = "chain and signature" if settings.audit_key else "chain only, SODASCAN_AUDIT_KEY not set"
        print(f"{Fore.GREEN}[+] {args.file}: {len(events)} events verified ({scope}){Style.RESET_ALL}")
        return EXIT_SUCCESS
    print(f"{Fore.RED}[!] {args.file}: audit trail failed verification{Style.RESET_ALL}")
    return EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    init(autoreset=True)
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env()

    level = logging.DEBUG if getattr(args, "verbose", False) else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    try:
        if args.command == "render":
            return cmd_render(args, settings)
        if args.command == "verify-audit":
            return cmd_verify_audit(args, settings)
        return cmd_run(args, settings)
    except (SodaScanError, OSError, ValueError, yaml.YAMLError, argparse.ArgumentTypeError) as e:
        print(f"\n{Fore.RED}[!!!] FATAL: {e}{Style.RESET_ALL}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
