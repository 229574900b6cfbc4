#!/usr/bin/env python3
"""autopilot — command handlers for the autopilot enforcer.

Subcommands:
    start     — start a new run for an idea
    cancel    — deactivate the run (resumable)
    resume    — reactivate a cancelled run
    clear     — delete the run's state
    status    — print the run's state as JSON
    progress  — record spec/plan paths and execution task counts
    qa        — record build/lint/test results for the current QA cycle
    verdict   — record a validation verdict

Every subcommand acts on --directory (default: current directory). Errors
are printed to stderr with exit code 1.

Usage:
    autopilot start "Build a CLI todo app" --session-id abc123
    autopilot progress --tasks-completed 3 --tasks-total 8
    autopilot qa --build passing --lint passing --test failing
    autopilot verdict architect APPROVED
    autopilot status
"""

import argparse
import dataclasses
import json
import logging
import os
import sys

from autopilot_enforcer.config import load_config, log_level
from autopilot_enforcer.lifecycle import (
    AutopilotError,
    cancel_autopilot,
    clear_autopilot,
    init_autopilot,
    record_validation_verdict,
    resume_autopilot,
    update_execution,
    update_expansion,
    update_planning,
    update_qa,
)
from autopilot_enforcer.state_store import JSONStateStore
from autopilot_enforcer.types import CheckStatus, VerdictType

logger = logging.getLogger("autopilot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autopilot",
        description="Start, inspect and steer an autopilot run in a working directory.",
    )
    parser.add_argument(
        "--directory",
        default=os.getcwd(),
        metavar="DIR",
        help="Working directory of the run (default: current directory)",
    )
    subparsers = parser.add_subparsers(dest="subcommand", metavar="<subcommand>")

    start = subparsers.add_parser("start", help="Start a new run for an idea")
    start.add_argument("idea", help="Task description the run will work on")
    start.add_argument("--session-id", default=None, help="Bind the run to this host session")
    start.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        metavar="N",
        help="Safety ceiling (env: AUTOPILOT_MAX_ITERATIONS, default: 10)",
    )
    start.add_argument("--force", action="store_true", help="Replace an active run")

    subparsers.add_parser("cancel", help="Deactivate the run (resumable)")
    subparsers.add_parser("resume", help="Reactivate a cancelled run")
    subparsers.add_parser("clear", help="Delete the run's state")
    subparsers.add_parser("status", help="Print the run's state as JSON")

    progress = subparsers.add_parser("progress", help="Record run progress")
    progress.add_argument("--spec-path", default=None)
    progress.add_argument("--plan-path", default=None)
    progress.add_argument("--tasks-completed", type=int, default=None)
    progress.add_argument("--tasks-total", type=int, default=None)

    check_choices = [s.value for s in CheckStatus]
    qa = subparsers.add_parser("qa", help="Record QA check results")
    qa.add_argument("--build", choices=check_choices, default=None)
    qa.add_argument("--lint", choices=check_choices, default=None)
    qa.add_argument("--test", choices=check_choices, default=None)

    verdict = subparsers.add_parser("verdict", help="Record a validation verdict")
    verdict.add_argument("reviewer")
    verdict.add_argument("verdict", choices=[v.value for v in VerdictType])
    verdict.add_argument("--issue", action="append", default=[], dest="issues")

    return parser


def run(args: argparse.Namespace) -> int:
    """Execute the parsed subcommand. Raises AutopilotError on refusal."""
    config = load_config()
    if getattr(args, "max_iterations", None) is not None:
        config = dataclasses.replace(config, max_iterations=args.max_iterations)
    store = JSONStateStore(config.state_dirname)
    directory = args.directory

    if args.subcommand == "start":
        record = init_autopilot(
            store, directory, args.idea,
            session_id=args.session_id, config=config, force=args.force,
        )
        print(f"Autopilot started in {directory} (phase: {record.phase.value})")
    elif args.subcommand == "cancel":
        record = cancel_autopilot(store, directory)
        print(f"Autopilot cancelled at phase {record.phase.value}")
    elif args.subcommand == "resume":
        record = resume_autopilot(store, directory)
        print(f"Autopilot resumed at phase {record.phase.value}")
    elif args.subcommand == "clear":
        clear_autopilot(store, directory)
        print("Autopilot state cleared")
    elif args.subcommand == "status":
        record = store.load(directory)
        if record is None:
            print("No autopilot run", file=sys.stderr)
            return 1
        print(json.dumps(record.to_dict(), indent=2))
    elif args.subcommand == "progress":
        if args.spec_path is not None:
            update_expansion(store, directory, spec_path=args.spec_path)
        if args.plan_path is not None:
            update_planning(store, directory, plan_path=args.plan_path)
        record = update_execution(
            store, directory,
            tasks_completed=args.tasks_completed, tasks_total=args.tasks_total,
        )
        print(
            f"Tasks: {record.execution.tasks_completed}/{record.execution.tasks_total}"
        )
    elif args.subcommand == "qa":
        record = update_qa(
            store, directory,
            build=CheckStatus(args.build) if args.build else None,
            lint=CheckStatus(args.lint) if args.lint else None,
            test=CheckStatus(args.test) if args.test else None,
        )
        print(f"QA cycle {record.qa.cycle}/{record.qa.max_cycles}: {record.qa.status.value}")
    elif args.subcommand == "verdict":
        record = record_validation_verdict(
            store, directory,
            reviewer=args.reviewer,
            verdict=VerdictType(args.verdict),
            issues=tuple(args.issues),
        )
        approved = "yes" if record.validation.all_approved else "no"
        print(
            f"Round {record.validation.round}/{record.validation.max_rounds}: "
            f"all approved: {approved}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=log_level(os.environ.get("AUTOPILOT_LOG_LEVEL")),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.subcommand is None:
        parser.print_help()
        return 0

    try:
        return run(args)
    except (AutopilotError, ValueError) as e:
        print(f"autopilot: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
