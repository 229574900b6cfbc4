#!/usr/bin/env python3
"""Stop hook adapter for the autopilot enforcer.

Reads the host's stop-event JSON from stdin, runs one enforcement check and
prints the decision JSON on stdout:

    {"decision": "block", "reason": "<continuation>"}   keep the session working
    {"stopReason": "<notice>"}                          allow the stop, show a notice
    (nothing)                                           no autopilot run applies

Input fields used (all optional):
    session_id / sessionId   host session id
    cwd / directory          working directory of the run (default: process cwd)
    transcript_path          searched before the standard transcript locations

The hook always exits 0. Unexpected errors are logged to stderr and the
stop is allowed, so a broken autopilot state never wedges the host session.

Configuration comes from the environment (see autopilot_enforcer.config);
AUTOPILOT_LOG_LEVEL sets the stderr log level (default and fallback for an
unknown name: WARNING).

Usage (host hook configuration):
    bin/autopilot-hook.py < event.json
"""

import json
import logging
import os
import sys
from typing import Any

from autopilot_enforcer.config import AutopilotConfig, load_config, log_level
from autopilot_enforcer.enforcement import build_controller
from autopilot_enforcer.types import EnforcementResult

logger = logging.getLogger("autopilot_hook")


def parse_payload(text: str) -> dict[str, Any]:
    """Parse the stdin payload. Empty or invalid input yields {}."""
    if not text.strip():
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring malformed hook payload: %s", e)
        return {}
    return payload if isinstance(payload, dict) else {}


def to_hook_output(result: EnforcementResult | None) -> dict[str, str] | None:
    """Translate an EnforcementResult into the host's stop-hook schema."""
    if result is None:
        return None
    if result.should_block:
        return {"decision": "block", "reason": result.message}
    return {"stopReason": result.message}


def run_hook(
    payload: dict[str, Any], config: AutopilotConfig | None = None
) -> dict[str, str] | None:
    """Run one enforcement check for payload and return the hook output."""
    session_id = payload.get("session_id") or payload.get("sessionId")
    directory = payload.get("cwd") or payload.get("directory") or os.getcwd()
    transcript_path = payload.get("transcript_path")

    controller = build_controller(
        config,
        transcript_paths=[transcript_path] if transcript_path else (),
    )
    return to_hook_output(controller.check(session_id, directory))


def main() -> int:
    logging.basicConfig(
        level=log_level(os.environ.get("AUTOPILOT_LOG_LEVEL")),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        output = run_hook(parse_payload(sys.stdin.read()), load_config())
    except Exception:
        logger.exception("Autopilot stop hook failed; allowing stop")
        return 0
    if output is not None:
        print(json.dumps(output))
    return 0


if __name__ == "__main__":
    sys.exit(main())
