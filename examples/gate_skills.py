#!/usr/bin/env python3
"""Gate the bundled and user skills and print what the host may activate.

Configuration is read from the environment (and a .env file at the project
root): SKILLS_DIR, USER_SKILLS_DIR, SKILL_GATE_PROBE_TIMEOUT,
SKILL_GATE_MAX_PROCESSES, SKILL_GATE_CONFIG_DIR, SKILL_GATE_PYTHON,
SKILL_GATE_PACKAGE_MATCH, LOG_LEVEL, LOG_FORMAT, LOG_FILE.

Usage:
    # Table of every skill and its gating decision
    uv run python examples/gate_skills.py

    # Full per-requirement report for one skill
    uv run python examples/gate_skills.py --report git-workflow

    # Which active skills match a request
    uv run python examples/gate_skills.py --query "open a pull request"

    # Machine-readable output
    uv run python examples/gate_skills.py --json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load .env file
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from skill_gate.observability.logging_config import configure_from_env

configure_from_env(default_level="WARNING")

from skill_gate.core import SkillRegistry, SkillSource, format_report


async def run(args: argparse.Namespace) -> int:
    registry = SkillRegistry()
    try:
        await registry.discover(SkillSource.BUNDLED)
        await registry.discover(SkillSource.USER)

        if args.report:
            if registry.get(args.report) is None:
                print(f"Unknown skill: {args.report}", file=sys.stderr)
                return 1
            result = await registry.gate(args.report)
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                print(format_report(result))
            return 0

        if args.query:
            candidates = registry.activate_candidates_for(args.query)
            if args.json:
                print(json.dumps(candidates))
            else:
                for skill_id in candidates:
                    print(skill_id)
            return 0

        statuses = registry.list()
        if args.json:
            rows = [
                {
                    "skill_id": s.skill_id,
                    "source": s.source.value,
                    "state": s.state.value,
                    "decision": s.decision.value if s.decision else None,
                    "warnings": [o.requirement.name for o in s.warnings],
                    "failures": [o.requirement.name for o in s.failures],
                }
                for s in statuses
            ]
            print(json.dumps({"skills": rows, "errors": registry.errors}, indent=2))
            return 0

        for status in statuses:
            decision = status.decision.value if status.decision else "-"
            print(f"{status.skill_id:<30} {status.source.value:<8} {decision}")
            for outcome in status.failures:
                print(f"    missing (required): {outcome.requirement.name}")
            for outcome in status.warnings:
                print(f"    missing (optional): {outcome.requirement.name}")
        for error in sorted(registry.errors.values()):
            print(f"error: {error}", file=sys.stderr)
        return 0
    finally:
        await registry.shutdown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Gate skills against this environment")
    parser.add_argument("--report", metavar="SKILL_ID", help="Print a full report for one skill")
    parser.add_argument("--query", help="List active skills relevant to a request")
    parser.add_argument("--json", action="store_true", help="Emit JSON")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
