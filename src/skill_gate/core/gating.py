"""Gating evaluator: probe a manifest's requirements and reduce to a decision."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from ..config import Config, GatingSettings
from ..observability.logging_config import get_logger
from .manifest import Manifest, Requirement
from .probes import ProbeSet

logger = get_logger(__name__)


class GatingDecision(Enum):
    """Outcome of gating one skill."""

    PASS = "pass"
    FAIL = "fail"
    PASS_WITH_WARNINGS = "pass_with_warnings"


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of checking one requirement.

    Attributes:
        requirement: The requirement that was probed
        present: Whether the dependency was found
        detail: Resolved path, listing hit, or the reason it is missing
        timed_out: True when the probe was abandoned after the timeout
    """

    requirement: Requirement
    present: bool
    detail: Optional[str] = None
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.requirement.kind.value,
            "name": self.requirement.name,
            "necessity": self.requirement.necessity.value,
            "present": self.present,
            "detail": self.detail,
            "timed_out": self.timed_out,
        }


@dataclass(frozen=True)
class GatingResult:
    """Aggregate gating decision for one manifest.

    `failures` holds missing required requirements, `warnings` missing
    optional ones, and `outcomes` every probe outcome; all three follow
    manifest declaration order.
    """

    skill_id: str
    decision: GatingDecision
    failures: tuple[ProbeOutcome, ...] = ()
    warnings: tuple[ProbeOutcome, ...] = ()
    outcomes: tuple[ProbeOutcome, ...] = ()
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def passed(self) -> bool:
        """True when the skill may be activated (with or without warnings)."""
        return self.decision is not GatingDecision.FAIL

    def to_dict(self) -> dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "decision": self.decision.value,
            "failures": [o.to_dict() for o in self.failures],
            "warnings": [o.to_dict() for o in self.warnings],
            "outcomes": [o.to_dict() for o in self.outcomes],
            "evaluated_at": self.evaluated_at.isoformat(),
        }


def reduce_outcomes(skill_id: str, outcomes: Iterable[ProbeOutcome]) -> GatingResult:
    """Classify outcomes by necessity and derive the decision."""
    outcomes = tuple(outcomes)
    failures = tuple(o for o in outcomes if not o.present and o.requirement.required)
    warnings = tuple(o for o in outcomes if not o.present and not o.requirement.required)

    if failures:
        decision = GatingDecision.FAIL
    elif warnings:
        decision = GatingDecision.PASS_WITH_WARNINGS
    else:
        decision = GatingDecision.PASS

    return GatingResult(
        skill_id=skill_id,
        decision=decision,
        failures=failures,
        warnings=warnings,
        outcomes=outcomes,
    )


class GatingEvaluator:
    """
    Runs one probe per requirement and reduces the outcomes.

    Probes for one manifest run concurrently. Each is bounded by the
    configured timeout; a timed-out or crashing probe counts as "not
    present" and never fails the whole evaluation. Outcomes are merged by
    declaration position, so completion order has no effect on the result.
    """

    def __init__(
        self,
        probes: Optional[ProbeSet] = None,
        settings: Optional[GatingSettings] = None,
    ):
        self.settings = settings or Config.get_gating_settings()
        self.probes = probes or ProbeSet.from_settings(self.settings)

    async def evaluate(self, manifest: Manifest) -> GatingResult:
        """
        Gate a manifest.

        Cancelling this coroutine cancels every outstanding probe; partial
        outcomes are discarded.
        """
        tasks = [
            asyncio.ensure_future(self._run_probe(requirement))
            for requirement in manifest.requirements
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Gating cancelled for skill '{manifest.skill_id}'")
            raise

        result = reduce_outcomes(manifest.skill_id, outcomes)
        logger.info(
            f"Gated skill '{manifest.skill_id}': {result.decision.value}",
            extra={
                "skill_id": manifest.skill_id,
                "decision": result.decision.value,
                "failures": [o.requirement.name for o in result.failures],
                "warnings": [o.requirement.name for o in result.warnings],
            },
        )
        return result

    def evaluate_sync(self, manifest: Manifest) -> GatingResult:
        """Blocking wrapper around evaluate() for callers without an event loop."""
        return asyncio.run(self.evaluate(manifest))

    async def _run_probe(self, requirement: Requirement) -> ProbeOutcome:
        probe = self.probes.for_kind(requirement.kind)
        timeout = self.settings.probe_timeout
        try:
            # Queueing for a process slot does not count against the timeout
            async with probe.slot():
                report = await asyncio.wait_for(probe.check(requirement.name), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Probe timed out after {timeout:g}s: {requirement.describe()}"
            )
            return ProbeOutcome(
                requirement=requirement,
                present=False,
                detail=f"probe timed out after {timeout:g}s",
                timed_out=True,
            )
        except Exception as e:
            logger.warning(
                f"Probe failed for {requirement.describe()}: {e}", exc_info=True
            )
            return ProbeOutcome(
                requirement=requirement,
                present=False,
                detail=f"probe error: {e}",
            )

        logger.debug(
            f"Probed {requirement.describe()}: present={report.present}",
            extra={"detail": report.detail},
        )
        return ProbeOutcome(
            requirement=requirement, present=report.present, detail=report.detail
        )


def format_report(result: GatingResult) -> str:
    """Render a GatingResult as a human-readable report."""
    lines = [f"Skill: {result.skill_id}", f"Decision: {result.decision.value}"]
    if not result.outcomes:
        lines.append("  (no requirements)")
    for outcome in result.outcomes:
        requirement = outcome.requirement
        status = "ok" if outcome.present else "MISSING"
        line = (
            f"  [{status}] {requirement.kind.value} '{requirement.name}' "
            f"({requirement.necessity.value})"
        )
        if outcome.detail:
            line += f": {outcome.detail}"
        lines.append(line)
    return "\n".join(lines)
