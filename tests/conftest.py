"""Shared fixtures: deterministic probes for gating tests."""

import asyncio
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest

from skill_gate.config import GatingSettings
from skill_gate.core import (
    GatingEvaluator,
    Probe,
    ProbeReport,
    ProbeSet,
    ProcessLimiter,
    RequirementKind,
)


class StaticProbe(Probe):
    """Probe answering from a fixed set of present names.

    Records every call, can delay or fail per name, and tracks how many
    checks are running at once. With a limiter, checks share its process
    slots the way package probes do.
    """

    def __init__(
        self,
        kind: RequirementKind,
        present: Iterable[str] = (),
        delays: Optional[dict[str, float]] = None,
        errors: Iterable[str] = (),
        on_start: Optional[Callable[[str], None]] = None,
        limiter: Optional[ProcessLimiter] = None,
    ):
        self.kind = kind
        self.limiter = limiter
        self.present = set(present)
        self.delays = delays or {}
        self.errors = set(errors)
        self.on_start = on_start
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.running = 0
        self.max_running = 0

    async def check(self, name: str) -> ProbeReport:
        self.calls.append(name)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.on_start:
                self.on_start(name)
            await asyncio.sleep(self.delays.get(name, 0))
        except asyncio.CancelledError:
            self.cancelled.append(name)
            raise
        finally:
            self.running -= 1

        if name in self.errors:
            raise RuntimeError(f"probe exploded on {name}")
        if name in self.present:
            return ProbeReport(True, f"found {name}")
        return ProbeReport(False, f"{name} missing")


class StaticProbes:
    """One StaticProbe per kind sharing the same configuration."""

    def __init__(self, **kwargs):
        self.by_kind = {kind: StaticProbe(kind, **kwargs) for kind in RequirementKind}
        self.probe_set = ProbeSet(self.by_kind)

    @property
    def calls(self) -> list[str]:
        return [name for probe in self.by_kind.values() for name in probe.calls]

    @property
    def cancelled(self) -> list[str]:
        return [name for probe in self.by_kind.values() for name in probe.cancelled]

    def set_present(self, names: Iterable[str]) -> None:
        for probe in self.by_kind.values():
            probe.present = set(names)


@pytest.fixture
def settings(tmp_path: Path) -> GatingSettings:
    """Fast settings rooted in a temporary directory."""
    return GatingSettings(probe_timeout=0.5, max_processes=2, config_base_dir=tmp_path)


@pytest.fixture
def make_evaluator(settings: GatingSettings):
    """Build an evaluator over StaticProbes; returns (evaluator, probes)."""

    def _make(timeout: Optional[float] = None, **kwargs):
        probes = StaticProbes(**kwargs)
        effective = settings
        if timeout is not None:
            effective = GatingSettings(
                probe_timeout=timeout,
                max_processes=settings.max_processes,
                config_base_dir=settings.config_base_dir,
            )
        return GatingEvaluator(probes=probes.probe_set, settings=effective), probes

    return _make
