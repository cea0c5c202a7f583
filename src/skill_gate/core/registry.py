"""Skill registry: discovery, gating outcomes and the trust boundary.

Bundled skills ship with the host and are read-only: remove, overwrite and
reload-from-edit calls against them raise TrustViolation before touching
any state. User skills are fully mutable.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import Config
from ..observability.logging_config import add_context, get_logger
from .errors import (
    GatingAborted,
    ManifestParseError,
    RegistryClosed,
    SkillNotFoundError,
    TrustViolation,
)
from .gating import GatingDecision, GatingEvaluator, GatingResult, ProbeOutcome
from .manifest import Manifest, ManifestParser, SkillSource
from .relevance import KeywordMatcher, RelevanceMatcher

logger = get_logger(__name__)

ALL_SKILLS = "all"


class SkillState(Enum):
    """Lifecycle state of a registered skill."""

    DISCOVERED = "discovered"  # parsed, not gated yet
    ACTIVE = "active"  # passed gating, may be activated
    INACTIVE = "inactive"  # failed gating, kept for diagnostics


@dataclass(frozen=True)
class RegistryEntry:
    """Registry bookkeeping for one skill. Replaced wholesale, never edited."""

    manifest: Manifest
    latest_result: Optional[GatingResult] = None

    @property
    def skill_id(self) -> str:
        return self.manifest.skill_id

    @property
    def mutable(self) -> bool:
        return self.manifest.source is SkillSource.USER

    @property
    def state(self) -> SkillState:
        if self.latest_result is None:
            return SkillState.DISCOVERED
        if self.latest_result.passed:
            return SkillState.ACTIVE
        return SkillState.INACTIVE


@dataclass(frozen=True)
class SkillStatus:
    """One row of the registry listing."""

    skill_id: str
    source: SkillSource
    state: SkillState
    decision: Optional[GatingDecision]
    warnings: tuple[ProbeOutcome, ...] = ()
    failures: tuple[ProbeOutcome, ...] = ()


class SkillRegistry:
    """
    Owns the mapping from skill id to RegistryEntry.

    Evaluations for the same skill are serialized by a per-skill lock while
    different skills are gated in parallel. Readers never take a lock: an
    entry is swapped in with a single assignment once its gating result is
    complete, so a reader sees either the previous entry or the new one.
    """

    def __init__(
        self,
        bundled_dir: Optional[Path] = None,
        user_dir: Optional[Path] = None,
        evaluator: Optional[GatingEvaluator] = None,
        matcher: Optional[RelevanceMatcher] = None,
        parser: Optional[ManifestParser] = None,
    ):
        """
        Initialize the registry.

        Args:
            bundled_dir: Bundled skills directory (defaults to SKILLS_DIR)
            user_dir: User skills directory (defaults to USER_SKILLS_DIR)
            evaluator: Gating evaluator (defaults to one built from env settings)
            matcher: Relevance matcher used for activation lookups
            parser: Manifest parser
        """
        self.source_dirs: dict[SkillSource, Path] = {
            SkillSource.BUNDLED: Path(bundled_dir) if bundled_dir else Config.get_skills_dir(),
            SkillSource.USER: Path(user_dir) if user_dir else Config.get_user_skills_dir(),
        }
        self.evaluator = evaluator or GatingEvaluator()
        self.matcher = matcher or KeywordMatcher()
        self.parser = parser or ManifestParser()

        # Parse errors keyed by manifest path
        self.errors: dict[str, str] = {}

        self._entries: dict[str, RegistryEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._aborted: set[str] = set()
        self._pending_warnings: dict[str, tuple[ProbeOutcome, ...]] = {}
        self._discovered_sources: set[SkillSource] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Discovery and gating
    # ------------------------------------------------------------------

    async def discover(self, source: SkillSource) -> list[str]:
        """
        Scan a source directory, parse every manifest and gate it.

        Manifests that fail to parse are recorded in `errors` and skipped;
        they never abort discovery of the other skills.

        Returns:
            Ids of the skills discovered and registered from this source
        """
        self._check_open()
        source = SkillSource(source)
        directory = self.source_dirs[source]
        manifests = await asyncio.to_thread(self._scan, source, directory)
        self._discovered_sources.add(source)

        installed = await asyncio.gather(
            *(self._install(manifest) for manifest in manifests)
        )
        skill_ids = [m.skill_id for m, ok in zip(manifests, installed) if ok]

        if source is SkillSource.USER:
            await self._drop_vanished_user_skills({m.skill_id for m in manifests})

        logger.info(
            f"Discovered {len(skill_ids)} {source.value} skills in {directory}",
            extra={"source": source.value, "skills": skill_ids},
        )
        return skill_ids

    async def gate(self, skill_id: str) -> GatingResult:
        """
        Get the gating result for a skill, evaluating it if none is cached.

        Raises:
            SkillNotFoundError: If the skill is unknown
            GatingAborted: If the evaluation was aborted
        """
        self._check_open()
        entry = self._require(skill_id)
        if entry.latest_result is not None:
            return entry.latest_result

        async with self._lock_for(skill_id):
            entry = self._require(skill_id)
            if entry.latest_result is not None:
                return entry.latest_result
            result = await self._evaluate(entry.manifest)
            if result is None:
                raise GatingAborted(skill_id)
            self._record(entry.manifest, result)
            return result

    async def reload(self, skill_id: str = ALL_SKILLS) -> None:
        """
        Re-run discovery and gating for one skill or for all of them.

        User skills are re-read from their manifest file; bundled skills are
        re-gated against the manifest they shipped with.
        """
        self._check_open()
        if skill_id == ALL_SKILLS:
            await self._reload_all()
            return

        entry = self._require(skill_id)
        await self._reload_entry(entry, reparse=entry.mutable)

    async def reload_from_user_edit(self, skill_id: str) -> GatingResult:
        """
        Re-read a user skill's manifest after it was edited and re-gate it.

        Raises:
            TrustViolation: If the skill is bundled
            ManifestParseError: If the edited manifest is malformed
        """
        self._check_open()
        entry = self._require(skill_id)
        if not entry.mutable:
            raise TrustViolation(skill_id, "reload")
        return await self._reload_entry(entry, reparse=True)

    async def overwrite(self, manifest: Manifest) -> GatingResult:
        """
        Register or replace a user skill and gate it.

        Raises:
            TrustViolation: If the manifest claims the bundled source or the
                id belongs to a bundled skill
        """
        self._check_open()
        if manifest.source is not SkillSource.USER:
            raise TrustViolation(manifest.skill_id, "overwrite")

        async with self._lock_for(manifest.skill_id):
            existing = self._entries.get(manifest.skill_id)
            if existing is not None and not existing.mutable:
                raise TrustViolation(manifest.skill_id, "overwrite")
            result = await self._evaluate(manifest)
            if result is None:
                raise GatingAborted(manifest.skill_id)
            self._record(manifest, result)
            return result

    async def remove(self, skill_id: str) -> RegistryEntry:
        """
        Remove a user skill from the registry.

        The skill's files are left untouched.

        Raises:
            SkillNotFoundError: If the skill is unknown
            TrustViolation: If the skill is bundled
        """
        self._check_open()
        entry = self._require(skill_id)
        if not entry.mutable:
            raise TrustViolation(skill_id, "remove")

        async with self._lock_for(skill_id):
            entry = self._require(skill_id)
            if not entry.mutable:
                raise TrustViolation(skill_id, "remove")
            del self._entries[skill_id]
            self._pending_warnings.pop(skill_id, None)
        self._locks.pop(skill_id, None)
        logger.info(f"Removed user skill '{skill_id}'")
        return entry

    async def abort(self, skill_id: str) -> bool:
        """
        Cancel an in-flight gating evaluation.

        Returns:
            True if an evaluation was running and has been cancelled
        """
        task = self._inflight.get(skill_id)
        if task is None or task.done():
            return False
        self._aborted.add(skill_id)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        """Cancel all in-flight evaluations and clear the registry."""
        self._closed = True
        tasks = list(self._inflight.items())
        for skill_id, task in tasks:
            self._aborted.add(skill_id)
            task.cancel()
        await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)
        self._entries.clear()
        self._locks.clear()
        self._pending_warnings.clear()
        logger.info(f"Registry shut down, cancelled {len(tasks)} evaluations")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get(self, skill_id: str) -> Optional[RegistryEntry]:
        return self._entries.get(skill_id)

    def list(self) -> list[SkillStatus]:
        """List every registered skill, active or not, sorted by id."""
        statuses = []
        for skill_id, entry in sorted(self._entries.items()):
            result = entry.latest_result
            statuses.append(
                SkillStatus(
                    skill_id=skill_id,
                    source=entry.manifest.source,
                    state=entry.state,
                    decision=result.decision if result else None,
                    warnings=result.warnings if result else (),
                    failures=result.failures if result else (),
                )
            )
        return statuses

    def active(self) -> list[RegistryEntry]:
        """Entries that passed gating, with or without warnings."""
        return [
            entry
            for _, entry in sorted(self._entries.items())
            if entry.state is SkillState.ACTIVE
        ]

    def activate_candidates_for(self, query: str) -> list[str]:
        """Ask the relevance matcher which active skills fit the query."""
        manifests = [entry.manifest for entry in self.active()]
        return list(self.matcher.match(query, manifests))

    def pop_warnings(self) -> dict[str, tuple[ProbeOutcome, ...]]:
        """
        Return degraded-capability warnings gathered since the last call.

        Each load or reload surfaces a skill's warnings once; activations do
        not repeat them.
        """
        pending = self._pending_warnings
        self._pending_warnings = {}
        return pending

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise RegistryClosed("registry has been shut down")

    def _require(self, skill_id: str) -> RegistryEntry:
        entry = self._entries.get(skill_id)
        if entry is None:
            raise SkillNotFoundError(skill_id)
        return entry

    def _lock_for(self, skill_id: str) -> asyncio.Lock:
        lock = self._locks.get(skill_id)
        if lock is None:
            lock = self._locks[skill_id] = asyncio.Lock()
        return lock

    def _scan(self, source: SkillSource, directory: Path) -> list[Manifest]:
        """Parse every manifest under a source directory, recording failures."""
        if not directory.exists():
            logger.info(f"Skills directory does not exist: {directory}")
            return []

        manifests: list[Manifest] = []
        seen: dict[str, Path] = {}
        for path in sorted(directory.iterdir()):
            if path.is_dir() and (path / ManifestParser.SKILL_FILE).is_file():
                manifest_file = path / ManifestParser.SKILL_FILE
            elif path.is_file() and path.suffix in ManifestParser.MANIFEST_SUFFIXES:
                manifest_file = path
            else:
                continue

            try:
                manifest = self.parser.parse_file(manifest_file, source)
            except ManifestParseError as e:
                self.errors[str(manifest_file)] = str(e)
                logger.warning(f"Skipping unparseable skill manifest: {e}")
                continue

            if manifest.skill_id in seen:
                message = (
                    f"duplicate skill id '{manifest.skill_id}' "
                    f"(already defined in {seen[manifest.skill_id]})"
                )
                self.errors[str(manifest_file)] = message
                logger.warning(f"Skipping {manifest_file}: {message}")
                continue

            self.errors.pop(str(manifest_file), None)
            seen[manifest.skill_id] = manifest_file
            manifests.append(manifest)
        return manifests

    async def _install(self, manifest: Manifest) -> bool:
        """Gate a freshly discovered manifest and record it."""
        async with self._lock_for(manifest.skill_id):
            existing = self._entries.get(manifest.skill_id)
            if (
                existing is not None
                and not existing.mutable
                and manifest.source is SkillSource.USER
            ):
                message = f"skill id '{manifest.skill_id}' is reserved by a bundled skill"
                self.errors[str(manifest.path)] = message
                logger.warning(f"Rejected user skill: {message}")
                return False

            if existing is None:
                self._entries[manifest.skill_id] = RegistryEntry(manifest)
            elif existing.mutable and manifest.source is SkillSource.BUNDLED:
                logger.warning(
                    f"Bundled skill '{manifest.skill_id}' replaces user skill "
                    f"from {existing.manifest.path}"
                )

            result = await self._evaluate(manifest)
            if result is None:
                return False
            self._record(manifest, result)
            return True

    async def _reload_entry(self, entry: RegistryEntry, reparse: bool) -> GatingResult:
        skill_id = entry.skill_id
        async with self._lock_for(skill_id):
            entry = self._require(skill_id)
            manifest = entry.manifest
            if reparse and manifest.path is not None:
                manifest = await asyncio.to_thread(
                    self.parser.parse_file, manifest.path, manifest.source
                )
                if manifest.skill_id != skill_id:
                    raise ManifestParseError(
                        f"skill id changed from '{skill_id}' to '{manifest.skill_id}'",
                        str(manifest.path),
                    )
            result = await self._evaluate(manifest)
            if result is None:
                raise GatingAborted(skill_id)
            self._record(manifest, result)
            return result

    async def _reload_all(self) -> None:
        # Bundled skills keep the manifest they shipped with
        bundled = [entry for entry in list(self._entries.values()) if not entry.mutable]
        await asyncio.gather(
            *(self._reload_entry(entry, reparse=False) for entry in bundled)
        )

        if SkillSource.USER in self._discovered_sources:
            await self.discover(SkillSource.USER)

        # Skills registered through overwrite() have no file to rediscover
        orphans = [
            entry
            for entry in list(self._entries.values())
            if entry.mutable and entry.manifest.path is None
        ]
        await asyncio.gather(
            *(self._reload_entry(entry, reparse=False) for entry in orphans)
        )

    async def _drop_vanished_user_skills(self, found: set[str]) -> None:
        user_dir = self.source_dirs[SkillSource.USER]
        for skill_id, entry in list(self._entries.items()):
            path = entry.manifest.path
            if (
                entry.mutable
                and skill_id not in found
                and path is not None
                and user_dir in path.parents
            ):
                async with self._lock_for(skill_id):
                    if self._entries.get(skill_id) is entry:
                        del self._entries[skill_id]
                        self._pending_warnings.pop(skill_id, None)
                        logger.info(f"User skill '{skill_id}' no longer on disk, removed")

    async def _evaluate(self, manifest: Manifest) -> Optional[GatingResult]:
        """Run the evaluator as a tracked task; None if it was aborted."""
        skill_id = manifest.skill_id
        self._aborted.discard(skill_id)
        task = asyncio.ensure_future(self._gate_in_context(manifest))
        self._inflight[skill_id] = task
        try:
            return await task
        except asyncio.CancelledError:
            if skill_id in self._aborted:
                self._aborted.discard(skill_id)
                logger.warning(f"Gating aborted for skill '{skill_id}'")
                return None
            raise
        finally:
            if self._inflight.get(skill_id) is task:
                del self._inflight[skill_id]

    async def _gate_in_context(self, manifest: Manifest) -> GatingResult:
        # Runs in its own task, so these fields stay local to this evaluation
        add_context(skill_id=manifest.skill_id, source=manifest.source.value)
        return await self.evaluator.evaluate(manifest)

    def _record(self, manifest: Manifest, result: GatingResult) -> None:
        if self._closed:
            return
        self._entries[manifest.skill_id] = RegistryEntry(manifest, result)

        if result.decision is GatingDecision.FAIL:
            self._pending_warnings.pop(manifest.skill_id, None)
            missing = ", ".join(o.requirement.describe() for o in result.failures)
            logger.warning(f"Skill '{manifest.skill_id}' inactive, missing {missing}")
        elif result.decision is GatingDecision.PASS_WITH_WARNINGS:
            self._pending_warnings[manifest.skill_id] = result.warnings
            missing = ", ".join(o.requirement.describe() for o in result.warnings)
            logger.warning(
                f"Skill '{manifest.skill_id}' active with reduced capability, missing {missing}"
            )
        else:
            self._pending_warnings.pop(manifest.skill_id, None)
            logger.info(f"Skill '{manifest.skill_id}' active")
