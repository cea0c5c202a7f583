"""Dependency probes, one per requirement kind.

Each probe answers "is this dependency present" for a single name. Probes
do real I/O (PATH lookup, process spawn, filesystem stat, environment read)
but never change the environment, never retry and never raise for a missing
dependency: absence of the probe's own tooling is reported as not present.
Timeouts and process slots are applied by the caller, see `Probe.slot`.
"""

import asyncio
import contextlib
import os
import re
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, NamedTuple, Optional

from ..config import GatingSettings, PackageNameMatch
from ..observability.logging_config import get_logger
from .manifest import RequirementKind

logger = get_logger(__name__)


class ProbeReport(NamedTuple):
    """Raw answer from a probe."""

    present: bool
    detail: Optional[str] = None


class Probe(ABC):
    """Base class for requirement probes."""

    kind: RequirementKind
    limiter: Optional["ProcessLimiter"] = None

    def slot(self):
        """Async context to hold while checking; waits for a process slot if needed."""
        if self.limiter is None:
            return contextlib.nullcontext()
        return self.limiter

    @abstractmethod
    async def check(self, name: str) -> ProbeReport:
        """Check whether the named dependency is present."""


class BinaryProbe(Probe):
    """Resolves an executable on the search path (`which`/`where` semantics)."""

    kind = RequirementKind.BINARY

    def __init__(self, path: Optional[str] = None):
        # None means the process PATH at probe time
        self.path = path

    async def check(self, name: str) -> ProbeReport:
        resolved = await asyncio.to_thread(shutil.which, name, path=self.path)
        if resolved:
            return ProbeReport(True, resolved)
        return ProbeReport(False, f"'{name}' not found on PATH")


class InterpreterPackageProbe(Probe):
    """
    Checks the target interpreter's installed package listing.

    Runs `<python> -m pip list --format=freeze` and compares names
    case-insensitively; in LOOSE mode '-' and '_' are also equivalent so
    `my-package` matches `my_package`.

    Each check spawns a process, so callers hold `slot()` around it.
    """

    kind = RequirementKind.INTERPRETER_PACKAGE

    LIST_ARGS = ("-m", "pip", "list", "--format=freeze", "--disable-pip-version-check")

    def __init__(
        self,
        limiter: "ProcessLimiter",
        python_executable: Optional[str] = None,
        match: PackageNameMatch = PackageNameMatch.LOOSE,
    ):
        self.limiter = limiter
        self.python_executable = python_executable
        self.match = match

    def normalize(self, package_name: str) -> str:
        name = package_name.strip().lower()
        if self.match is PackageNameMatch.LOOSE:
            name = re.sub(r"[-_]+", "-", name)
        return name

    def resolve_interpreter(self) -> Optional[str]:
        """Find the interpreter to query, or None if none is installed."""
        if self.python_executable:
            return shutil.which(self.python_executable)
        return shutil.which("python3") or shutil.which("python")

    async def check(self, name: str) -> ProbeReport:
        interpreter = await asyncio.to_thread(self.resolve_interpreter)
        if interpreter is None:
            wanted = self.python_executable or "python3/python"
            return ProbeReport(False, f"no Python interpreter found ({wanted})")

        listing = await self._list_packages(interpreter)
        if isinstance(listing, ProbeReport):
            return listing

        wanted = self.normalize(name)
        for installed in listing:
            if self.normalize(installed) == wanted:
                return ProbeReport(True, f"{installed} installed for {interpreter}")
        return ProbeReport(False, f"'{name}' not installed for {interpreter}")

    async def _list_packages(self, interpreter: str) -> "list[str] | ProbeReport":
        try:
            process = await asyncio.create_subprocess_exec(
                interpreter,
                *self.LIST_ARGS,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Failed to spawn package listing: {e}")
            return ProbeReport(False, f"failed to run {interpreter}: {e}")

        try:
            stdout, stderr = await process.communicate()
        finally:
            # Cancelled by a timeout or an abort: don't leave the child behind
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await asyncio.shield(process.wait())

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip().splitlines()
            reason = message[-1] if message else f"exit code {process.returncode}"
            return ProbeReport(False, f"package listing failed: {reason}")

        try:
            text = stdout.decode("utf-8")
        except UnicodeDecodeError:
            return ProbeReport(False, "package listing output is not valid UTF-8")

        return parse_freeze_output(text)


def parse_freeze_output(text: str) -> list[str]:
    """Extract package names from `pip list --format=freeze` output."""
    names = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        # "name==1.0" or "name @ file:///..." for direct references
        name = re.split(r"==| @ ", line, maxsplit=1)[0].strip()
        if name:
            names.append(name)
    return names


class EnvironmentVariableProbe(Probe):
    """Checks that a variable is set; an empty value still counts as set."""

    kind = RequirementKind.ENVIRONMENT_VARIABLE

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ

    async def check(self, name: str) -> ProbeReport:
        environ = os.environ if self.environ is None else self.environ
        if name in environ:
            return ProbeReport(True, "set")
        return ProbeReport(False, f"environment variable '{name}' is not set")


class ConfigFileProbe(Probe):
    """Checks that a config path is an existing, readable regular file."""

    kind = RequirementKind.CONFIG_FILE

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def resolve(self, name: str) -> Path:
        path = Path(name).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    async def check(self, name: str) -> ProbeReport:
        path = self.resolve(name)
        return await asyncio.to_thread(self._stat, path)

    @staticmethod
    def _stat(path: Path) -> ProbeReport:
        try:
            if not path.exists():
                return ProbeReport(False, f"{path} does not exist")
        except OSError as e:
            return ProbeReport(False, f"cannot stat {path}: {e}")
        if not path.is_file():
            return ProbeReport(False, f"{path} is not a regular file")
        if not os.access(path, os.R_OK):
            return ProbeReport(False, f"{path} is not readable")
        return ProbeReport(True, str(path))


class ProcessLimiter:
    """
    Bounds the number of probe processes alive at the same time.

    Waiters queue instead of failing. A separate semaphore is kept per event
    loop so a ProbeSet can be reused across `asyncio.run` calls.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"process limit must be at least 1, got {limit}")
        self.limit = limit
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _current(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._loop = loop
            self._semaphore = asyncio.Semaphore(self.limit)
        return self._semaphore

    async def __aenter__(self) -> "ProcessLimiter":
        await self._current().acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._current().release()


class ProbeSet:
    """
    Dispatch table from requirement kind to probe.

    Every RequirementKind must have exactly one handler; a missing handler
    is a construction error rather than a runtime surprise.
    """

    def __init__(self, probes: Mapping[RequirementKind, Probe]):
        missing = [kind.value for kind in RequirementKind if kind not in probes]
        if missing:
            raise ValueError(f"no probe registered for: {', '.join(missing)}")
        self._probes = dict(probes)

    @classmethod
    def from_settings(cls, settings: GatingSettings) -> "ProbeSet":
        """Build the standard probes for the given settings."""
        limiter = ProcessLimiter(settings.max_processes)
        return cls(
            {
                RequirementKind.BINARY: BinaryProbe(),
                RequirementKind.INTERPRETER_PACKAGE: InterpreterPackageProbe(
                    limiter,
                    python_executable=settings.python_executable,
                    match=settings.package_match,
                ),
                RequirementKind.ENVIRONMENT_VARIABLE: EnvironmentVariableProbe(),
                RequirementKind.CONFIG_FILE: ConfigFileProbe(settings.config_base_dir),
            }
        )

    def for_kind(self, kind: RequirementKind) -> Probe:
        return self._probes[kind]
