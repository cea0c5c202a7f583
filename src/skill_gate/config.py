"""Configuration management for skill gating."""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

_PROJECT_ROOT = Path(__file__).parent.parent.parent

DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_MAX_PROCESSES = 4


class PackageNameMatch(Enum):
    """How interpreter package names are compared against the listing."""

    LOOSE = "loose"  # case-insensitive, '-' and '_' equivalent
    STRICT = "strict"  # case-insensitive only


@dataclass(frozen=True)
class GatingSettings:
    """Tunables shared by the probe layer and the gating evaluator.

    Attributes:
        probe_timeout: Seconds a single probe may run before it is reported missing
        max_processes: Upper bound on simultaneously spawned probe processes
        config_base_dir: Directory relative config-file requirements resolve against
        python_executable: Interpreter used for package listings (None = search PATH)
        package_match: Package name comparison mode
    """

    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    max_processes: int = DEFAULT_MAX_PROCESSES
    config_base_dir: Path = field(default_factory=Path.cwd)
    python_executable: Optional[str] = None
    package_match: PackageNameMatch = PackageNameMatch.LOOSE

    def __post_init__(self) -> None:
        if self.probe_timeout <= 0:
            raise ValueError(f"probe_timeout must be positive, got {self.probe_timeout}")
        if self.max_processes < 1:
            raise ValueError(f"max_processes must be at least 1, got {self.max_processes}")


class Config:
    """Configuration loader for skill gating."""

    @staticmethod
    def get_skills_dir(default: Optional[Path] = None) -> Path:
        """
        Get the bundled skills directory from environment or default.

        Checks SKILLS_DIR environment variable. If not set, uses provided default
        or falls back to 'skills' directory relative to project root.

        Args:
            default: Optional default path if SKILLS_DIR not set

        Returns:
            Path to skills directory (absolute)
        """
        skills_dir_str = os.getenv("SKILLS_DIR")

        if skills_dir_str:
            skills_path = Path(skills_dir_str)
        elif default:
            skills_path = default
        else:
            skills_path = _PROJECT_ROOT / "skills"

        if not skills_path.is_absolute():
            skills_path = _PROJECT_ROOT / skills_path

        return skills_path.resolve()

    @staticmethod
    def get_user_skills_dir() -> Path:
        """Get the user skills directory (USER_SKILLS_DIR, default ~/.skill_gate/skills)."""
        user_dir = os.getenv("USER_SKILLS_DIR")
        if user_dir:
            return Path(user_dir).expanduser().resolve()
        return Path.home() / ".skill_gate" / "skills"

    @staticmethod
    def get_probe_timeout() -> float:
        """Get per-probe timeout in seconds."""
        raw = os.getenv("SKILL_GATE_PROBE_TIMEOUT")
        if raw is None:
            return DEFAULT_PROBE_TIMEOUT
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"SKILL_GATE_PROBE_TIMEOUT must be a number, got '{raw}'")

    @staticmethod
    def get_max_processes() -> int:
        """Get the bound on concurrently spawned probe processes."""
        raw = os.getenv("SKILL_GATE_MAX_PROCESSES")
        if raw is None:
            return DEFAULT_MAX_PROCESSES
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"SKILL_GATE_MAX_PROCESSES must be an integer, got '{raw}'")

    @staticmethod
    def get_config_base_dir() -> Path:
        """Get the base directory for relative config-file requirements."""
        raw = os.getenv("SKILL_GATE_CONFIG_DIR")
        if raw:
            return Path(raw).expanduser().resolve()
        return Path.cwd()

    @staticmethod
    def get_python_executable() -> Optional[str]:
        """Get the interpreter used for package probes, if pinned."""
        return os.getenv("SKILL_GATE_PYTHON") or None

    @staticmethod
    def get_package_match() -> PackageNameMatch:
        """Get the package name comparison mode."""
        raw = os.getenv("SKILL_GATE_PACKAGE_MATCH", PackageNameMatch.LOOSE.value)
        try:
            return PackageNameMatch(raw.strip().lower())
        except ValueError:
            raise ValueError(
                f"SKILL_GATE_PACKAGE_MATCH must be 'loose' or 'strict', got '{raw}'"
            )

    @classmethod
    def get_gating_settings(cls) -> GatingSettings:
        """Build GatingSettings from the environment."""
        return GatingSettings(
            probe_timeout=cls.get_probe_timeout(),
            max_processes=cls.get_max_processes(),
            config_base_dir=cls.get_config_base_dir(),
            python_executable=cls.get_python_executable(),
            package_match=cls.get_package_match(),
        )
