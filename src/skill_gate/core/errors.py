"""Error types raised by the gating core."""

from typing import Optional


class SkillGateError(Exception):
    """Base class for all skill gating errors."""


class ManifestParseError(SkillGateError):
    """Raised when a skill manifest document is malformed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


# Short alias used by callers that think in terms of "parse errors"
ParseError = ManifestParseError


class TrustViolation(SkillGateError):
    """Raised when a mutating call targets a bundled (immutable) skill."""

    def __init__(self, skill_id: str, operation: str):
        self.skill_id = skill_id
        self.operation = operation
        super().__init__(
            f"cannot {operation} bundled skill '{skill_id}': bundled skills are read-only"
        )


class GatingAborted(SkillGateError):
    """Raised when a gating evaluation was cancelled before it produced a result."""

    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(f"gating of skill '{skill_id}' was aborted")


class RegistryClosed(SkillGateError):
    """Raised when a registry is used after shutdown()."""


class SkillNotFoundError(SkillGateError, KeyError):
    """Raised when a skill id is not known to the registry."""

    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(f"skill '{skill_id}' is not registered")

    def __str__(self) -> str:
        return self.args[0]
