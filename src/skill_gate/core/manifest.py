"""Skill manifest model and parser.

A manifest declares what a skill needs from its environment. It is read
either from the YAML frontmatter of a SKILL.md file or from a standalone
YAML document:

    skill_id: git-helper
    requirements:
      - {kind: binary, name: git, necessity: required}
      - {kind: env, name: GITHUB_TOKEN, necessity: optional}
    requires:
      python_packages: [requests]
      optional_bins: [gh]
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import yaml

from ..observability.logging_config import get_logger
from .errors import ManifestParseError

logger = get_logger(__name__)

RESERVED_SKILL_IDS = frozenset({"all"})


class RequirementKind(Enum):
    """Closed set of dependency kinds a manifest may declare."""

    BINARY = "binary"
    INTERPRETER_PACKAGE = "interpreter-package"
    ENVIRONMENT_VARIABLE = "environment-variable"
    CONFIG_FILE = "config-file"


_KIND_ALIASES = {
    "binary": RequirementKind.BINARY,
    "bin": RequirementKind.BINARY,
    "bins": RequirementKind.BINARY,
    "interpreter-package": RequirementKind.INTERPRETER_PACKAGE,
    "python-package": RequirementKind.INTERPRETER_PACKAGE,
    "package": RequirementKind.INTERPRETER_PACKAGE,
    "environment-variable": RequirementKind.ENVIRONMENT_VARIABLE,
    "env": RequirementKind.ENVIRONMENT_VARIABLE,
    "config-file": RequirementKind.CONFIG_FILE,
    "config": RequirementKind.CONFIG_FILE,
}


class Necessity(Enum):
    """Whether a missing dependency blocks the skill or only degrades it."""

    REQUIRED = "required"
    OPTIONAL = "optional"


class SkillSource(Enum):
    """Where a skill definition came from."""

    BUNDLED = "bundled"  # shipped with the host, read-only
    USER = "user"  # user supplied, mutable


# `requires:` shorthand fields, in the order they are appended
_SHORTHAND_FIELDS = (
    ("bins", RequirementKind.BINARY, Necessity.REQUIRED),
    ("env", RequirementKind.ENVIRONMENT_VARIABLE, Necessity.REQUIRED),
    ("config", RequirementKind.CONFIG_FILE, Necessity.REQUIRED),
    ("python_packages", RequirementKind.INTERPRETER_PACKAGE, Necessity.REQUIRED),
    ("optional_bins", RequirementKind.BINARY, Necessity.OPTIONAL),
    ("optional_env", RequirementKind.ENVIRONMENT_VARIABLE, Necessity.OPTIONAL),
    ("optional_config", RequirementKind.CONFIG_FILE, Necessity.OPTIONAL),
    (
        "optional_python_packages",
        RequirementKind.INTERPRETER_PACKAGE,
        Necessity.OPTIONAL,
    ),
)


@dataclass(frozen=True)
class Requirement:
    """One declared dependency."""

    kind: RequirementKind
    name: str
    necessity: Necessity = Necessity.REQUIRED

    def __post_init__(self) -> None:
        if not isinstance(self.kind, RequirementKind):
            raise ValueError(f"invalid requirement kind: {self.kind!r}")
        if not self.name or not self.name.strip():
            raise ValueError("requirement name must be non-empty")

    @property
    def key(self) -> tuple[RequirementKind, str]:
        return (self.kind, self.name)

    @property
    def required(self) -> bool:
        return self.necessity is Necessity.REQUIRED

    def describe(self) -> str:
        return f"{self.necessity.value} {self.kind.value} '{self.name}'"


@dataclass(frozen=True)
class Manifest:
    """Full requirement set for one skill, plus identity and opaque metadata."""

    skill_id: str
    source: SkillSource
    requirements: tuple[Requirement, ...] = ()
    description: str = ""
    tags: tuple[str, ...] = ()
    path: Optional[Path] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "requirements", merge_duplicates(self.skill_id, self.requirements)
        )

    @property
    def required(self) -> tuple[Requirement, ...]:
        return tuple(r for r in self.requirements if r.required)

    @property
    def optional(self) -> tuple[Requirement, ...]:
        return tuple(r for r in self.requirements if not r.required)


def merge_duplicates(
    skill_id: str, requirements: Sequence[Requirement]
) -> tuple[Requirement, ...]:
    """Collapse requirements sharing (kind, name); required wins over optional.

    The merged entry keeps the position of the first declaration.
    """
    merged: dict[tuple[RequirementKind, str], Requirement] = {}
    for requirement in requirements:
        existing = merged.get(requirement.key)
        if existing is None:
            merged[requirement.key] = requirement
            continue
        if requirement.required and not existing.required:
            merged[requirement.key] = requirement
        logger.info(
            f"Merged duplicate requirement for skill '{skill_id}': "
            f"{requirement.kind.value} '{requirement.name}' "
            f"-> {merged[requirement.key].necessity.value}",
            extra={"skill_id": skill_id},
        )
    return tuple(merged.values())


class ManifestParser:
    """
    Parses manifest documents into Manifest objects.

    Parsing is pure: it never probes the environment. Malformed documents
    raise ManifestParseError; unknown top-level fields are ignored.
    """

    SKILL_FILE = "SKILL.md"
    MANIFEST_SUFFIXES = (".yaml", ".yml")

    def parse(
        self,
        document: Any,
        source: SkillSource,
        path: Optional[Path] = None,
    ) -> Manifest:
        """
        Parse a manifest document.

        Args:
            document: Mapping loaded from YAML (or built in code)
            source: Whether the skill is bundled or user supplied
            path: File the document came from, for diagnostics

        Returns:
            Manifest with duplicates merged

        Raises:
            ManifestParseError: If the document is malformed
        """
        where = str(path) if path else None
        if not isinstance(document, Mapping):
            raise ManifestParseError("manifest must be a mapping", where)

        skill_id = self._parse_skill_id(document, where)

        requirements = []
        raw_requirements = document.get("requirements")
        if raw_requirements is not None:
            if not isinstance(raw_requirements, list):
                raise ManifestParseError("'requirements' must be a list", where)
            for index, raw in enumerate(raw_requirements):
                requirements.append(self._parse_requirement(raw, index, where))

        requires = document.get("requires")
        if requires is not None:
            requirements.extend(self._parse_shorthand(requires, where))

        description = document.get("description") or ""
        if not isinstance(description, str):
            raise ManifestParseError("'description' must be a string", where)

        tags = document.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ManifestParseError("'tags' must be a list of strings", where)

        return Manifest(
            skill_id=skill_id,
            source=source,
            requirements=tuple(requirements),
            description=description.strip(),
            tags=tuple(tags),
            path=path,
        )

    def parse_file(self, path: Path, source: SkillSource) -> Manifest:
        """
        Parse a SKILL.md file (YAML frontmatter) or a standalone YAML manifest.

        Raises:
            ManifestParseError: If the file cannot be read or is malformed
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestParseError(f"cannot read manifest: {e}", str(path))

        if path.name == self.SKILL_FILE:
            document = self._load_frontmatter(content, path)
        else:
            document = self._load_yaml(content, path)

        return self.parse(document, source, path=path)

    def _parse_skill_id(self, document: Mapping, where: Optional[str]) -> str:
        # SKILL.md frontmatter names the skill with `name`
        raw = document.get("skill_id", document.get("name"))
        if raw is None:
            raise ManifestParseError("missing 'skill_id'", where)
        if not isinstance(raw, str):
            raise ManifestParseError("'skill_id' must be a string", where)
        skill_id = raw.strip()
        if not skill_id:
            raise ManifestParseError("'skill_id' must be non-empty", where)
        if skill_id.lower() in RESERVED_SKILL_IDS:
            raise ManifestParseError(f"'skill_id' '{skill_id}' is reserved", where)
        return skill_id

    def _parse_requirement(
        self, raw: Any, index: int, where: Optional[str]
    ) -> Requirement:
        if not isinstance(raw, Mapping):
            raise ManifestParseError(f"requirement #{index} must be a mapping", where)

        kind_raw = raw.get("kind")
        if not isinstance(kind_raw, str):
            raise ManifestParseError(f"requirement #{index}: 'kind' must be a string", where)
        kind = _KIND_ALIASES.get(kind_raw.strip().lower())
        if kind is None:
            raise ManifestParseError(
                f"requirement #{index}: unknown kind '{kind_raw}'", where
            )

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ManifestParseError(
                f"requirement #{index}: 'name' must be a non-empty string", where
            )

        necessity_raw = raw.get("necessity", Necessity.REQUIRED.value)
        try:
            necessity = Necessity(str(necessity_raw).strip().lower())
        except ValueError:
            raise ManifestParseError(
                f"requirement #{index}: unknown necessity '{necessity_raw}'", where
            )

        return Requirement(kind=kind, name=name.strip(), necessity=necessity)

    def _parse_shorthand(self, requires: Any, where: Optional[str]) -> list[Requirement]:
        if not isinstance(requires, Mapping):
            raise ManifestParseError("'requires' must be a mapping", where)

        requirements = []
        for field_name, kind, necessity in _SHORTHAND_FIELDS:
            names = requires.get(field_name) or []
            if not isinstance(names, list):
                raise ManifestParseError(f"'requires.{field_name}' must be a list", where)
            for name in names:
                if not isinstance(name, str) or not name.strip():
                    raise ManifestParseError(
                        f"'requires.{field_name}' entries must be non-empty strings",
                        where,
                    )
                requirements.append(
                    Requirement(kind=kind, name=name.strip(), necessity=necessity)
                )
        return requirements

    def _load_frontmatter(self, content: str, path: Path) -> Any:
        if not content.startswith("---"):
            raise ManifestParseError("SKILL.md must start with YAML frontmatter (---)", str(path))

        parts = content.split("---", 2)
        if len(parts) < 3:
            raise ManifestParseError("invalid SKILL.md format: missing closing ---", str(path))

        return self._load_yaml(parts[1], path)

    def _load_yaml(self, text: str, path: Path) -> Any:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ManifestParseError(f"invalid YAML: {e}", str(path))
