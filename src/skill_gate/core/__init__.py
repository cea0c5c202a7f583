"""Core gating components: manifests, probes, evaluator and registry."""

from .errors import (
    GatingAborted,
    ManifestParseError,
    ParseError,
    RegistryClosed,
    SkillGateError,
    SkillNotFoundError,
    TrustViolation,
)
from .gating import (
    GatingDecision,
    GatingEvaluator,
    GatingResult,
    ProbeOutcome,
    format_report,
    reduce_outcomes,
)
from .manifest import (
    Manifest,
    ManifestParser,
    Necessity,
    Requirement,
    RequirementKind,
    SkillSource,
)
from .probes import (
    BinaryProbe,
    ConfigFileProbe,
    EnvironmentVariableProbe,
    InterpreterPackageProbe,
    Probe,
    ProbeReport,
    ProbeSet,
    ProcessLimiter,
)
from .registry import ALL_SKILLS, RegistryEntry, SkillRegistry, SkillState, SkillStatus
from .relevance import KeywordMatcher, RelevanceMatcher

__all__ = [
    "ALL_SKILLS",
    "BinaryProbe",
    "ConfigFileProbe",
    "EnvironmentVariableProbe",
    "GatingAborted",
    "GatingDecision",
    "GatingEvaluator",
    "GatingResult",
    "InterpreterPackageProbe",
    "KeywordMatcher",
    "Manifest",
    "ManifestParseError",
    "ManifestParser",
    "Necessity",
    "ParseError",
    "Probe",
    "ProbeOutcome",
    "ProbeReport",
    "ProbeSet",
    "ProcessLimiter",
    "RegistryClosed",
    "RegistryEntry",
    "RelevanceMatcher",
    "Requirement",
    "RequirementKind",
    "SkillGateError",
    "SkillNotFoundError",
    "SkillRegistry",
    "SkillSource",
    "SkillState",
    "SkillStatus",
    "TrustViolation",
    "format_report",
    "reduce_outcomes",
]
