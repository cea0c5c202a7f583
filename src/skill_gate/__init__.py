"""Capability gating and discovery for pluggable agent skills."""

from .config import Config, GatingSettings, PackageNameMatch
from .core import (
    GatingDecision,
    GatingEvaluator,
    GatingResult,
    Manifest,
    ManifestParser,
    SkillRegistry,
    SkillSource,
    TrustViolation,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "GatingDecision",
    "GatingEvaluator",
    "GatingResult",
    "GatingSettings",
    "Manifest",
    "ManifestParser",
    "PackageNameMatch",
    "SkillRegistry",
    "SkillSource",
    "TrustViolation",
]
