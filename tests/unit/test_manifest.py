"""Tests for ManifestParser - manifest documents, SKILL.md frontmatter, normalization."""

import logging
from pathlib import Path

import pytest

from skill_gate.core import (
    Manifest,
    ManifestParseError,
    ManifestParser,
    Necessity,
    ParseError,
    Requirement,
    RequirementKind,
    SkillSource,
)


@pytest.fixture
def parser() -> ManifestParser:
    return ManifestParser()


class TestRequirement:
    """Requirement and Manifest invariants."""

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="non-empty"):
            Requirement(RequirementKind.BINARY, "  ")

    def test_kind_must_be_enum(self):
        with pytest.raises(ValueError, match="invalid requirement kind"):
            Requirement("binary", "git")

    def test_default_necessity_is_required(self):
        requirement = Requirement(RequirementKind.BINARY, "git")
        assert requirement.necessity is Necessity.REQUIRED
        assert requirement.required is True
        assert requirement.key == (RequirementKind.BINARY, "git")

    def test_manifest_constructor_merges_duplicates(self):
        manifest = Manifest(
            skill_id="x",
            source=SkillSource.USER,
            requirements=(
                Requirement(RequirementKind.BINARY, "git", Necessity.OPTIONAL),
                Requirement(RequirementKind.ENVIRONMENT_VARIABLE, "FOO"),
                Requirement(RequirementKind.BINARY, "git", Necessity.REQUIRED),
            ),
        )
        assert manifest.requirements == (
            Requirement(RequirementKind.BINARY, "git", Necessity.REQUIRED),
            Requirement(RequirementKind.ENVIRONMENT_VARIABLE, "FOO"),
        )
        assert [r.name for r in manifest.required] == ["git", "FOO"]
        assert manifest.optional == ()


class TestManifestParser:
    """Parsing manifest mappings."""

    def test_parse_complete_document(self, parser: ManifestParser):
        manifest = parser.parse(
            {
                "skill_id": "x",
                "description": "  Does x things ",
                "tags": ["a", "b"],
                "requirements": [
                    {"kind": "binary", "name": "git", "necessity": "required"},
                    {"kind": "env", "name": "FOO", "necessity": "optional"},
                ],
            },
            SkillSource.BUNDLED,
        )

        assert manifest.skill_id == "x"
        assert manifest.source is SkillSource.BUNDLED
        assert manifest.description == "Does x things"
        assert manifest.tags == ("a", "b")
        assert manifest.requirements == (
            Requirement(RequirementKind.BINARY, "git", Necessity.REQUIRED),
            Requirement(RequirementKind.ENVIRONMENT_VARIABLE, "FOO", Necessity.OPTIONAL),
        )
        assert manifest.path is None

    @pytest.mark.parametrize(
        "kind,expected",
        [
            ("binary", RequirementKind.BINARY),
            ("bin", RequirementKind.BINARY),
            ("interpreter-package", RequirementKind.INTERPRETER_PACKAGE),
            ("python-package", RequirementKind.INTERPRETER_PACKAGE),
            ("environment-variable", RequirementKind.ENVIRONMENT_VARIABLE),
            ("ENV", RequirementKind.ENVIRONMENT_VARIABLE),
            ("config-file", RequirementKind.CONFIG_FILE),
            ("config", RequirementKind.CONFIG_FILE),
        ],
    )
    def test_kind_aliases(self, parser: ManifestParser, kind, expected):
        manifest = parser.parse(
            {"skill_id": "x", "requirements": [{"kind": kind, "name": "n"}]},
            SkillSource.USER,
        )
        assert manifest.requirements[0].kind is expected

    def test_necessity_defaults_to_required(self, parser: ManifestParser):
        manifest = parser.parse(
            {"skill_id": "x", "requirements": [{"kind": "binary", "name": "git"}]},
            SkillSource.USER,
        )
        assert manifest.requirements[0].necessity is Necessity.REQUIRED

    def test_name_field_used_when_skill_id_absent(self, parser: ManifestParser):
        manifest = parser.parse({"name": "hello-world"}, SkillSource.BUNDLED)
        assert manifest.skill_id == "hello-world"
        assert manifest.requirements == ()

    def test_unknown_top_level_fields_ignored(self, parser: ManifestParser):
        manifest = parser.parse(
            {"skill_id": "x", "version": "2.0", "activation": ["hello"]},
            SkillSource.USER,
        )
        assert manifest.skill_id == "x"

    @pytest.mark.parametrize(
        "document,message",
        [
            (["not", "a", "mapping"], "must be a mapping"),
            ({}, "missing 'skill_id'"),
            ({"skill_id": ""}, "non-empty"),
            ({"skill_id": 42}, "must be a string"),
            ({"skill_id": "all"}, "reserved"),
            ({"skill_id": "x", "requirements": {"kind": "binary"}}, "must be a list"),
            ({"skill_id": "x", "requirements": ["git"]}, "must be a mapping"),
            (
                {"skill_id": "x", "requirements": [{"kind": "service", "name": "db"}]},
                "unknown kind 'service'",
            ),
            ({"skill_id": "x", "requirements": [{"name": "git"}]}, "'kind' must be a string"),
            (
                {"skill_id": "x", "requirements": [{"kind": "binary", "name": ""}]},
                "'name' must be a non-empty string",
            ),
            (
                {"skill_id": "x", "requirements": [{"kind": "binary", "name": ["git"]}]},
                "'name' must be a non-empty string",
            ),
            (
                {
                    "skill_id": "x",
                    "requirements": [
                        {"kind": "binary", "name": "git", "necessity": "maybe"}
                    ],
                },
                "unknown necessity 'maybe'",
            ),
            ({"skill_id": "x", "tags": "a,b"}, "'tags' must be a list"),
            ({"skill_id": "x", "requires": ["git"]}, "'requires' must be a mapping"),
            ({"skill_id": "x", "requires": {"bins": "git"}}, "'requires.bins' must be a list"),
        ],
    )
    def test_malformed_documents_raise(self, parser: ManifestParser, document, message):
        with pytest.raises(ManifestParseError, match=message):
            parser.parse(document, SkillSource.USER)

    def test_parse_error_alias(self):
        assert ParseError is ManifestParseError

    def test_duplicate_requirement_merged_to_required(
        self, parser: ManifestParser, caplog: pytest.LogCaptureFixture
    ):
        """A duplicate optional entry collapses into the existing required one."""
        with caplog.at_level(logging.INFO, logger="skill_gate.core.manifest"):
            manifest = parser.parse(
                {
                    "skill_id": "x",
                    "requirements": [
                        {"kind": "binary", "name": "git", "necessity": "required"},
                        {"kind": "env", "name": "FOO", "necessity": "optional"},
                        {"kind": "binary", "name": "git", "necessity": "optional"},
                    ],
                },
                SkillSource.USER,
            )

        gits = [r for r in manifest.requirements if r.name == "git"]
        assert gits == [Requirement(RequirementKind.BINARY, "git", Necessity.REQUIRED)]
        assert len(manifest.requirements) == 2
        assert "Merged duplicate requirement" in caplog.text

    def test_same_name_different_kind_not_merged(self, parser: ManifestParser):
        manifest = parser.parse(
            {
                "skill_id": "x",
                "requirements": [
                    {"kind": "binary", "name": "docker"},
                    {"kind": "python-package", "name": "docker"},
                ],
            },
            SkillSource.USER,
        )
        assert len(manifest.requirements) == 2

    def test_requires_shorthand(self, parser: ManifestParser):
        manifest = parser.parse(
            {
                "skill_id": "x",
                "requirements": [{"kind": "binary", "name": "git"}],
                "requires": {
                    "bins": ["make"],
                    "env": ["API_KEY"],
                    "config": ["settings.toml"],
                    "python_packages": ["numpy"],
                    "optional_bins": ["gh"],
                    "optional_env": ["DEBUG"],
                    "optional_config": ["extra.toml"],
                    "optional_python_packages": ["scipy"],
                },
            },
            SkillSource.USER,
        )

        described = [(r.kind, r.name, r.necessity) for r in manifest.requirements]
        assert described == [
            (RequirementKind.BINARY, "git", Necessity.REQUIRED),
            (RequirementKind.BINARY, "make", Necessity.REQUIRED),
            (RequirementKind.ENVIRONMENT_VARIABLE, "API_KEY", Necessity.REQUIRED),
            (RequirementKind.CONFIG_FILE, "settings.toml", Necessity.REQUIRED),
            (RequirementKind.INTERPRETER_PACKAGE, "numpy", Necessity.REQUIRED),
            (RequirementKind.BINARY, "gh", Necessity.OPTIONAL),
            (RequirementKind.ENVIRONMENT_VARIABLE, "DEBUG", Necessity.OPTIONAL),
            (RequirementKind.CONFIG_FILE, "extra.toml", Necessity.OPTIONAL),
            (RequirementKind.INTERPRETER_PACKAGE, "scipy", Necessity.OPTIONAL),
        ]


class TestManifestFiles:
    """Parsing manifests from disk."""

    def test_parse_skill_md_frontmatter(self, parser: ManifestParser, tmp_path: Path):
        skill_file = tmp_path / "SKILL.md"
        skill_file.write_text(
            """---
name: git-helper
description: Git helper
requirements:
  - kind: binary
    name: git
---

# Git Helper

Body text is opaque and ignored --- even with dashes.
"""
        )

        manifest = parser.parse_file(skill_file, SkillSource.BUNDLED)

        assert manifest.skill_id == "git-helper"
        assert manifest.description == "Git helper"
        assert manifest.path == skill_file
        assert manifest.requirements == (Requirement(RequirementKind.BINARY, "git"),)

    def test_parse_yaml_manifest(self, parser: ManifestParser, tmp_path: Path):
        manifest_file = tmp_path / "x.yaml"
        manifest_file.write_text(
            "skill_id: x\nrequirements:\n  - {kind: env, name: FOO, necessity: optional}\n"
        )

        manifest = parser.parse_file(manifest_file, SkillSource.USER)

        assert manifest.skill_id == "x"
        assert manifest.requirements[0].necessity is Necessity.OPTIONAL

    def test_skill_md_without_frontmatter(self, parser: ManifestParser, tmp_path: Path):
        skill_file = tmp_path / "SKILL.md"
        skill_file.write_text("# No frontmatter here\n")

        with pytest.raises(ManifestParseError, match="must start with YAML frontmatter"):
            parser.parse_file(skill_file, SkillSource.USER)

    def test_skill_md_unclosed_frontmatter(self, parser: ManifestParser, tmp_path: Path):
        skill_file = tmp_path / "SKILL.md"
        skill_file.write_text("---\nname: x\n")

        with pytest.raises(ManifestParseError, match="missing closing"):
            parser.parse_file(skill_file, SkillSource.USER)

    def test_invalid_yaml(self, parser: ManifestParser, tmp_path: Path):
        manifest_file = tmp_path / "broken.yml"
        manifest_file.write_text("skill_id: [unclosed\n")

        with pytest.raises(ManifestParseError, match="invalid YAML") as exc_info:
            parser.parse_file(manifest_file, SkillSource.USER)
        assert exc_info.value.path == str(manifest_file)

    def test_missing_file(self, parser: ManifestParser, tmp_path: Path):
        with pytest.raises(ManifestParseError, match="cannot read manifest"):
            parser.parse_file(tmp_path / "nope.yaml", SkillSource.USER)
