"""Unit tests for manifest loading and static package validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from expert_runtime.errors import ManifestInvalid, ManifestMissing
from expert_runtime.spec.components import split_frontmatter
from expert_runtime.spec.manifest import load_manifest
from expert_runtime.spec.validator import render_report, validate_manifest


def _codes(result) -> list[str]:
    return [f.code for f in result.findings]


def test_load_manifest_missing(tmp_path: Path) -> None:
    with pytest.raises(ManifestMissing):
        load_manifest(tmp_path)


def test_load_manifest_rejects_non_mapping(tmp_path: Path) -> None:
    (tmp_path / "expert.yaml").write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ManifestInvalid):
        load_manifest(tmp_path)


def test_load_manifest_treats_numeric_version_as_text(make_expert) -> None:
    expert_dir = make_expert(manifest={"version": 1.0})

    manifest = load_manifest(expert_dir)

    assert manifest.version == "1.0"


def test_sample_package_is_clean(expert_dir: Path) -> None:
    manifest = load_manifest(expert_dir)

    result = validate_manifest(expert_dir, manifest)

    assert result.ok is True
    assert result.findings == []
    assert render_report(result.findings) == "Validation passed with no issues."


def test_missing_fields_and_components_are_errors(make_expert) -> None:
    expert_dir = make_expert(
        manifest={
            "description": "",
            "components": {"orchestrator": "orchestrator.md", "processes": ["processes/triage.md"]},
            "triggers": [],
        }
    )

    result = validate_manifest(expert_dir, load_manifest(expert_dir))

    assert result.ok is False
    codes = _codes(result)
    assert "required_field_missing" in codes
    assert codes.count("required_component_missing") == 2


def test_missing_component_path_is_reported(make_expert) -> None:
    expert_dir = make_expert()
    (expert_dir / "functions" / "summarize.md").unlink()

    result = validate_manifest(expert_dir, load_manifest(expert_dir))

    missing = [f for f in result.errors if f.code == "component_path_missing"]
    assert [f.path for f in missing] == ["functions/summarize.md"]
    # The process still references the function, now unresolved.
    assert "process_function_unresolved" in [f.code for f in result.warnings]


def test_cross_reference_findings(make_expert) -> None:
    expert_dir = make_expert(
        manifest={
            "requires": {"tools": []},
            "triggers": [{"name": "nightly", "type": "cron", "process": "missing", "expr": "0 1 * * *"}],
            "policy": {
                "approval": {
                    "default": "sometimes",
                    "overrides": {"crm.lookup": "never", "flat": "auto", "mail.send": "auto"},
                }
            },
            "learning": {"enabled": True, "approval": "later"},
        }
    )

    result = validate_manifest(expert_dir, load_manifest(expert_dir))
    codes = _codes(result)

    assert "trigger_process_unresolved" in codes
    assert "process_trigger_unresolved" in codes
    assert "process_tool_not_declared" in codes
    assert codes.count("policy_tier_invalid") == 2
    assert "policy_override_format" in codes
    assert codes.count("policy_override_tool_unknown") == 2
    assert "learning_approval_invalid" in codes


def test_missing_components_still_runs_remaining_checks(make_expert) -> None:
    expert_dir = make_expert(
        manifest={
            "components": None,
            "triggers": [{"name": "nightly", "type": "cron", "process": "ghost", "expr": "0 1 * * *"}],
            "policy": {"approval": {"default": "sometimes"}},
            "learning": {"enabled": True, "approval": "bogus"},
        }
    )

    result = validate_manifest(expert_dir, load_manifest(expert_dir))
    codes = _codes(result)

    assert codes.count("required_field_missing") == 1
    assert "required_component_missing" not in codes
    assert "trigger_process_unresolved" in codes
    assert "policy_tier_invalid" in codes
    assert "learning_approval_invalid" in codes


def test_unknown_override_operation_is_a_warning(make_expert) -> None:
    expert_dir = make_expert(
        manifest={"policy": {"approval": {"default": "confirm", "overrides": {"crm.delete": "manual"}}}}
    )

    result = validate_manifest(expert_dir, load_manifest(expert_dir))

    assert result.ok is True
    assert _codes(result) == ["policy_override_operation_unknown"]
    assert render_report(result.findings).startswith("Validation passed with warnings")


def test_function_tool_and_knowledge_references(make_expert) -> None:
    expert_dir = make_expert(
        files={
            "functions/summarize.md": (
                "---\nname: summarize\ntools: [mail]\nknowledge: [kb\\faq.md]\n---\nSummarize.\n"
            )
        }
    )

    result = validate_manifest(expert_dir, load_manifest(expert_dir))
    codes = _codes(result)

    assert "function_tool_not_declared" in codes
    assert "function_knowledge_unresolved" in codes


def test_split_frontmatter_without_block() -> None:
    doc = split_frontmatter("# Title\n\nbody\n")

    assert doc.frontmatter == {}
    assert doc.body.startswith("# Title")
