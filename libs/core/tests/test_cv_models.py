import pytest
from pydantic import ValidationError

from libs.core.models import (
    CVRecord,
    ExperienceEntry,
    SearchArguments,
    ToolErrorKind,
    ToolResult,
)


def test_empty_record_is_well_typed() -> None:
    record = CVRecord.empty()
    assert record.personal == {}
    assert record.experience == []
    assert record.education == []
    assert record.skills == []
    assert record.raw_text == ""
    assert record.is_empty()


def test_record_is_immutable() -> None:
    record = CVRecord(skills=["Go"])
    with pytest.raises(ValidationError):
        record.skills = ["Rust"]  # type: ignore[misc]


def test_success_envelope_omits_error_fields() -> None:
    result = ToolResult.ok("get_skills", ["Go"], summary="Retrieved 1 skills")
    envelope = result.to_envelope()
    assert envelope["success"] is True
    assert envelope["data"] == ["Go"]
    assert envelope["tool"] == "get_skills"
    assert "error" not in envelope
    assert "error_kind" not in envelope
    assert envelope["timestamp"]


def test_failure_envelope_carries_kind() -> None:
    result = ToolResult.fail("nope", ToolErrorKind.unknown_tool, "Unknown tool: nope")
    envelope = result.to_envelope()
    assert envelope == {
        "success": False,
        "error": "Unknown tool: nope",
        "error_kind": "UnknownTool",
        "tool": "nope",
        "timestamp": result.timestamp,
    }


def test_envelope_serializes_nested_models() -> None:
    entry = ExperienceEntry(title="Engineer", company="Acme")
    envelope = ToolResult.ok("get_work_experience", [entry]).to_envelope()
    assert envelope["data"][0]["company"] == "Acme"


def test_result_branches_must_agree() -> None:
    with pytest.raises(ValidationError):
        ToolResult(success=True, tool="x", data=[], error="boom", error_kind=ToolErrorKind.internal)
    with pytest.raises(ValidationError):
        ToolResult(success=False, tool="x")


def test_search_arguments_strip_query() -> None:
    assert SearchArguments(query="  rust ").query == "rust"
    with pytest.raises(ValidationError):
        SearchArguments(query="   ")


def test_successful_result_requires_data() -> None:
    with pytest.raises(ValidationError):
        ToolResult(success=True, tool="get_skills")
    assert ToolResult.ok("get_skills", []).to_envelope()["data"] == []
