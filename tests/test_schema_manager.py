import copy
import json

import pytest

from conftest import diagnosis_json

from prompt_debugger.errors import SchemaError
from prompt_debugger.schema_manager import DIAGNOSIS_SCHEMA, VERDICT_SCHEMA, SchemaField, SchemaValidator


def test_valid_diagnosis_has_no_errors() -> None:
    data = json.loads(diagnosis_json(fenced=False))

    ok, errors = SchemaValidator().validate(data, DIAGNOSIS_SCHEMA)

    assert ok is True
    assert errors == []


def test_collects_all_violations_in_one_pass() -> None:
    data = json.loads(diagnosis_json(fenced=False))
    del data["expected_impact"]
    data["problem_type"] = "bad_vibes"
    data["confidence_score"] = 0.9
    data["test_scenarios"][0].pop("user_input")

    ok, errors = SchemaValidator().validate(data, DIAGNOSIS_SCHEMA)

    assert ok is False
    assert "$.expected_impact: missing required field" in errors
    assert any(e.startswith("$.problem_type:") and "bad_vibes" in e for e in errors)
    assert "$.confidence_score: expected string, got number" in errors
    assert "$.test_scenarios[0].user_input: missing required field" in errors
    assert len(errors) == 4


def test_validation_does_not_mutate_input() -> None:
    data = {"valid": "yes", "confidence": 2}
    snapshot = copy.deepcopy(data)

    SchemaValidator().validate(data, VERDICT_SCHEMA)

    assert data == snapshot


def test_number_bounds_and_boolean_is_not_a_number() -> None:
    validator = SchemaValidator()

    ok, errors = validator.validate({"valid": True, "confidence": 1.5}, VERDICT_SCHEMA)
    assert not ok
    assert errors == ["$.confidence: 1.5 is above maximum 1"]

    ok, errors = validator.validate({"valid": True, "confidence": True}, VERDICT_SCHEMA)
    assert errors == ["$.confidence: expected number, got boolean"]


def test_optional_fields_may_be_absent() -> None:
    ok, errors = SchemaValidator().validate({"valid": False, "confidence": 0}, VERDICT_SCHEMA)

    assert ok
    assert errors == []


def test_to_json_schema_lists_required_fields() -> None:
    schema = SchemaField("root", "object", fields=(
        SchemaField("a", "string"),
        SchemaField("b", "array", required=False, items=SchemaField("b_item", "integer")),
    ))

    rendered = SchemaValidator().to_json_schema(schema)

    assert rendered["required"] == ["a"]
    assert rendered["properties"]["b"] == {"type": "array", "items": {"type": "integer"}}


def test_require_raises_with_every_violation() -> None:
    with pytest.raises(SchemaError) as exc:
        SchemaValidator().require({"confidence": "high"}, VERDICT_SCHEMA)

    assert "$.valid: missing required field" in exc.value.violations
    assert "$.confidence: expected number, got string" in exc.value.violations
    assert exc.value.to_dict()["kind"] == "schema_error"
