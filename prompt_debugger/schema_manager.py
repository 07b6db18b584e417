# prompt_debugger/schema_manager.py

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from prompt_debugger.errors import SchemaError

KINDS = ("string", "number", "integer", "boolean", "object", "array", "any")

PROBLEM_TYPES = (
    "skill_execution",
    "response_quality",
    "intent_understanding",
    "missing_context",
    "instruction_conflict",
    "token_truncation",
    "other",
)


@dataclass(frozen=True)
class SchemaField:
    """
    Typed node of a schema tree. `fields` describes an object's members,
    `items` the element of an array.
    """
    name: str
    kind: str
    required: bool = True
    enum: Optional[Tuple[Any, ...]] = None
    fields: Tuple["SchemaField", ...] = ()
    items: Optional["SchemaField"] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    description: str = ""

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown schema kind '{self.kind}' for field '{self.name}'")


def _type_ok(value: Any, kind: str) -> bool:
    if kind == "any":
        return True
    if kind == "string":
        return isinstance(value, str)
    if kind == "boolean":
        return isinstance(value, bool)
    if kind == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == "object":
        return isinstance(value, dict)
    if kind == "array":
        return isinstance(value, list)
    return False


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


class SchemaValidator:
    """
    Structural validation over a SchemaField tree.
    All violations are collected as "<path>: <message>" strings, starting at "$".
    """

    def validate(self, data: Any, schema: SchemaField) -> Tuple[bool, List[str]]:
        errors: List[str] = []
        self._validate_node(data, schema, "$", errors)
        return (not errors), errors

    def require(self, data: Any, schema: SchemaField) -> Any:
        ok, errors = self.validate(data, schema)
        if not ok:
            raise SchemaError(errors)
        return data

    def _validate_node(self, value: Any, node: SchemaField, path: str, errors: List[str]) -> None:
        if not _type_ok(value, node.kind):
            errors.append(f"{path}: expected {node.kind}, got {_type_name(value)}")
            return

        if node.enum is not None and value not in node.enum:
            allowed = ", ".join(repr(e) for e in node.enum)
            errors.append(f"{path}: {value!r} is not one of [{allowed}]")

        if node.kind in ("number", "integer"):
            if node.minimum is not None and value < node.minimum:
                errors.append(f"{path}: {value} is below minimum {node.minimum}")
            if node.maximum is not None and value > node.maximum:
                errors.append(f"{path}: {value} is above maximum {node.maximum}")

        if node.kind == "object":
            for child in node.fields:
                child_path = f"{path}.{child.name}"
                if child.name not in value:
                    if child.required:
                        errors.append(f"{child_path}: missing required field")
                    continue
                self._validate_node(value[child.name], child, child_path, errors)

        elif node.kind == "array" and node.items is not None:
            for i, item in enumerate(value):
                self._validate_node(item, node.items, f"{path}[{i}]", errors)

    # -----------------------
    # Prompt rendering
    # -----------------------

    def to_json_schema(self, node: SchemaField) -> Dict[str, Any]:
        """Renders the tree as a JSON-Schema-like dict for inclusion in prompts."""
        out: Dict[str, Any] = {"type": node.kind}
        if node.description:
            out["description"] = node.description
        if node.enum is not None:
            out["enum"] = list(node.enum)
        if node.minimum is not None:
            out["minimum"] = node.minimum
        if node.maximum is not None:
            out["maximum"] = node.maximum
        if node.kind == "object" and node.fields:
            out["properties"] = {f.name: self.to_json_schema(f) for f in node.fields}
            required = [f.name for f in node.fields if f.required]
            if required:
                out["required"] = required
        if node.kind == "array" and node.items is not None:
            out["items"] = self.to_json_schema(node.items)
        return out


# !######################################################################################################
#! SCHEMAS
# !######################################################################################################

_S = SchemaField

MODIFICATION_SCHEMA = _S("modification", "object", fields=(
    _S("target", "string", enum=("governing_prompt", "variable_prompt", "model_configuration")),
    _S("path", "string", description="Section of the prompt, variable name or configuration parameter to change"),
    _S("current", "string", description="Exact text to replace, copied from the current prompt; empty to append"),
    _S("updated", "string", description="Complete replacement text"),
    _S("reasoning", "string", description="How this change resolves the issue"),
))

TEST_SCENARIO_SCHEMA = _S("test_scenario", "object", fields=(
    _S("scenario", "string"),
    _S("user_input", "string"),
    _S("expected_outcome", "string"),
    _S("validation_criteria", "string"),
))

CONFIG_CHANGE_SCHEMA = _S("configuration_change", "object", fields=(
    _S("parameter", "string"),
    _S("current_value", "any", required=False),
    _S("recommended_value", "any"),
    _S("rationale", "string", required=False),
))

DIAGNOSIS_SCHEMA = _S("diagnosis", "object", fields=(
    _S("issue_identified", "string", description="Specific description of what went wrong, citing the conversation"),
    _S("problem_type", "string", enum=PROBLEM_TYPES),
    _S("root_cause_analysis", "string", description="Why the prompt, variables, skills or configuration caused the issue"),
    _S("prompt_changes", "object", fields=(
        _S("modifications", "array", items=MODIFICATION_SCHEMA),
    )),
    _S("expected_impact", "string"),
    _S("risks_and_tradeoffs", "string", required=False),
    _S("test_scenarios", "array", items=TEST_SCENARIO_SCHEMA),
    _S("model_configuration_analysis", "object", required=False, fields=(
        _S("configuration_impact", "string", required=False),
        _S("recommended_configuration_changes", "array", required=False, items=CONFIG_CHANGE_SCHEMA),
        _S("performance_limitations", "array", required=False, items=_S("limitation", "string")),
    )),
    _S("implementation_guide", "object", required=False, fields=(
        _S("priority", "string", required=False, enum=("high", "medium", "low")),
        _S("difficulty", "string", required=False, enum=("easy", "moderate", "complex")),
        _S("implementation_steps", "array", required=False, items=_S("step", "string")),
    )),
    _S("confidence_score", "string", enum=("High", "Medium", "Low")),
))

VERDICT_SCHEMA = _S("verdict", "object", fields=(
    _S("valid", "boolean"),
    _S("confidence", "number", minimum=0, maximum=1),
    _S("issues", "array", required=False, items=_S("issue", "string")),
))
