# prompt_debugger/entities.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

# Request keys accepted from HTTP payloads; camelCase names are the bot platform's.
_REQUEST_ALIASES = {
    "conversation_history": ("conversation_history", "conversationHistory"),
    "target_response": ("target_response", "targetResponse"),
    "feedback": ("feedback",),
    "execution_context": ("execution_context", "executionContext"),
    "governing_prompt": ("governing_prompt", "dc_node_prompt", "dcNodePrompt"),
    "variables": ("variables",),
    "skills": ("skills",),
    "skill_executed": ("skill_executed", "skillExecuted"),
    "model_config": ("model_config", "modelConfig", "model_configuration"),
}

MOD_TARGETS = ("governing_prompt", "variable_prompt", "model_configuration")
_MOD_TARGET_ALIASES = {
    "dc_node_prompt": "governing_prompt",
    "governing_prompt": "governing_prompt",
    "prompt": "governing_prompt",
    "variable_prompt": "variable_prompt",
    "variable": "variable_prompt",
    "model_configuration": "model_configuration",
    "model_config": "model_configuration",
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _first_present(data: Dict[str, Any], keys) -> Any:
    for k in keys:
        if k in data:
            return data[k]
    return None


@dataclass
class AnalysisRequest:
    conversation_history: List[Dict[str, Any]] = field(default_factory=list)
    target_response: Any = None
    feedback: Any = None
    governing_prompt: Optional[str] = None
    execution_context: Any = None
    variables: List[Dict[str, str]] = field(default_factory=list)
    skills: List[Dict[str, str]] = field(default_factory=list)
    skill_executed: Optional[bool] = None
    model_config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisRequest":
        data = data or {}
        values = {name: _first_present(data, keys) for name, keys in _REQUEST_ALIASES.items()}
        return cls(
            conversation_history=values["conversation_history"] or [],
            target_response=values["target_response"],
            feedback=values["feedback"],
            governing_prompt=values["governing_prompt"],
            execution_context=values["execution_context"],
            variables=list(values["variables"] or []),
            skills=list(values["skills"] or []),
            skill_executed=values["skill_executed"],
            model_config=dict(values["model_config"] or {}),
        )

    def missing_fields(self) -> List[str]:
        missing = []
        if not isinstance(self.conversation_history, list) or _is_blank(self.conversation_history):
            missing.append("conversation_history")
        if _is_blank(self.target_response):
            missing.append("target_response")
        if _is_blank(self.feedback):
            missing.append("feedback")
        if not isinstance(self.governing_prompt, str) or _is_blank(self.governing_prompt):
            missing.append("governing_prompt")
        return missing


@dataclass
class Modification:
    target: str
    locator: str = ""
    original_text: str = ""
    replacement_text: str = ""
    rationale: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Modification":
        """
        Accepts both the internal field names and the LLM-facing ones
        (path / current / updated / reasoning).
        """
        raw_target = str(data.get("target") or "governing_prompt").strip().lower()
        target = _MOD_TARGET_ALIASES.get(raw_target, "governing_prompt")

        def text(*keys) -> str:
            v = _first_present(data, keys)
            if v is None:
                return ""
            return v if isinstance(v, str) else str(v)

        return cls(
            target=target,
            locator=text("locator", "path"),
            original_text=text("original_text", "current"),
            replacement_text=text("replacement_text", "updated"),
            rationale=text("rationale", "reasoning"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationVerdict:
    valid: bool
    confidence: float
    issues: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, reason: str = "Validation failed") -> "ValidationVerdict":
        return cls(valid=False, confidence=0.0, issues=[reason])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationVerdict":
        return cls(
            valid=bool(data.get("valid")),
            confidence=float(data.get("confidence") or 0.0),
            issues=[str(i) for i in (data.get("issues") or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DiagnosisResult:
    data: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)

    @property
    def problem_type(self) -> Optional[str]:
        return self.data.get("problem_type")

    @property
    def modifications(self) -> List[Modification]:
        changes = self.data.get("prompt_changes") or {}
        raw = changes.get("modifications") if isinstance(changes, dict) else changes
        if not isinstance(raw, list):
            return []
        return [Modification.from_dict(m) for m in raw if isinstance(m, dict)]


# -----------------------
# Step outcomes
# -----------------------

@dataclass
class Ok:
    value: Any
    warnings: List[str] = field(default_factory=list)


@dataclass
class Malformed:
    raw_text: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"error": True, "reason": self.reason, "raw_output": self.raw_text}


ParsedStep = Union[Ok, Malformed]


class PipelineStage:
    IDLE = "idle"
    DIAGNOSING = "diagnosing"
    PATCHING = "patching"
    COMPRESSING = "compressing"
    VALIDATING = "validating"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class PipelineState:
    current_prompt: str
    variables: Dict[str, str] = field(default_factory=dict)
    stage: str = PipelineStage.IDLE
    iteration: int = 0
    token_trail: List[Dict[str, Any]] = field(default_factory=list)
    last_error: Optional[Dict[str, Any]] = None
    diagnosis: Optional[Dict[str, Any]] = None
    verdict: Optional[ValidationVerdict] = None
    configuration_changes: List[Dict[str, Any]] = field(default_factory=list)
    schema_warnings: List[str] = field(default_factory=list)
    skipped_patches: List[Dict[str, Any]] = field(default_factory=list)
    pending_diagnosis: Optional[Dict[str, Any]] = None

    @property
    def tokens_used(self) -> int:
        return sum(int(t.get("total_tokens", 0) or 0) for t in self.token_trail)


@dataclass
class AnalysisResult:
    status: str
    final_prompt: str
    diagnosis: Optional[Dict[str, Any]]
    verdict: Optional[ValidationVerdict]
    iterations: int
    tokens_used: int
    token_trail: List[Dict[str, Any]] = field(default_factory=list)
    last_error: Optional[Dict[str, Any]] = None
    final_variables: List[Dict[str, str]] = field(default_factory=list)
    configuration_changes: List[Dict[str, Any]] = field(default_factory=list)
    potential_conflicts: List[Dict[str, Any]] = field(default_factory=list)
    schema_warnings: List[str] = field(default_factory=list)
    skipped_patches: List[Dict[str, Any]] = field(default_factory=list)
    fingerprint: Optional[str] = None
    cached: bool = False

    SUCCESS = "success"
    EXHAUSTED = "exhausted"

    @property
    def succeeded(self) -> bool:
        return self.status == self.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["verdict"] = self.verdict.to_dict() if self.verdict else None
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        verdict = data.get("verdict")
        return cls(
            status=data["status"],
            final_prompt=data.get("final_prompt", ""),
            diagnosis=data.get("diagnosis"),
            verdict=ValidationVerdict.from_dict(verdict) if isinstance(verdict, dict) else None,
            iterations=int(data.get("iterations", 0)),
            tokens_used=int(data.get("tokens_used", 0)),
            token_trail=list(data.get("token_trail") or []),
            last_error=data.get("last_error"),
            final_variables=list(data.get("final_variables") or []),
            configuration_changes=list(data.get("configuration_changes") or []),
            potential_conflicts=list(data.get("potential_conflicts") or []),
            schema_warnings=list(data.get("schema_warnings") or []),
            skipped_patches=list(data.get("skipped_patches") or []),
            fingerprint=data.get("fingerprint"),
            cached=bool(data.get("cached", False)),
        )
