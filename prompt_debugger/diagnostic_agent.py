# prompt_debugger/diagnostic_agent.py

import json
from typing import Any, List, Optional

from prompt_debugger.base_utils import BaseUtils, logger
from prompt_debugger.entities import AnalysisRequest, DiagnosisResult, Malformed, Ok, ParsedStep, PipelineState
from prompt_debugger.llm_client import LlmGateway
from prompt_debugger.prompt_library import PromptLibrary
from prompt_debugger.response_extractor import parse_step_output
from prompt_debugger.schema_manager import DIAGNOSIS_SCHEMA, SchemaValidator
from prompt_debugger.token_budget import TOKEN_SAFETY_MARGIN, TokenBudgetManager

DIAGNOSIS_STEP = "diagnosis"
SYSTEM_RESERVED_TOKENS = 1500
HISTORY_WINDOW = 3
PROMPT_PREVIEW_CHARS = 4000
TRUNCATION_MARKER = "\n... (truncated for this step)"


def skill_status_sentence(skill_executed: Optional[bool]) -> str:
    if skill_executed is True:
        return "Skill was executed."
    if skill_executed is False:
        return "Skill was NOT executed."
    return "Skill execution status unknown."


class DiagnosticAgent(BaseUtils):
    """
    Asks the LLM why the bot misbehaved and which prompt edits would fix it.

    Returns Ok(DiagnosisResult, warnings) when the completion parses, with any
    schema violations as warnings, or Malformed(raw_text, reason) when it does not.
    """

    def __init__(
        self,
        gateway: LlmGateway,
        library: PromptLibrary,
        *,
        validator: SchemaValidator | None = None,
        encoding: Any = None,
        preview_chars: int = PROMPT_PREVIEW_CHARS,
        history_window: int = HISTORY_WINDOW,
        safety_margin: float = TOKEN_SAFETY_MARGIN,
    ):
        self.gateway = gateway
        self.library = library
        self.validator = validator or SchemaValidator()
        self._encoding = encoding
        self.preview_chars = preview_chars
        self.history_window = history_window
        self.safety_margin = safety_margin

    # -----------------------
    # Prompt assembly
    # -----------------------

    def _clip(self, text: str) -> str:
        if len(text) <= self.preview_chars:
            return text
        return text[:self.preview_chars] + TRUNCATION_MARKER

    def _render_history(self, history: List[dict]) -> str:
        lines = []
        for turn in history[-self.history_window:]:
            if isinstance(turn, dict):
                role = turn.get("role", "unknown")
                content = self._coerce_field_to_str(turn.get("content"))
            else:
                role, content = "unknown", self._coerce_field_to_str(turn)
            lines.append(f"{role}: {content}")
        return "\n".join(lines)

    def _render_skills(self, skills: List[dict]) -> str:
        if not skills:
            return "No skills configured."
        return "\n".join(
            f"- {s.get('name', 'unnamed')}: {self._coerce_field_to_str(s.get('description'))}"
            for s in skills if isinstance(s, dict)
        )

    def _render_variables(self, variables: dict) -> str:
        if not variables:
            return "No variables configured."
        return "\n\n".join(f"### {name}\n{self._clip(content)}" for name, content in variables.items())

    def build_prompt(self, state: PipelineState, request: AnalysisRequest) -> str:
        budget = TokenBudgetManager(request.model_config, safety_margin=self.safety_margin, encoding=self._encoding)
        system = budget.truncate_to_fit(self.library.get("system"), SYSTEM_RESERVED_TOKENS)
        output_format = self.library.render(
            "output_format",
            OUTPUT_SCHEMA=json.dumps(self.validator.to_json_schema(DIAGNOSIS_SCHEMA), indent=2),
        )
        execution_context = self._coerce_field_to_str(request.execution_context) or "None provided."
        model_config = json.dumps(request.model_config, indent=2, default=str) if request.model_config else "Not provided."

        sections = [
            system,
            self.library.get("architecture"),
            self.library.get("failure_types"),
            self.library.get("anti_patterns"),
            "## Conversation (most recent turns)\n" + self._render_history(request.conversation_history),
            "## Bot response under review\n" + self._coerce_field_to_str(request.target_response),
            "## Builder feedback\n" + self._coerce_field_to_str(request.feedback),
            "## Execution context\n" + self._clip(execution_context),
            "## Skill execution\n" + skill_status_sentence(request.skill_executed),
            "## Configured skills\n" + self._render_skills(request.skills),
            "## Configured variables\n" + self._render_variables(state.variables),
            "## Model configuration\n" + model_config,
            "## Current governing prompt\n" + self._clip(state.current_prompt),
            output_format,
            "Respond with raw JSON only.",
        ]
        return "\n\n".join(s.strip() for s in sections)

    # -----------------------
    # Step
    # -----------------------

    def diagnose(self, state: PipelineState, request: AnalysisRequest, *, timeout: float | None = None) -> ParsedStep:
        prompt = self.build_prompt(state, request)
        raw = self.gateway.invoke(prompt, DIAGNOSIS_STEP, timeout=timeout)

        parsed = parse_step_output(raw)
        if isinstance(parsed, Malformed):
            logger.warning(f"Diagnosis output is not valid JSON ({parsed.reason}): {self.preview(raw)!r}")
            return parsed

        ok, errors = self.validator.validate(parsed.value, DIAGNOSIS_SCHEMA)
        if not ok:
            logger.warning(f"Diagnosis has {len(errors)} schema violation(s): {errors}")
        return Ok(DiagnosisResult(parsed.value, errors), errors)
