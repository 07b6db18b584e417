# prompt_debugger/validation_agent.py

import json
import re
from typing import Any, Dict, List, Optional

from prompt_debugger.base_utils import BaseUtils, logger
from prompt_debugger.entities import Malformed, ValidationVerdict
from prompt_debugger.errors import SchemaError
from prompt_debugger.llm_client import LlmGateway
from prompt_debugger.prompt_library import PromptLibrary
from prompt_debugger.response_extractor import parse_step_output
from prompt_debugger.schema_manager import VERDICT_SCHEMA, SchemaValidator

VALIDATION_STEP = "validation"
DIAGNOSIS_SUMMARY_KEYS = ("issue_identified", "problem_type", "root_cause_analysis", "expected_impact")


class ValidationAgent(BaseUtils):
    """
    Second opinion on a candidate prompt: does it fix the diagnosed issue?

    Any parse or schema failure yields ValidationVerdict.failed(). Service
    errors propagate so the orchestrator can count the iteration as failed.
    """

    def __init__(self, gateway: LlmGateway, library: PromptLibrary, *, validator: SchemaValidator | None = None):
        self.gateway = gateway
        self.library = library
        self.validator = validator or SchemaValidator()

    def build_prompt(self, original: str, modified: str, diagnosis: Optional[Dict[str, Any]]) -> str:
        summary = {k: diagnosis.get(k) for k in DIAGNOSIS_SUMMARY_KEYS if k in diagnosis} if diagnosis else {}
        task = self.library.render(
            "validation_task",
            OUTPUT_SCHEMA=json.dumps(self.validator.to_json_schema(VERDICT_SCHEMA), indent=2),
        )
        sections = [
            self.library.get("system"),
            task,
            "## Diagnosed issue\n" + (json.dumps(summary, indent=2, ensure_ascii=False) if summary else "Not available."),
            "## Original prompt\n" + original,
            "## Revised prompt\n" + modified,
            "Respond with raw JSON only.",
        ]
        return "\n\n".join(s.strip() for s in sections)

    def validate_solution(
        self,
        original: str,
        modified: str,
        diagnosis: Optional[Dict[str, Any]],
        *,
        timeout: float | None = None,
    ) -> ValidationVerdict:
        raw = self.gateway.invoke(self.build_prompt(original, modified, diagnosis), VALIDATION_STEP, timeout=timeout)

        parsed = parse_step_output(raw)
        if isinstance(parsed, Malformed):
            logger.warning(f"Validation output is not valid JSON ({parsed.reason}): {self.preview(raw)!r}")
            return ValidationVerdict.failed()

        try:
            data = self.validator.require(parsed.value, VERDICT_SCHEMA)
        except SchemaError as e:
            logger.warning(f"Validation verdict rejected: {e.violations}")
            return ValidationVerdict.failed()
        return ValidationVerdict.from_dict(data)


# -----------------------
# Local checks
# -----------------------

_CONFLICT_PATTERNS = (
    (re.compile(r"\bnever\b.*\balways\b", re.IGNORECASE), "Contradiction between 'never' and 'always'"),
    (re.compile(r"\balways\b.*\bnever\b", re.IGNORECASE), "Contradiction between 'always' and 'never'"),
    (re.compile(r"\bmust\b.*\bshould not\b", re.IGNORECASE), "Contradiction between 'must' and 'should not'"),
    (re.compile(r"\bshould not\b.*\bmust\b", re.IGNORECASE), "Contradiction between 'should not' and 'must'"),
)


def detect_prompt_conflicts(prompt: str) -> List[Dict[str, Any]]:
    """Flags lines that pair opposing directives. Heuristic, line by line."""
    conflicts = []
    for line_no, line in enumerate((prompt or "").splitlines(), start=1):
        for pattern, description in _CONFLICT_PATTERNS:
            if pattern.search(line):
                conflicts.append({
                    "type": "potential_contradiction",
                    "description": description,
                    "severity": "medium",
                    "line": line_no,
                    "text": line.strip(),
                })
    return conflicts
