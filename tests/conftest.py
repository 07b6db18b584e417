from __future__ import annotations

import json

import pytest

from prompt_debugger.llm_client import LlmGateway
from prompt_debugger.pipeline import PipelineOrchestrator
from prompt_debugger.prompt_library import default_prompt_library


class CharEncoding:
    """One token per character; stands in for tiktoken without downloads."""

    def encode_ordinary(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(t) for t in tokens)


class ScriptedService:
    """Returns scripted completions in order; exceptions in the script are raised."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    def __call__(self, prompt: str, *, model: str, temperature: float, max_output_tokens: int):
        self.calls.append({
            "prompt": prompt,
            "model": model,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        })
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeLlm:
    """
    Answers diagnosis and validation prompts from separate scripts.
    The last entry of each script repeats once the script runs out.
    """

    def __init__(self, diagnoses, verdicts) -> None:
        self.diagnoses = list(diagnoses)
        self.verdicts = list(verdicts)
        self.diagnosis_prompts: list[str] = []
        self.validation_prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.diagnosis_prompts) + len(self.validation_prompts)

    @staticmethod
    def _next(script):
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def __call__(self, prompt: str, *, model: str, temperature: float, max_output_tokens: int):
        if "## Revised prompt" in prompt:
            self.validation_prompts.append(prompt)
            return self._next(self.verdicts)
        self.diagnosis_prompts.append(prompt)
        return self._next(self.diagnoses)


def diagnosis_json(modifications=None, problem_type="skill_execution", fenced=True) -> str:
    body = {
        "issue_identified": "The bot refused a password reset request instead of running the reset skill.",
        "problem_type": problem_type,
        "root_cause_analysis": "The prompt never mentions the password-reset skill.",
        "prompt_changes": {"modifications": modifications if modifications is not None else []},
        "expected_impact": "Password reset questions trigger the skill.",
        "test_scenarios": [
            {
                "scenario": "User asks to reset password",
                "user_input": "How do I reset my password?",
                "expected_outcome": "Skill - Password Reset is executed",
                "validation_criteria": "Execution log shows the skill ran",
            }
        ],
        "confidence_score": "High",
    }
    text = json.dumps(body, indent=2)
    return f"```json\n{text}\n```" if fenced else text


def verdict_json(confidence: float, valid: bool = True, issues=None) -> str:
    return json.dumps({"valid": valid, "confidence": confidence, "issues": issues or []})


def mod(current: str, updated: str, target: str = "governing_prompt", path: str = "Skills") -> dict:
    return {"target": target, "path": path, "current": current, "updated": updated, "reasoning": "test"}


@pytest.fixture
def encoding() -> CharEncoding:
    return CharEncoding()


@pytest.fixture
def library():
    return default_prompt_library()


@pytest.fixture
def base_request() -> dict:
    return {
        "conversationHistory": [
            {"role": "user", "content": "How do I reset my password?"},
            {"role": "bot", "content": "I can't help with that."},
        ],
        "targetResponse": "I can't help with that.",
        "feedback": "Bot should have used the password-reset skill",
        "dc_node_prompt": "You are a support bot for Acme.\nAnswer account questions politely.\n",
        "skills": [{"name": "Skill - Password Reset", "description": "Walks the user through resetting a password"}],
        "skillExecuted": False,
        "modelConfig": {"max_tokens": 100000},
    }


@pytest.fixture
def make_orchestrator(library, encoding):
    def build(service, **kwargs):
        gateway = LlmGateway("gpt-4o", service=service)
        return PipelineOrchestrator(gateway, library=library, encoding=encoding, **kwargs)
    return build
