# prompt_debugger/pipeline.py

import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union

from prompt_debugger.base_utils import BaseUtils, logger
from prompt_debugger.compression_agent import CompressionAgent
from prompt_debugger.config import PATCH_POLICIES, AppConfig
from prompt_debugger.diagnostic_agent import DiagnosticAgent
from prompt_debugger.entities import (
    AnalysisRequest,
    AnalysisResult,
    DiagnosisResult,
    Malformed,
    Modification,
    PipelineStage,
    PipelineState,
    ValidationVerdict,
)
from prompt_debugger.errors import (
    EncodingError,
    ParseError,
    PatchApplicationError,
    PipelineTimeoutError,
    PromptDebuggerError,
    RequestError,
)
from prompt_debugger.llm_client import LlmGateway
from prompt_debugger.prompt_library import PromptLibrary, default_prompt_library
from prompt_debugger.prompt_surgeon import PromptSurgeon
from prompt_debugger.result_cache import ResultCache, fingerprint_request
from prompt_debugger.token_budget import TOKEN_SAFETY_MARGIN, TokenBudgetManager
from prompt_debugger.validation_agent import ValidationAgent, detect_prompt_conflicts

MAX_ITERATIONS = 3
CONFIDENCE_THRESHOLD = 0.85


class PipelineOrchestrator(BaseUtils):
    """
    Drives the bounded repair loop for one request at a time:

        diagnose -> patch -> compress (only when over budget) -> validate

    A verdict with confidence >= confidence_threshold ends the loop as
    success. Any step error fails the iteration, is kept as last_error and
    still counts toward max_iterations. EncodingError is fatal.

    The orchestrator holds no per-request state; it is safe to share across
    threads as long as the gateway's service is.
    """

    def __init__(
        self,
        gateway: LlmGateway,
        *,
        library: Optional[PromptLibrary] = None,
        cache: Optional[ResultCache] = None,
        encoding: Any = None,
        max_iterations: int = MAX_ITERATIONS,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        token_safety_margin: float = TOKEN_SAFETY_MARGIN,
        patch_failure_policy: str = "abort",
        request_timeout: float | None = None,
        preview_chars: Optional[int] = None,
        diagnostic_agent: Optional[DiagnosticAgent] = None,
        surgeon: Optional[PromptSurgeon] = None,
        compressor: Optional[CompressionAgent] = None,
        validation_agent: Optional[ValidationAgent] = None,
    ):
        if patch_failure_policy not in PATCH_POLICIES:
            raise ValueError(f"patch_failure_policy must be one of {PATCH_POLICIES}")
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.gateway = gateway
        self.library = library or default_prompt_library()
        self.cache = cache
        self.encoding = encoding
        self.max_iterations = max_iterations
        self.confidence_threshold = confidence_threshold
        self.token_safety_margin = token_safety_margin
        self.patch_failure_policy = patch_failure_policy
        self.request_timeout = request_timeout

        agent_kwargs = {"encoding": encoding, "safety_margin": token_safety_margin}
        if preview_chars is not None:
            agent_kwargs["preview_chars"] = preview_chars
        self.diagnostic_agent = diagnostic_agent or DiagnosticAgent(gateway, self.library, **agent_kwargs)
        self.surgeon = surgeon or PromptSurgeon()
        self.compressor = compressor or CompressionAgent()
        self.validation_agent = validation_agent or ValidationAgent(gateway, self.library)

    @classmethod
    def from_config(cls, config: AppConfig, *, service=None, encoding: Any = None) -> "PipelineOrchestrator":
        gateway = LlmGateway(
            config.model_name,
            service=service,
            timeout=config.llm_timeout,
            vertex_project=config.vertex_project,
            vertex_region=config.vertex_region,
            step_overrides=config.step_overrides,
        )
        library = PromptLibrary.load_dir(config.prompt_library_path) if config.prompt_library_path else default_prompt_library()
        cache = ResultCache(config.cache_dir) if config.use_cache else None
        return cls(
            gateway,
            library=library,
            cache=cache,
            encoding=encoding,
            max_iterations=config.max_iterations,
            confidence_threshold=config.confidence_threshold,
            token_safety_margin=config.token_safety_margin,
            patch_failure_policy=config.patch_failure_policy,
            request_timeout=config.request_timeout,
            preview_chars=config.prompt_preview_chars,
        )

    # -----------------------
    # Deadline helpers
    # -----------------------

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - time.monotonic()

    def _check_deadline(self, deadline: Optional[float], stage: str) -> Optional[float]:
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            raise PipelineTimeoutError(f"Request timed out before {stage}", stage=stage)
        return remaining

    # -----------------------
    # Patching
    # -----------------------

    def _collect_configuration_changes(self, diagnosis: DiagnosisResult, mods: List[Modification]) -> List[Dict[str, Any]]:
        changes = [
            {
                "parameter": m.locator,
                "current_value": m.original_text,
                "recommended_value": m.replacement_text,
                "rationale": m.rationale,
            }
            for m in mods if m.target == "model_configuration"
        ]
        analysis = diagnosis.data.get("model_configuration_analysis")
        if isinstance(analysis, dict):
            for c in analysis.get("recommended_configuration_changes") or []:
                if isinstance(c, dict) and c.get("parameter"):
                    changes.append(dict(c))
        return changes

    def _patch_text(
        self,
        text: str,
        indexed_mods: List[Tuple[int, Modification]],
        skipped: List[Dict[str, Any]],
        label: str,
    ) -> str:
        """
        Applies `indexed_mods` (position in the diagnosis, modification) to `text`
        under the configured failure policy.
        """
        if not indexed_mods:
            return text
        mods = [m for _, m in indexed_mods]
        if self.patch_failure_policy == "abort":
            outcome = self.surgeon.apply_all(text, mods)
            if not outcome.ok:
                raise PatchApplicationError(indexed_mods[outcome.failed_index][0], f"{label}: {outcome.reason}")
            return outcome.text

        new_text, failures = self.surgeon.apply_skipping(text, mods)
        for err in failures:
            skipped.append({"index": indexed_mods[err.index][0], "target": label, "reason": err.reason})
        return new_text

    def _apply_modifications(
        self,
        state: PipelineState,
        mods: List[Modification],
    ) -> Tuple[str, Dict[str, str], List[Dict[str, Any]]]:
        skipped: List[Dict[str, Any]] = []

        prompt_mods = [(i, m) for i, m in enumerate(mods) if m.target == "governing_prompt"]
        new_prompt = self._patch_text(state.current_prompt, prompt_mods, skipped, "governing_prompt")

        new_variables = dict(state.variables)
        by_variable: Dict[str, List[Tuple[int, Modification]]] = {}
        for i, m in enumerate(mods):
            if m.target != "variable_prompt":
                continue
            if m.locator not in new_variables:
                reason = f"unknown variable '{m.locator}'"
                if self.patch_failure_policy == "abort":
                    raise PatchApplicationError(i, reason)
                logger.warning(f"Skipping patch #{i}: {reason}")
                skipped.append({"index": i, "target": "variable_prompt", "reason": reason})
                continue
            by_variable.setdefault(m.locator, []).append((i, m))
        for name, indexed in by_variable.items():
            new_variables[name] = self._patch_text(new_variables[name], indexed, skipped, f"variable '{name}'")

        return new_prompt, new_variables, skipped

    # -----------------------
    # Iteration
    # -----------------------

    def _run_iteration(
        self,
        state: PipelineState,
        request: AnalysisRequest,
        budget: TokenBudgetManager,
        deadline: Optional[float],
    ) -> Optional[ValidationVerdict]:
        state.stage = PipelineStage.DIAGNOSING
        state.pending_diagnosis = None
        remaining = self._check_deadline(deadline, state.stage)
        parsed = self.diagnostic_agent.diagnose(state, request, timeout=remaining)
        if isinstance(parsed, Malformed):
            # placeholder keeps the raw output visible; patch/validate have nothing to act on
            state.pending_diagnosis = parsed.to_dict()
            raise ParseError(f"Diagnosis could not be parsed: {parsed.reason}")

        diagnosis: DiagnosisResult = parsed.value
        state.pending_diagnosis = diagnosis.data
        mods = diagnosis.modifications
        configuration_changes = self._collect_configuration_changes(diagnosis, mods)
        logger.info(
            f"Diagnosis problem_type={diagnosis.problem_type} modifications={len(mods)} "
            f"schema_warnings={len(parsed.warnings)}"
        )

        state.stage = PipelineStage.PATCHING
        candidate, variables, skipped = self._apply_modifications(state, mods)

        state.stage = PipelineStage.COMPRESSING
        if not budget.fits(candidate):
            before = budget.count_tokens(candidate)
            candidate = self.compressor.compress(candidate)
            logger.info(f"Compressed prompt from {before} to {budget.count_tokens(candidate)} tokens (budget {budget.budget()})")

        state.stage = PipelineStage.VALIDATING
        remaining = self._check_deadline(deadline, state.stage)
        verdict = self.validation_agent.validate_solution(
            state.current_prompt, candidate, diagnosis.data, timeout=remaining
        )

        # everything reported on the result comes from the same iteration
        state.current_prompt = candidate
        state.variables = variables
        state.verdict = verdict
        state.diagnosis = diagnosis.data
        state.schema_warnings = list(parsed.warnings)
        state.configuration_changes = configuration_changes
        state.skipped_patches = skipped
        state.pending_diagnosis = None
        return verdict

    def _error_record(
        self,
        e: BaseException,
        iteration: int,
        stage: str,
        diagnosis: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if isinstance(e, PromptDebuggerError):
            record = e.to_dict()
        else:
            record = {"kind": "internal_error", "message": f"{type(e).__name__}: {e}"}
        record["iteration"] = iteration
        record["stage"] = stage
        if diagnosis is not None:
            record["diagnosis"] = diagnosis
        return record

    def run_analysis(self, request: Union[AnalysisRequest, Dict[str, Any]], *, timeout: float | None = None) -> AnalysisResult:
        if not isinstance(request, AnalysisRequest):
            request = AnalysisRequest.from_dict(request)
        missing = request.missing_fields()
        if missing:
            raise RequestError(missing)

        fingerprint = fingerprint_request(request.conversation_history, request.target_response, request.feedback)
        if self.cache is not None:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                logger.info(f"Cache hit {fingerprint}")
                cached.cached = True
                return cached

        timeout = timeout if timeout is not None else self.request_timeout
        deadline = time.monotonic() + timeout if timeout else None
        budget = TokenBudgetManager(request.model_config, safety_margin=self.token_safety_margin, encoding=self.encoding)
        state = PipelineState(
            current_prompt=request.governing_prompt,
            variables={
                str(v.get("name")): self._coerce_field_to_str(v.get("content"))
                for v in request.variables if isinstance(v, dict) and v.get("name")
            },
        )
        logger.info(f"Analysis {fingerprint} started (max_iterations={self.max_iterations})")

        succeeded = False
        while state.iteration < self.max_iterations:
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                if not state.last_error or state.last_error.get("kind") != PipelineTimeoutError.kind:
                    state.last_error = self._error_record(
                        PipelineTimeoutError(f"Request exceeded {timeout:.1f}s"), state.iteration, state.stage
                    )
                break

            iteration = state.iteration + 1
            logger.info(f"Iteration {iteration}/{self.max_iterations}")
            verdict = None
            with self.gateway.usage_scope() as usage:
                try:
                    verdict = self._run_iteration(state, request, budget, deadline)
                except EncodingError:
                    logger.exception(f"Token accounting failed in iteration {iteration}")
                    raise
                except Exception as e:
                    logger.error(f"Iteration {iteration} failed at {state.stage}: {e}", exc_info=True)
                    state.last_error = self._error_record(e, iteration, state.stage, diagnosis=state.pending_diagnosis)
            state.token_trail.append({
                "iteration": iteration,
                "llm_calls": usage["calls"],
                "prompt_tokens": usage["prompt_token_count"],
                "completion_tokens": usage["candidates_token_count"],
                "total_tokens": usage["total_token_count"],
            })
            state.iteration = iteration

            if verdict is not None:
                logger.info(f"Iteration {iteration} verdict valid={verdict.valid} confidence={verdict.confidence:.2f}")
                if verdict.confidence >= self.confidence_threshold:
                    succeeded = True
                    break
            if state.iteration < self.max_iterations:
                state.stage = PipelineStage.RETRYING

        if succeeded:
            state.stage = PipelineStage.SUCCEEDED
            state.last_error = None
            self.color_print(f"Analysis {fingerprint} converged in iteration {state.iteration}", color="green")
        else:
            state.stage = PipelineStage.EXHAUSTED
            self.color_print(
                f"Analysis {fingerprint} exhausted {state.iteration} iteration(s) without a confident fix",
                color="yellow",
                level=logging.WARNING,
            )

        result = AnalysisResult(
            status=AnalysisResult.SUCCESS if succeeded else AnalysisResult.EXHAUSTED,
            final_prompt=state.current_prompt,
            diagnosis=state.diagnosis,
            verdict=state.verdict,
            iterations=state.iteration,
            tokens_used=state.tokens_used,
            token_trail=list(state.token_trail),
            last_error=state.last_error,
            final_variables=[{"name": k, "content": v} for k, v in state.variables.items()],
            configuration_changes=list(state.configuration_changes),
            potential_conflicts=detect_prompt_conflicts(state.current_prompt),
            schema_warnings=list(state.schema_warnings),
            skipped_patches=list(state.skipped_patches),
            fingerprint=fingerprint,
        )
        logger.info(
            f"Analysis {fingerprint} {result.status} after {result.iterations} iteration(s), "
            f"{result.tokens_used} tokens"
        )

        if succeeded and self.cache is not None:
            self.cache.put(fingerprint, result)
        return result
