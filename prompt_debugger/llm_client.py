# prompt_debugger/llm_client.py

import threading
import time
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Optional, Tuple, Union

from openai import OpenAI

from prompt_debugger.base_utils import BaseUtils, logger
from prompt_debugger.errors import PipelineTimeoutError, ServiceError
from prompt_debugger.model_props import is_openai_model, parse_model_name


@dataclass
class LlmCompletion:
    text: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


# Sampling parameters per pipeline step. Read-only; shared by every request.
STEP_CONFIGS = MappingProxyType({
    "diagnosis": MappingProxyType({"temperature": 0.2, "max_output_tokens": 2500}),
    "problem_analysis": MappingProxyType({"temperature": 0.2, "max_output_tokens": 1500}),
    "root_cause_analysis": MappingProxyType({"temperature": 0.1, "max_output_tokens": 2000}),
    "solution_generation": MappingProxyType({"temperature": 0.7, "max_output_tokens": 2500}),
    "validation": MappingProxyType({"temperature": 0.3, "max_output_tokens": 800}),
    "solution_refinement": MappingProxyType({"temperature": 0.3, "max_output_tokens": 2000}),
    "final_response": MappingProxyType({"temperature": 0.4, "max_output_tokens": 2500}),
    "default": MappingProxyType({"temperature": 0.5, "max_output_tokens": 2000}),
})


def get_step_config(step_name: str, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Sampling parameters for `step_name`; unknown steps get the "default" entry.
    `overrides` (from the config file) are layered on top, key by key.
    """
    base = STEP_CONFIGS.get(step_name, STEP_CONFIGS["default"])
    params = dict(base)
    if overrides:
        params.update(overrides.get(step_name) or {})
    return params


ServiceCallable = Callable[..., Union[str, LlmCompletion]]


# -----------------------
# Providers
# -----------------------

class OpenAIService:
    """OpenAI Responses API, single call, no SDK retries."""

    def __init__(self, model_name: str, *, timeout: float | None = None):
        self.model_name, self._openai_params = parse_model_name(model_name)
        client_kwargs: Dict[str, Any] = {"max_retries": 0}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = OpenAI(**client_kwargs)

    def __call__(self, prompt: str, *, model: str, temperature: float, max_output_tokens: int) -> LlmCompletion:
        params = dict(self._openai_params)
        # reasoning models reject sampling temperature
        if "reasoning" not in params:
            params["temperature"] = temperature
        resp = self._client.responses.create(
            model=self.model_name,
            input=prompt,
            max_output_tokens=max_output_tokens,
            **params,
        )
        usage = getattr(resp, "usage", None)
        text = getattr(resp, "output_text", "") or ""
        return LlmCompletion(
            text=text.strip(),
            prompt_tokens=getattr(usage, "input_tokens", None) if usage is not None else None,
            completion_tokens=getattr(usage, "output_tokens", None) if usage is not None else None,
        )


class VertexService:
    """Vertex completion models through langchain, one client per sampling setup."""

    def __init__(self, model_name: str, *, project: str | None, region: str | None, timeout: float | None = None):
        self.model_name = model_name
        self._project = project
        self._region = region
        self._timeout = timeout
        self._clients: Dict[Tuple[float, int], Any] = {}
        self._lock = threading.Lock()

    def _client_for(self, temperature: float, max_output_tokens: int):
        from langchain_google_vertexai import VertexAI

        key = (temperature, max_output_tokens)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = VertexAI(
                    project=self._project,
                    location=self._region,
                    model_name=self.model_name,
                    temperature=temperature,
                    max_output_tokens=max_output_tokens,
                    timeout=self._timeout,
                )
                self._clients[key] = client
            return client

    def __call__(self, prompt: str, *, model: str, temperature: float, max_output_tokens: int) -> LlmCompletion:
        resp = self._client_for(temperature, max_output_tokens).invoke(prompt)
        usage_md = getattr(resp, "usage_metadata", None)
        text = resp if isinstance(resp, str) else getattr(resp, "content", str(resp))
        if isinstance(usage_md, dict):
            return LlmCompletion(
                text=text,
                prompt_tokens=usage_md.get("prompt_token_count"),
                completion_tokens=usage_md.get("candidates_token_count"),
            )
        return LlmCompletion(text=text)


# -----------------------
# Gateway
# -----------------------

class LlmGateway(BaseUtils):
    """
    Single choke point for LLM calls:

        text = gateway.invoke(prompt, "diagnosis")

    Exactly one service call per invoke; retry policy belongs to the caller.
    Any failure surfaces as ServiceError (PipelineTimeoutError on timeout).
    """

    def __init__(
        self,
        model_name: str = "gpt-4o",
        *,
        service: Optional[ServiceCallable] = None,
        timeout: float | None = None,
        vertex_project: str | None = None,
        vertex_region: str | None = None,
        step_overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.model_name = model_name
        self.provider = "custom" if service is not None else ("openai" if is_openai_model(model_name) else "vertex")
        self._service = service
        self._timeout = timeout
        self._vertex_project = vertex_project
        self._vertex_region = vertex_region
        self._step_overrides = step_overrides or {}
        self._lock = threading.Lock()
        self.last_usage: Optional[Dict[str, int]] = None
        self.call_count = 0
        self._scopes = threading.local()

    def _get_service(self) -> ServiceCallable:
        with self._lock:
            if self._service is None:
                if self.provider == "openai":
                    self._service = OpenAIService(self.model_name, timeout=self._timeout)
                else:
                    self._service = VertexService(
                        self.model_name,
                        project=self._vertex_project,
                        region=self._vertex_region,
                        timeout=self._timeout,
                    )
            return self._service

    @staticmethod
    def _approx_tokens(text: str) -> int:
        if not text:
            return 0
        return max(1, len(text) // 4)

    def _merge_usage(self, prompt: str, completion: LlmCompletion) -> Dict[str, int]:
        inc = {
            "prompt_token_count": int(completion.prompt_tokens if completion.prompt_tokens is not None else self._approx_tokens(prompt)),
            "candidates_token_count": int(completion.completion_tokens if completion.completion_tokens is not None else self._approx_tokens(completion.text)),
        }
        inc["total_token_count"] = inc["prompt_token_count"] + inc["candidates_token_count"]
        with self._lock:
            if self.last_usage is None:
                self.last_usage = dict(inc)
            else:
                for k, v in inc.items():
                    self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + v
        scope = getattr(self._scopes, "usage", None)
        if scope is not None:
            scope["calls"] += 1
            for k, v in inc.items():
                scope[k] += v
        return inc

    @contextmanager
    def usage_scope(self):
        """
        Collects the usage of calls made by the current thread inside the block,
        so concurrent requests sharing one gateway keep separate tallies.
        """
        previous = getattr(self._scopes, "usage", None)
        usage = {"calls": 0, "prompt_token_count": 0, "candidates_token_count": 0, "total_token_count": 0}
        self._scopes.usage = usage
        try:
            yield usage
        finally:
            self._scopes.usage = previous

    def total_tokens(self) -> int:
        with self._lock:
            return int((self.last_usage or {}).get("total_token_count", 0))

    def _call_with_timeout(self, fn: Callable[[], Any], timeout: float | None, step_name: str):
        if timeout is None:
            return fn()
        if timeout <= 0:
            raise PipelineTimeoutError(f"No time left for step '{step_name}'", step=step_name)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-call")
        future = executor.submit(fn)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as e:
            # the worker keeps running; its result is discarded
            future.cancel()
            raise PipelineTimeoutError(
                f"LLM call for step '{step_name}' exceeded {timeout:.1f}s", step=step_name
            ) from e
        finally:
            executor.shutdown(wait=False)

    def invoke(self, prompt: str, step_name: str, *, timeout: float | None = None) -> str:
        params = get_step_config(step_name, self._step_overrides)
        limits = [t for t in (timeout, self._timeout) if t is not None]
        effective_timeout = min(limits) if limits else None
        with self._lock:
            self.call_count += 1
        logger.info(
            f"LLM call step={step_name} model={self.model_name} "
            f"temperature={params['temperature']} max_output_tokens={params['max_output_tokens']}"
        )
        start = time.monotonic()
        try:
            service = self._get_service()
            result = self._call_with_timeout(
                lambda: service(
                    prompt,
                    model=self.model_name,
                    temperature=params["temperature"],
                    max_output_tokens=params["max_output_tokens"],
                ),
                effective_timeout,
                step_name,
            )
        except ServiceError:
            raise
        except Exception as e:
            raise ServiceError(f"LLM call for step '{step_name}' failed: {e}", step=step_name) from e

        if isinstance(result, str):
            completion = LlmCompletion(text=result)
        elif isinstance(result, LlmCompletion):
            completion = result
        else:
            raise ServiceError(
                f"LLM service returned {type(result).__name__} instead of text", step=step_name
            )

        usage = self._merge_usage(prompt, completion)
        logger.debug(
            f"LLM step={step_name} done in {time.monotonic() - start:.2f}s "
            f"tokens={usage['total_token_count']} raw={self.preview(completion.text)!r}"
        )
        return completion.text
