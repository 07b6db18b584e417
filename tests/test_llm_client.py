import threading

import pytest

from conftest import ScriptedService

from prompt_debugger.errors import PipelineTimeoutError, ServiceError
from prompt_debugger.llm_client import STEP_CONFIGS, LlmCompletion, LlmGateway, get_step_config
from prompt_debugger.model_props import parse_model_name


def test_step_parameters_come_from_the_table() -> None:
    service = ScriptedService("a", "b")
    gateway = LlmGateway("gpt-4o", service=service)

    gateway.invoke("p1", "diagnosis")
    gateway.invoke("p2", "solution_generation")

    assert service.calls[0]["temperature"] == 0.2
    assert service.calls[0]["max_output_tokens"] == 2500
    assert service.calls[1]["temperature"] == 0.7


def test_unknown_step_uses_default_config() -> None:
    service = ScriptedService("a")
    LlmGateway("gpt-4o", service=service).invoke("p", "no_such_step")

    assert service.calls[0]["temperature"] == STEP_CONFIGS["default"]["temperature"]
    assert service.calls[0]["max_output_tokens"] == STEP_CONFIGS["default"]["max_output_tokens"]


def test_step_overrides_layer_on_top_of_table() -> None:
    params = get_step_config("validation", {"validation": {"temperature": 0.0}})

    assert params == {"temperature": 0.0, "max_output_tokens": STEP_CONFIGS["validation"]["max_output_tokens"]}


def test_step_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        STEP_CONFIGS["diagnosis"]["temperature"] = 1.0


def test_service_failures_are_wrapped_and_not_retried() -> None:
    service = ScriptedService(ConnectionError("connection reset"), "never reached")
    gateway = LlmGateway("gpt-4o", service=service)

    with pytest.raises(ServiceError) as exc:
        gateway.invoke("p", "diagnosis")

    assert "connection reset" in str(exc.value)
    assert len(service.calls) == 1


def test_non_text_completion_is_a_service_error() -> None:
    gateway = LlmGateway("gpt-4o", service=ScriptedService({"text": "hi"}))

    with pytest.raises(ServiceError):
        gateway.invoke("p", "diagnosis")


def test_usage_from_provider_and_estimated_fallback() -> None:
    service = ScriptedService(LlmCompletion("ok", prompt_tokens=100, completion_tokens=20), "x" * 40)
    gateway = LlmGateway("gpt-4o", service=service)

    with gateway.usage_scope() as usage:
        gateway.invoke("prompt", "diagnosis")
        gateway.invoke("y" * 80, "validation")

    assert usage["calls"] == 2
    assert usage["prompt_token_count"] == 100 + 20
    assert usage["candidates_token_count"] == 20 + 10
    assert gateway.total_tokens() == 150


def test_timeout_abandons_the_call() -> None:
    release = threading.Event()

    def slow_service(prompt, **kwargs):
        release.wait(5)
        return "late"

    gateway = LlmGateway("gpt-4o", service=slow_service)
    try:
        with pytest.raises(PipelineTimeoutError):
            gateway.invoke("p", "diagnosis", timeout=0.05)
    finally:
        release.set()


def test_parse_model_name_presets() -> None:
    assert parse_model_name("gpt-4o") == ("gpt-4o", {})
    base, params = parse_model_name("gpt-5.1_fast")
    assert base == "gpt-5.1"
    assert params["reasoning"] == {"effort": "none"}
    assert params["service_tier"] == "default"

    with pytest.raises(ValueError):
        parse_model_name("gpt-5.1_turbo")
