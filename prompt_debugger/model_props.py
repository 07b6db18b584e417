# prompt_debugger/model_props.py

from typing import Any, Dict, Optional, Tuple

DEFAULT_MAX_TOKENS = 4000
DEFAULT_ENCODING = "cl100k_base"

# Encodings by model-name prefix, longest prefix first.
_ENCODING_BY_PREFIX = (
    ("gpt-4o", "o200k_base"),
    ("gpt-4.1", "o200k_base"),
    ("gpt-5", "o200k_base"),
    ("gpt-4", "cl100k_base"),
    ("gpt-3.5", "cl100k_base"),
)


#! MODEL BOUNDARIES

def get_model_max_tokens(model_config: Optional[Dict[str, Any]]) -> int:
    """
    Token ceiling of the analysed bot's model, read from the request's model
    configuration. Falls back to DEFAULT_MAX_TOKENS when absent or invalid.
    """
    if not model_config:
        return DEFAULT_MAX_TOKENS
    for key in ("max_tokens", "maxTokens", "max_output_tokens"):
        value = model_config.get(key)
        if value is None:
            continue
        try:
            value = int(value)
        except (TypeError, ValueError):
            continue
        if value > 0:
            return value
    return DEFAULT_MAX_TOKENS


def encoding_name_for_model(model_name: Optional[str]) -> str:
    base = str(model_name or "").strip().lower()
    if "_" in base:
        base = base.split("_")[0]
    for prefix, encoding in _ENCODING_BY_PREFIX:
        if base.startswith(prefix):
            return encoding
    return DEFAULT_ENCODING


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "o1", "o3", "o4")
    return any((model_name or "").startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-4o'
        - 'gpt-5.1_low_low'
        - 'gpt-5.1_fast'
        - 'gpt-5.1_deep_flex'
    into (base_model, openai_params).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed.")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high", "xhigh"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    # verbosity, reasoning effort, service tier
    presets: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "standard": ("low", "low", None),
        "fast": ("low", "none", None),
        "deep": ("medium", "high", None),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue
        if t in presets:
            p_verb, p_reason, p_tier = presets[t]
            verbosity = verbosity or p_verb
            reasoning_effort = reasoning_effort or p_reason
            service_tier = service_tier or p_tier
        elif verbosity is None and t in verbosity_tokens:
            verbosity = t
        elif reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
        elif service_tier is None and t in service_tier_tokens:
            service_tier = t
        else:
            unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'.")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"
    return base, params
