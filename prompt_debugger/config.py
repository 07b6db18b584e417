# prompt_debugger/config.py

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import commentjson

from prompt_debugger.base_utils import logger
from prompt_debugger.errors import ConfigurationError

CONFIG_PATH_ENV = "PROMPT_DEBUGGER_CONFIG_PATH"

PATCH_POLICIES = ("abort", "skip")


def _load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """
    Load optional overrides from a JSON-with-comments file.
    Fails fast if the path is set but the file is missing or malformed.
    """
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ConfigurationError(f"Config file not found at '{cfg_path}'")
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = commentjson.load(f)
    except Exception as e:
        raise ConfigurationError(f"Config file '{cfg_path}' could not be parsed: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file '{cfg_path}' must contain a JSON object")
    return data


def _pick(env: Dict[str, str], file_cfg: Dict[str, Any], env_key: str, file_key: str, default: Any) -> Any:
    if env.get(env_key) not in (None, ""):
        return env[env_key]
    if file_key in file_cfg:
        return file_cfg[file_key]
    return default


def _as_float(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid numeric config value {value!r}, using {default}")
        return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer config value {value!r}, using {default}")
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    model_name: str = "gpt-4o"
    llm_timeout: Optional[float] = 120.0
    request_timeout: Optional[float] = None
    max_iterations: int = 3
    confidence_threshold: float = 0.85
    token_safety_margin: float = 0.15
    patch_failure_policy: str = "abort"
    use_cache: bool = False
    cache_dir: str = "analysis_cache"
    prompt_preview_chars: int = 4000
    vertex_project: Optional[str] = None
    vertex_region: Optional[str] = None
    prompt_library_path: Optional[str] = None
    step_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> "AppConfig":
        env = dict(os.environ if env is None else env)
        file_cfg = _load_config_file(env.get(CONFIG_PATH_ENV))
        d = cls()

        policy = str(_pick(env, file_cfg, "PROMPT_DEBUGGER_PATCH_POLICY", "patch_failure_policy", d.patch_failure_policy)).lower()
        if policy not in PATCH_POLICIES:
            raise ConfigurationError(f"patch_failure_policy must be one of {PATCH_POLICIES}, got '{policy}'")

        step_overrides = file_cfg.get("step_overrides", {}) or {}
        if not isinstance(step_overrides, dict):
            raise ConfigurationError("step_overrides must be an object keyed by step name")

        return cls(
            model_name=str(_pick(env, file_cfg, "PROMPT_DEBUGGER_MODEL", "model_name", d.model_name)),
            llm_timeout=_as_float(_pick(env, file_cfg, "PROMPT_DEBUGGER_LLM_TIMEOUT", "llm_timeout", d.llm_timeout), d.llm_timeout),
            request_timeout=_as_float(_pick(env, file_cfg, "PROMPT_DEBUGGER_REQUEST_TIMEOUT", "request_timeout", None), None),
            max_iterations=_as_int(_pick(env, file_cfg, "PROMPT_DEBUGGER_MAX_ITERATIONS", "max_iterations", d.max_iterations), d.max_iterations),
            confidence_threshold=_as_float(_pick(env, file_cfg, "PROMPT_DEBUGGER_CONFIDENCE_THRESHOLD", "confidence_threshold", d.confidence_threshold), d.confidence_threshold),
            token_safety_margin=_as_float(_pick(env, file_cfg, "PROMPT_DEBUGGER_TOKEN_SAFETY_MARGIN", "token_safety_margin", d.token_safety_margin), d.token_safety_margin),
            patch_failure_policy=policy,
            use_cache=_as_bool(_pick(env, file_cfg, "USE_CACHE", "use_cache", d.use_cache)),
            cache_dir=str(_pick(env, file_cfg, "PROMPT_DEBUGGER_CACHE_DIR", "cache_dir", d.cache_dir)),
            prompt_preview_chars=_as_int(_pick(env, file_cfg, "PROMPT_DEBUGGER_PREVIEW_CHARS", "prompt_preview_chars", d.prompt_preview_chars), d.prompt_preview_chars),
            vertex_project=_pick(env, file_cfg, "GOOGLE_CLOUD_PROJECT", "vertex_project", None),
            vertex_region=_pick(env, file_cfg, "GOOGLE_CLOUD_REGION", "vertex_region", None),
            prompt_library_path=_pick(env, file_cfg, "PROMPT_DEBUGGER_PROMPT_LIBRARY", "prompt_library_path", None),
            step_overrides=step_overrides,
        )
