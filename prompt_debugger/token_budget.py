# prompt_debugger/token_budget.py

import math
import threading
from typing import Any, Dict, Optional

import tiktoken

from prompt_debugger.errors import EncodingError
from prompt_debugger.model_props import DEFAULT_ENCODING, encoding_name_for_model, get_model_max_tokens

TOKEN_SAFETY_MARGIN = 0.15

_encodings_lock = threading.Lock()
_encodings: Dict[str, Any] = {}


def get_encoding(name: str = DEFAULT_ENCODING):
    """
    Shared, lazily loaded tiktoken encoding. Encodings are read-only once built.
    """
    with _encodings_lock:
        enc = _encodings.get(name)
        if enc is None:
            try:
                enc = tiktoken.get_encoding(name)
            except Exception as e:
                raise EncodingError(f"Could not load token encoding '{name}': {e}") from e
            _encodings[name] = enc
        return enc


class TokenBudgetManager:
    """
    Token accounting against the analysed model's context ceiling.

    `encoding` is anything exposing encode_ordinary(str) -> list[int] and
    decode(list[int]) -> str; a tiktoken Encoding by default.
    """

    def __init__(
        self,
        model_config: Optional[Dict[str, Any]] = None,
        *,
        safety_margin: float = TOKEN_SAFETY_MARGIN,
        encoding: Any = None,
        encoding_name: Optional[str] = None,
    ):
        if not 0 <= safety_margin < 1:
            raise ValueError(f"safety_margin must be in [0, 1), got {safety_margin}")
        self.max_tokens = get_model_max_tokens(model_config)
        self.safety_margin = safety_margin
        self._encoding = encoding
        if encoding_name is None:
            cfg = model_config if isinstance(model_config, dict) else {}
            encoding_name = encoding_name_for_model(cfg.get("model") or cfg.get("model_name"))
        self._encoding_name = encoding_name

    @property
    def encoding(self):
        if self._encoding is None:
            self._encoding = get_encoding(self._encoding_name)
        return self._encoding

    def budget(self) -> int:
        return math.floor(self.max_tokens * (1 - self.safety_margin))

    def _encode(self, text):
        if not isinstance(text, str):
            raise EncodingError(f"Cannot encode value of type {type(text).__name__}")
        try:
            return self.encoding.encode_ordinary(text)
        except EncodingError:
            raise
        except Exception as e:
            raise EncodingError(f"Token encoding failed: {e}") from e

    def _decode(self, tokens) -> str:
        try:
            return self.encoding.decode(tokens)
        except Exception as e:
            raise EncodingError(f"Token decoding failed: {e}") from e

    def count_tokens(self, text: str) -> int:
        return len(self._encode(text))

    def fits(self, text: str, reserved: int = 0) -> bool:
        return self.count_tokens(text) <= self.budget() - reserved

    def truncate_to_fit(self, text: str, reserved: int = 0) -> str:
        """
        Returns `text` unchanged when it fits in budget() - reserved tokens,
        otherwise the longest token prefix that still fits once re-encoded.
        """
        if reserved < 0:
            raise ValueError("reserved must be non-negative")
        tokens = self._encode(text)
        limit = self.budget() - reserved
        if len(tokens) <= limit:
            return text
        if limit <= 0:
            return ""

        # A cut inside a multi-byte sequence can decode to text that re-encodes longer.
        n = limit
        while n > 0:
            candidate = self._decode(tokens[:n])
            if len(self._encode(candidate)) <= limit:
                return candidate
            n -= 1
        return ""
