import pytest

from prompt_debugger.errors import EncodingError
from prompt_debugger.token_budget import TokenBudgetManager


class ExplodingEncoding:
    def encode_ordinary(self, text):
        raise ValueError("unsupported special token")

    def decode(self, tokens):
        return ""


class MultiCharEncoding:
    """Two characters per token."""

    def encode_ordinary(self, text):
        return [text[i:i + 2] for i in range(0, len(text), 2)]

    def decode(self, tokens):
        return "".join(tokens)


def test_budget_defaults_to_4000_with_fifteen_percent_margin(encoding) -> None:
    assert TokenBudgetManager(encoding=encoding).budget() == 3400
    assert TokenBudgetManager({"max_tokens": 1000}, encoding=encoding).budget() == 850


def test_budget_ignores_invalid_max_tokens(encoding) -> None:
    assert TokenBudgetManager({"max_tokens": "lots"}, encoding=encoding).budget() == 3400


def test_truncate_returns_text_unchanged_when_it_fits(encoding) -> None:
    manager = TokenBudgetManager({"max_tokens": 100}, encoding=encoding)

    assert manager.truncate_to_fit("short text", reserved=10) == "short text"


def test_truncate_never_exceeds_budget_minus_reserved(encoding) -> None:
    manager = TokenBudgetManager({"max_tokens": 100}, encoding=encoding)
    texts = ["", "a" * 84, "b" * 85, "c" * 86, "line\n" * 300, "ünïcødé " * 40]

    for text in texts:
        for reserved in (0, 1, 5, 40, 84, 85):
            out = manager.truncate_to_fit(text, reserved)
            assert manager.count_tokens(out) <= manager.budget() - reserved
            assert text.startswith(out)


def test_truncate_keeps_the_longest_fitting_prefix(encoding) -> None:
    manager = TokenBudgetManager({"max_tokens": 100}, encoding=encoding)

    assert manager.truncate_to_fit("x" * 200, reserved=5) == "x" * 80


def test_truncate_with_multi_char_tokens() -> None:
    manager = TokenBudgetManager({"max_tokens": 20}, encoding=MultiCharEncoding())

    out = manager.truncate_to_fit("abcdefghijklmnopqrstuvwxyz" * 2, reserved=7)

    assert manager.count_tokens(out) <= 10
    assert out == "abcdefghijklmnopqrst"


def test_non_text_input_raises_encoding_error(encoding) -> None:
    manager = TokenBudgetManager(encoding=encoding)

    with pytest.raises(EncodingError):
        manager.truncate_to_fit({"not": "text"})


def test_encoder_failures_become_encoding_error() -> None:
    manager = TokenBudgetManager(encoding=ExplodingEncoding())

    with pytest.raises(EncodingError):
        manager.count_tokens("<|endoftext|>")


@pytest.mark.parametrize("model_config, expected", [
    ({"model": "gpt-4o-mini"}, "o200k_base"),
    ({"model_name": "gpt-4-turbo"}, "cl100k_base"),
    ({"model": "gemini-1.5-pro"}, "cl100k_base"),
    (None, "cl100k_base"),
])
def test_encoding_follows_the_analysed_model(model_config, expected) -> None:
    manager = TokenBudgetManager(model_config, encoding=object())

    assert manager._encoding_name == expected
