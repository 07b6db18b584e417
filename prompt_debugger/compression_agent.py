# prompt_debugger/compression_agent.py

import re
from typing import Callable, List, Tuple

from prompt_debugger.base_utils import logger

MAX_LIST_RUN = 3
LIST_ELISION_MARKER = "(...truncated similar items)"
EXAMPLE_CHAR_CAP = 200
ELLIPSIS = "..."

_LIST_LINE_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")
_EXAMPLE_RE = re.compile(r"(Example:[ \t]*)(.*?)(?=\n\S|\Z)", re.DOTALL)
_WS_ONLY_LINE_RE = re.compile(r"^[ \t\f\v]+$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def collapse_list_runs(text: str) -> str:
    """Keeps the first MAX_LIST_RUN items of longer runs of list-like lines."""
    lines = text.split("\n")
    out: List[str] = []
    i = 0
    while i < len(lines):
        if not _LIST_LINE_RE.match(lines[i]):
            out.append(lines[i])
            i += 1
            continue
        j = i
        while j < len(lines) and _LIST_LINE_RE.match(lines[j]):
            j += 1
        run = lines[i:j]
        if len(run) > MAX_LIST_RUN:
            out.extend(run[:MAX_LIST_RUN])
            out.append(LIST_ELISION_MARKER)
        else:
            out.extend(run)
        i = j
    return "\n".join(out)


def truncate_examples(text: str) -> str:
    def shorten(match):
        head, body = match.group(1), match.group(2)
        if len(body) <= EXAMPLE_CHAR_CAP:
            return match.group(0)
        # already shortened on an earlier pass
        if body.endswith(ELLIPSIS) and len(body) <= EXAMPLE_CHAR_CAP + len(ELLIPSIS):
            return match.group(0)
        return head + body[:EXAMPLE_CHAR_CAP] + ELLIPSIS

    return _EXAMPLE_RE.sub(shorten, text)


def collapse_blank_lines(text: str) -> str:
    text = _WS_ONLY_LINE_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", text)


class CompressionAgent:
    """
    Deterministic, local shrinking of a prompt that outgrew its token budget.
    Each heuristic that fails is logged and skipped; compress is idempotent.
    """

    def __init__(self):
        self.heuristics: Tuple[Tuple[str, Callable[[str], str]], ...] = (
            ("collapse_list_runs", collapse_list_runs),
            ("truncate_examples", truncate_examples),
            ("collapse_blank_lines", collapse_blank_lines),
        )

    def compress(self, text: str) -> str:
        current = text
        for name, heuristic in self.heuristics:
            try:
                current = heuristic(current)
            except Exception as e:
                logger.warning(f"Compression heuristic '{name}' failed, input passed through: {e}")
        return current
