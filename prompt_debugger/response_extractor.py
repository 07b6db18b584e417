# prompt_debugger/response_extractor.py

import re
from typing import Any, Dict

import commentjson
import yaml
from json_repair import repair_json

from prompt_debugger.base_utils import logger
from prompt_debugger.entities import Malformed, Ok, ParsedStep
from prompt_debugger.errors import ParseError

_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


def extract_json(raw_text: str) -> str:
    """
    Isolates the JSON payload of an LLM completion.

    A fenced block wins; otherwise the span from the first '{' to the last '}'.
    Text without braces comes back unchanged so the parser reports the failure.
    """
    if not isinstance(raw_text, str):
        return raw_text

    m = _FENCE_RE.search(raw_text)
    if m:
        return m.group(1).strip().strip("`").strip()

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return raw_text
    return raw_text[start:end + 1].strip("`")


def _load(text: str) -> Any:
    errors = []
    try:
        return commentjson.loads(text)
    except Exception as e:
        errors.append(f"json: {e}")
    try:
        data = yaml.safe_load(text)
        if isinstance(data, dict):
            return data
        errors.append(f"yaml: parsed as {type(data).__name__}")
    except Exception as e:
        errors.append(f"yaml: {e}")
    raise ParseError("; ".join(errors))


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Fault-tolerant load of a JSON object: strict-ish JSON (comments allowed),
    then YAML, then json_repair. Anything that is not an object is a ParseError.
    """
    if not isinstance(text, str) or not text.strip():
        raise ParseError("Empty LLM output")
    try:
        data = _load(text)
    except ParseError as first:
        repaired = repair_json(text)
        if not isinstance(repaired, str) or not repaired.strip():
            raise ParseError(f"Unparseable JSON ({first.message})") from first
        try:
            data = _load(repaired)
        except ParseError as second:
            raise ParseError(f"Unparseable JSON after repair ({second.message})") from second
        logger.debug("LLM output needed json_repair to parse")
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return dict(data)


def parse_step_output(raw_text: str) -> ParsedStep:
    try:
        return Ok(parse_json_object(extract_json(raw_text)))
    except ParseError as e:
        return Malformed(raw_text=raw_text if isinstance(raw_text, str) else repr(raw_text), reason=e.message)
