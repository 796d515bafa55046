import json
from typing import Any, Optional


class MalformedOutput(ValueError):
    """Raised when no JSON object can be recovered from model output."""


def extract_json_block(raw: str) -> Optional[str]:
    """Return the outermost ``{...}`` span starting at the first brace.

    Braces inside string literals are not special-cased; a span is only
    returned once the depth returns to zero.
    """
    if not raw:
        return None
    start = raw.find("{")
    if start == -1:
        return None
    depth = 0
    for i in range(start, len(raw)):
        ch = raw[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return raw[start:i + 1]
    return None


def parse_model_output(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise MalformedOutput(f"model output is not text: {type(raw).__name__}")
    if not raw:
        raise MalformedOutput("empty model output")

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, RecursionError):
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    block = extract_json_block(raw)
    if block is None:
        raise MalformedOutput("no JSON object found in model output")
    try:
        parsed = json.loads(block)
    except (json.JSONDecodeError, RecursionError) as e:
        raise MalformedOutput(f"unable to parse JSON block: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedOutput("model output is not a JSON object")
    return parsed
