# src/review_stream/core/json_repair.py
"""
Staged best-effort repair of JSON emitted by a streaming backend.

The analysis backend streams JSON incrementally, so fragments are routinely
truncated, and model-written JSON uses single quotes, bare keys and trailing
commas. Every stage is a pure string -> value function; a stage only runs
when the previous one raised:

    1. direct parse
    2. normalize and reparse
    3. first balanced object
    4. best of all object candidates (most top-level keys, first wins ties)
    5. give up with JSONRepairError
"""
import json
import re
import logging
from typing import Any, Dict, List, Optional

from review_stream.errors import JSONRepairError

logger = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_OPEN_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_UNQUOTED_KEY_RE = re.compile(r'([{,]\s*)([A-Za-z_$][\w$-]*)\s*:')
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_FLAT_OBJECT_RE = re.compile(r"\{[^{}]*\}")


# ============================================================================
# STAGE HELPERS
# ============================================================================

def extract_fenced_json(text: str) -> Optional[str]:
    """Return the body of the first ```json fenced block, if any."""
    match = _FENCED_RE.search(text or "")
    if match:
        return match.group(1)
    return None


def _python_literals(text: str) -> str:
    # Only touch bare words outside of strings
    def fix(segment: str) -> str:
        segment = re.sub(r"\bNone\b", "null", segment)
        segment = re.sub(r"\bTrue\b", "true", segment)
        return re.sub(r"\bFalse\b", "false", segment)
    return _map_outside_strings(text, fix)


def _map_outside_strings(text: str, fn) -> str:
    parts = []
    last = 0
    for match in _STRING_RE.finditer(text):
        parts.append(fn(text[last:match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(fn(text[last:]))
    return "".join(parts)


def _collapse_newlines_in_strings(text: str) -> str:
    out = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch in "\r\n":
                ch = " "
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def _close_open_structures(text: str) -> str:
    """Append a closing quote and the missing closing brackets, innermost first."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    if in_string:
        if escaped:
            text = text[:-1]
        text += '"'
    text = text.rstrip()
    if text.endswith(","):
        text = text[:-1]
    elif text.endswith(":"):
        text += "null"
    return text + "".join(reversed(stack))


def normalize_json_text(text: str) -> str:
    """
    Fix common LLM and truncation mistakes so json.loads can parse it.
    """
    t = (text or "").strip()

    fenced = extract_fenced_json(t)
    if fenced is not None:
        t = fenced
    else:
        # Fence still streaming in: no closing ``` yet
        t = _OPEN_FENCE_RE.sub("", t)

    t = t.replace("'", '"')
    t = _UNQUOTED_KEY_RE.sub(r'\1"\2":', t)
    t = _python_literals(t)
    t = _collapse_newlines_in_strings(t)
    t = _close_open_structures(t)

    # trailing commas before } or ]
    return _TRAILING_COMMA_RE.sub(r"\1", t)


def _parse_normalized(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return json.loads(normalize_json_text(text))


def first_balanced_object(text: str) -> Optional[str]:
    """Extract the first top-level {...} substring, honoring strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def object_candidates(text: str) -> List[str]:
    """All innermost {...} substrings, in order of appearance."""
    return _FLAT_OBJECT_RE.findall(text or "")


def best_candidate(text: str) -> Optional[Dict[str, Any]]:
    """Parse every candidate; keep the one with the most keys (first wins ties)."""
    best: Optional[Dict[str, Any]] = None
    for candidate in object_candidates(text):
        try:
            value = _parse_normalized(candidate)
        except ValueError:
            continue
        if isinstance(value, dict) and (best is None or len(value) > len(best)):
            best = value
    return best


# ============================================================================
# PUBLIC API
# ============================================================================

def repair_json(text: str) -> Any:
    """
    Parse JSON from a possibly malformed string.

    Raises:
        JSONRepairError: when no stage produced a value.
    """
    if not isinstance(text, str) or not text.strip():
        raise JSONRepairError("Empty JSON text")

    # 1. Direct
    try:
        return json.loads(text)
    except ValueError:
        pass

    # 2. Normalize and reparse
    try:
        value = json.loads(normalize_json_text(text))
        logger.debug("JSON repaired by normalization")
        return value
    except ValueError:
        pass

    # 3. First balanced object
    extracted = first_balanced_object(text)
    if extracted is not None:
        try:
            value = _parse_normalized(extracted)
            logger.debug("JSON repaired by object extraction")
            return value
        except ValueError:
            pass

    # 4. Best of multiple candidates
    value = best_candidate(text)
    if value is not None:
        logger.debug("JSON repaired by candidate selection")
        return value

    raise JSONRepairError(f"Unable to repair JSON: {text[:200]!r}")


def try_repair_json(text: str) -> Optional[Any]:
    """repair_json that returns None instead of raising."""
    try:
        return repair_json(text)
    except JSONRepairError:
        return None


def normalize_incoming(incoming: Any) -> Dict[str, Any]:
    """
    Coerce a merge payload to an object.

    Strings are repaired; anything unrecoverable is wrapped as
    {"rawData": original} instead of being discarded.
    """
    if isinstance(incoming, dict):
        return incoming
    if isinstance(incoming, str):
        try:
            value = repair_json(incoming)
        except JSONRepairError:
            logger.warning(f"Keeping unparseable payload as rawData ({len(incoming)} chars)")
            return {"rawData": incoming}
        if isinstance(value, dict):
            return value
        return {"rawData": incoming}
    return {"rawData": incoming}
