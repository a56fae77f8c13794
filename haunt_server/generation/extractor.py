"""
Extract a structured voice command from free-form model output.

Models rarely return bare JSON. Two strategies are tried in order:
  1. a fenced ```json block
  2. the first balanced {...} substring in the text

Anything that does not yield an object with a non-empty commandText and
deviceName is reported as "no command" (None). Malformed output is expected
and never raises.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

_FENCED_BLOCK_RE = re.compile(r"```[ \t]*json[ \t]*\r?\n?(.*?)```", re.DOTALL | re.IGNORECASE)


class ExtractedCommand(BaseModel):
    """The fields the sub-agent prompt asks the model to return."""
    command_text: str = Field(..., alias="commandText", min_length=1)
    device_name: str = Field(..., alias="deviceName", min_length=1)
    reasoning: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def extract_fenced_block(text: str) -> Optional[str]:
    """Return the body of the first ```json fenced block, if any."""
    match = _FENCED_BLOCK_RE.search(text)
    if not match:
        return None
    return match.group(1).strip()


def extract_balanced_object(text: str) -> Optional[str]:
    """
    Return the first balanced brace-delimited substring.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def _parse_object(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_command(raw_text: Optional[str]) -> Optional[ExtractedCommand]:
    """
    Pull a command object out of generated text.

    Returns:
        ExtractedCommand, or None if nothing usable was found.
    """
    if not raw_text or not isinstance(raw_text, str):
        return None

    parsed = _parse_object(extract_fenced_block(raw_text))
    if parsed is None:
        parsed = _parse_object(extract_balanced_object(raw_text))
    if parsed is None:
        logger.warning(f"No JSON object found in generated text: {raw_text[:200]!r}")
        return None

    try:
        return ExtractedCommand.model_validate(parsed)
    except ValidationError as exc:
        logger.warning(
            f"Generated JSON is missing required command fields "
            f"(keys: {list(parsed.keys())!r}): {exc.error_count()} error(s)"
        )
        return None
