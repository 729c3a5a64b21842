"""Helpers for turning free-form LLM output into JSON objects."""

import json
import re
from typing import Any

from src.services.llm_client import LLMParseError


def extract_json(text: str) -> str:
    """Extract a JSON object from text, handling markdown code blocks."""
    json_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if json_match:
        return json_match.group(1)

    json_match = re.search(r"(\{.*\})", text, re.DOTALL)
    if json_match:
        return json_match.group(1)

    return text


def repair_json(json_str: str) -> str:
    """
    Attempt to repair common JSON issues from LLM responses.

    Fixes:
    - Trailing commas before ] or }
    - Missing commas between objects
    - Output truncated mid-array (keeps the complete objects)
    """
    json_str = re.sub(r",\s*([}\]])", r"\1", json_str)
    json_str = re.sub(r"}\s*{", r"},{", json_str)
    json_str = re.sub(r'"\s*\n\s*"', '",\n"', json_str)
    json_str = re.sub(r'(\d)\s*\n\s*"', r'\1,\n"', json_str)
    json_str = re.sub(r'}\s*\n\s*"', r'},\n"', json_str)

    try:
        json.loads(json_str)
        return json_str
    except json.JSONDecodeError:
        last_complete = json_str.rfind("},")
        if last_complete > 0:
            return json_str[: last_complete + 1] + "]}"

    return json_str


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse model output into a dict.

    Raises:
        LLMParseError: if no JSON object can be recovered
    """
    if not text or not text.strip():
        raise LLMParseError("Empty response")
    try:
        data = json.loads(repair_json(extract_json(text)))
    except json.JSONDecodeError as e:
        raise LLMParseError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LLMParseError("Expected a JSON object")
    return data
