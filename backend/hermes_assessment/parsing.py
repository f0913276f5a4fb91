from __future__ import annotations
import json
import re
from typing import Any


def extract_json_object(text: str) -> Any:
    """
    Extract a JSON value from LLM response text.

    Handles raw JSON, JSON wrapped in markdown code fences, and a JSON object
    embedded in surrounding prose.

    Raises:
        ValueError: If no valid JSON can be extracted
    """
    text = (text or "").strip()
    # Try direct JSON parsing first
    try:
        return json.loads(text)
    except ValueError:
        pass

    # Try extracting from markdown code blocks
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        try:
            return json.loads(code_block.group(1))
        except ValueError:
            pass

    # Try extracting first JSON object from text
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last != -1 and last > first:
        try:
            return json.loads(text[first : last + 1])
        except ValueError:
            pass

    raise ValueError(f"LLM did not return valid JSON: {text[:200]!r}")
