from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", flags=re.IGNORECASE)


def extract_json_object(content: str) -> dict[str, Any]:
    """Best-effort extraction of a JSON object from LLM output.

    Tries the raw text, fenced code blocks and a leading ``json`` tag, then the
    outermost ``{...}`` span of each candidate. Raises ValueError when nothing parses.
    """
    raw = (content or "").strip()
    if not raw:
        raise ValueError("empty model output")

    candidates: list[str] = [raw]
    for match in _FENCE_RE.finditer(raw):
        inner = (match.group(1) or "").strip()
        if inner:
            candidates.append(inner)

    if raw.lower().startswith("json"):
        stripped = raw[4:].strip()
        if stripped:
            candidates.append(stripped)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass

        start = candidate.find("{")
        end = candidate.rfind("}")
        if start >= 0 and end > start:
            try:
                parsed = json.loads(candidate[start : end + 1])
                if isinstance(parsed, dict):
                    return parsed
            except ValueError:
                continue

    raise ValueError("model output is not a valid JSON object")
