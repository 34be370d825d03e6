"""JSON extraction from free-form model replies."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def _balanced_object(text: str) -> str | None:
	"""Return the first brace-balanced ``{...}`` span, ignoring braces inside strings."""
	start = text.find("{")
	if start == -1:
		return None
	depth = 0
	in_string = False
	escaped = False
	for pos in range(start, len(text)):
		ch = text[pos]
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
		elif ch == "{":
			depth += 1
		elif ch == "}":
			depth -= 1
			if depth == 0:
				return text[start:pos + 1]
	return None


def extract_json_object(text: str) -> dict[str, Any] | None:
	"""Pull a JSON object out of text that may wrap it in fences or prose.

	Candidates are tried in order: the first fenced block, the whole text,
	then the first balanced ``{...}`` span. Returns None when none of them
	parses to a dict.
	"""
	if not text or not text.strip():
		return None

	candidates: list[str] = []
	fence = _FENCE_RE.search(text)
	if fence:
		candidates.append(fence.group(1).strip())
	candidates.append(text.strip())
	span = _balanced_object(text)
	if span:
		candidates.append(span)

	for candidate in candidates:
		try:
			data = json.loads(candidate)
		except ValueError:
			continue
		if isinstance(data, dict):
			return data
	return None
