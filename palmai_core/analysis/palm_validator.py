# palmai_core/analysis/palm_validator.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# First "{" through last "}" across lines
_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}", re.M)


class AnalysisParseError(ValueError):
    """Model output could not be turned into a JSON object."""

    def __init__(self, message: str, *, block_found: bool) -> None:
        super().__init__(message)
        self.block_found = block_found


@dataclass
class ValidationResult:
    is_valid: bool
    missing_fields: List[str] = field(default_factory=list)


def validate_json_structure(data: Any, template: Dict[str, Any]) -> ValidationResult:
    """
    Recursive key-presence check of ``data`` against ``template``.

    Every key in the template must exist in the data; nested template objects
    are descended into. Leaf value types are not checked, and template lists
    are leaves. When the template expects an object but the data holds a
    scalar, the path itself is reported missing; a list in that position has
    no named keys, so each of its expected children is reported instead.
    Paths are dotted, e.g. ``detailed_analysis.major_lines.heart_line``.
    """
    missing: List[str] = []

    def _check(obj: Any, temp: Dict[str, Any], path: str) -> None:
        keys = obj if isinstance(obj, dict) else {}
        for key, expected in temp.items():
            current = f"{path}.{key}" if path else key
            if key not in keys:
                missing.append(current)
                continue
            if isinstance(expected, dict):
                value = keys[key]
                if isinstance(value, dict):
                    _check(value, expected, current)
                elif isinstance(value, list):
                    _check({}, expected, current)
                else:
                    missing.append(current)

    _check(data, template, "")
    return ValidationResult(is_valid=not missing, missing_fields=missing)


def parse_analysis_text(text: Optional[str]) -> Any:
    """
    JSON-first parsing of the model's reply with a regex fallback for replies
    wrapped in prose or code fences. Raises AnalysisParseError; its
    ``block_found`` tells "unparseable block" apart from "no JSON at all".
    Arrays and scalars are returned as-is; template validation reports
    every section of such a reply missing.
    """
    text = text or ""
    try:
        data = json.loads(text)
    except ValueError:
        m = _JSON_BLOCK_RE.search(text)
        if not m:
            raise AnalysisParseError("no JSON object in model output", block_found=False)
        try:
            data = json.loads(m.group(0))
        except ValueError as e:
            raise AnalysisParseError(f"extracted block is not JSON: {e}", block_found=True)
    if data is None:
        raise AnalysisParseError("model output is JSON null", block_found=True)
    return data


def assemble_analysis(
    data: Dict[str, Any],
    *,
    user_id: str,
    profile: Any,
    analysis_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Model payload plus metadata; metadata keys override same-named payload keys."""
    created = created_at or datetime.now(timezone.utc)
    return {
        **data,
        "id": analysis_id or str(int(created.timestamp() * 1000)),
        "userId": user_id,
        "createdAt": created.isoformat().replace("+00:00", "Z"),
        "profile": profile,
    }
