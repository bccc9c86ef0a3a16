"""
PMD-Gemini Service - Result Normalizer

Turns raw Code Analyzer stdout into a list of canonical Violation records.

Two encodings exist depending on the analyzer version:
- JSON (legacy sfdx-scanner arrays, Code Analyzer v5 ``{"violations": [...]}``)
- a box-drawn text table whose columns are separated by ``│``

The encoding is picked once per call from the leading character of the
trimmed output. Both parsers are pure and never raise: output that cannot be
understood degrades to an empty list.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .schemas import (
    DEFAULT_FILE_NAME,
    DEFAULT_LINE,
    DEFAULT_MESSAGE,
    DEFAULT_RULE_NAME,
    DEFAULT_SEVERITY,
    Violation,
)

COLUMN_SEPARATOR = "│"
ASCII_COLUMN_SEPARATOR = "|"
HORIZONTAL_RULE_GLYPHS = ("─", "━", "═")
HEADER_LABELS = ("Rule", "Severity")
MIN_TABLE_CELLS = 4

_ASCII_RULE_RE = re.compile(r"^[\s\-+=|]+$")
_LEADING_INT_RE = re.compile(r"^\s*[+]?(\d+)")

# Tool-specific key spellings, canonical key first.
RULE_KEYS = ("ruleName", "rule", "rule_name")
SEVERITY_KEYS = ("severity", "priority")
LINE_KEYS = ("line", "beginLine", "startLine", "line_number")
MESSAGE_KEYS = ("message", "description", "msg")
FILE_KEYS = ("fileName", "file", "filename", "path")


def normalize(raw: Optional[str]) -> List[Violation]:
    """Parse analyzer output into violations. Never raises."""
    if not raw:
        return []

    text = raw.strip()
    if not text:
        return []

    if text[0] in "[{":
        return parse_json_output(text)
    return parse_table_output(text)


# =============================================================================
# FIELD COERCION
# =============================================================================


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first_present(record: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if not _is_absent(value):
            return value
    return None


def coerce_line(value: Any) -> int:
    """Positive line number, or 1 when the value cannot be read as one."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_LINE
    if isinstance(value, int):
        return value if value >= 1 else DEFAULT_LINE
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value >= 1 else DEFAULT_LINE

    match = _LEADING_INT_RE.match(str(value))
    if not match:
        return DEFAULT_LINE
    number = int(match.group(1))
    return number if number >= 1 else DEFAULT_LINE


def coerce_severity(value: Any) -> Any:
    if _is_absent(value):
        return DEFAULT_SEVERITY
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return str(value).strip()


def _text(value: Any, default: str) -> str:
    if _is_absent(value):
        return default
    return str(value).strip()


def build_violation(
    rule_name: Any = None,
    severity: Any = None,
    line: Any = None,
    message: Any = None,
    file_name: Any = None,
) -> Violation:
    return Violation(
        rule_name=_text(rule_name, DEFAULT_RULE_NAME),
        severity=coerce_severity(severity),
        line=coerce_line(line),
        message=_text(message, DEFAULT_MESSAGE),
        file_name=_text(file_name, DEFAULT_FILE_NAME),
    )


# =============================================================================
# JSON ENCODING
# =============================================================================


def _primary_location(record: Dict[str, Any]) -> Dict[str, Any]:
    """Code Analyzer v5 keeps file/line in ``locations[primaryLocationIndex]``."""
    locations = record.get("locations")
    if not isinstance(locations, list) or not locations:
        return {}

    index = record.get("primaryLocationIndex", 0)
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(locations):
        index = 0
    location = locations[index]
    return location if isinstance(location, dict) else {}


def violation_from_record(record: Dict[str, Any], parent_file: Any = None) -> Violation:
    location = _primary_location(record)

    line = _first_present(record, LINE_KEYS)
    if line is None:
        line = _first_present(location, LINE_KEYS)

    file_name = _first_present(record, FILE_KEYS)
    if file_name is None:
        file_name = _first_present(location, FILE_KEYS)
    if file_name is None:
        file_name = parent_file

    return build_violation(
        rule_name=_first_present(record, RULE_KEYS),
        severity=_first_present(record, SEVERITY_KEYS),
        line=line,
        message=_first_present(record, MESSAGE_KEYS),
        file_name=file_name,
    )


def _looks_like_record(document: Dict[str, Any]) -> bool:
    return any(key in document for key in (*RULE_KEYS, *MESSAGE_KEYS, *LINE_KEYS))


def _records_from_json(document: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(document, dict):
        nested = document.get("violations")
        if isinstance(nested, list):
            return [item for item in nested if isinstance(item, dict)]
        # Status or summary objects are not findings.
        if _looks_like_record(document):
            return [document]
        return []
    if isinstance(document, list):
        return [item for item in document if isinstance(item, dict)]
    return []


def parse_json_output(text: str) -> List[Violation]:
    """Parse a JSON document. Malformed input yields an empty list."""
    try:
        document = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.warning(f"Analyzer output looked like JSON but failed to parse: {e}")
        logger.debug(f"Unparsed analyzer output: {text[:2000]}")
        return []

    violations: List[Violation] = []
    for record in _records_from_json(document):
        nested = record.get("violations")
        if isinstance(nested, list):
            # Legacy sfdx-scanner: one entry per file with its own violations.
            parent_file = _first_present(record, FILE_KEYS)
            for item in nested:
                if isinstance(item, dict):
                    violations.append(violation_from_record(item, parent_file=parent_file))
            continue
        violations.append(violation_from_record(record))

    return violations


# =============================================================================
# TABLE ENCODING
# =============================================================================


def _is_skippable_line(line: str) -> bool:
    if not line.strip():
        return True
    if any(glyph in line for glyph in HORIZONTAL_RULE_GLYPHS):
        return True
    if _ASCII_RULE_RE.match(line):
        return True
    return any(label in line for label in HEADER_LABELS)


def split_table_row(line: str) -> List[str]:
    separator = COLUMN_SEPARATOR if COLUMN_SEPARATOR in line else ASCII_COLUMN_SEPARATOR
    return [cell.strip() for cell in line.split(separator) if cell.strip()]


def parse_table_output(text: str) -> List[Violation]:
    """Parse ``Rule │ Severity │ Line │ Description │ File`` rows."""
    violations: List[Violation] = []

    for line in text.splitlines():
        if _is_skippable_line(line):
            continue

        cells = split_table_row(line)
        if len(cells) < MIN_TABLE_CELLS:
            continue

        violations.append(
            build_violation(
                rule_name=cells[0],
                severity=cells[1],
                line=cells[2],
                message=cells[3],
                file_name=cells[4] if len(cells) > 4 else None,
            )
        )

    return violations
