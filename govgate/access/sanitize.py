"""
Input Guard

Screens mutation payloads for injection and traversal signatures before they
reach the grant source or the record store.
"""

import logging
import re
from typing import Any, Mapping

from govgate.errors import MaliciousInputDetected

logger = logging.getLogger(__name__)


class InputThreat:
    SQL_INJECTION = "sql_injection"
    SCRIPT_INJECTION = "script_injection"
    PATH_TRAVERSAL = "path_traversal"
    QUERY_INJECTION = "query_injection"


_PATTERNS: dict[str, list[re.Pattern]] = {
    InputThreat.SQL_INJECTION: [
        re.compile(r"(?:'|\")\s*or\s+(?:'|\")?\w+(?:'|\")?\s*=\s*(?:'|\")?\w+", re.IGNORECASE),
        re.compile(r";\s*(?:drop|delete|truncate|alter|insert|update)\s", re.IGNORECASE),
        re.compile(r"\bunion\b\s+(?:all\s+)?\bselect\b", re.IGNORECASE),
        re.compile(r"(?:'|\")\s*(?:--|#|/\*)"),
    ],
    InputThreat.SCRIPT_INJECTION: [
        re.compile(r"<\s*script\b", re.IGNORECASE),
        re.compile(r"\bon(?:error|load|click|mouseover)\s*=", re.IGNORECASE),
        re.compile(r"^\s*javascript\s*:", re.IGNORECASE),
    ],
    InputThreat.PATH_TRAVERSAL: [
        re.compile(r"(?:^|[\\/])\.\.(?:[\\/]|$)"),
        re.compile(r"%2e%2e(?:%2f|%5c|/|\\)", re.IGNORECASE),
    ],
    InputThreat.QUERY_INJECTION: [
        # Encoded-query operators smuggled into field values
        re.compile(r"\^(?:NQ|OR)\w*"),
        re.compile(r"\bgs\.\w+\s*\(", re.IGNORECASE),
    ],
}


def scan_value(value: str) -> str | None:
    """Return the threat kind a string matches, if any."""
    for kind, patterns in _PATTERNS.items():
        for pattern in patterns:
            if pattern.search(value):
                return kind
    return None


def detect_malicious_input(values: Mapping[str, Any] | None, _path: str = "") -> None:
    """
    Scan every string in a payload, including nested dicts and lists.

    Raises:
        MaliciousInputDetected: On the first matching value
    """
    if not values:
        return

    for key, value in values.items():
        path = f"{_path}.{key}" if _path else str(key)
        _scan(value, path)


def _scan(value: Any, path: str) -> None:
    if isinstance(value, str):
        kind = scan_value(value)
        if kind:
            logger.warning(f"Blocked {kind} signature in field {path}")
            raise MaliciousInputDetected(kind, path)
    elif isinstance(value, Mapping):
        detect_malicious_input(value, path)
    elif isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            _scan(item, f"{path}[{idx}]")
    else:
        # FieldValue-shaped objects
        raw = getattr(value, "raw_value", None)
        if isinstance(raw, str):
            _scan(raw, path)
