"""Minimal YAML value escaping for the hand-written lockfile codec.

Handles the characters that break naive ``key: value`` splitting and quote
stripping: colons, quotes, newlines and backslashes.
"""

import re
from typing import Optional, Tuple

# Characters that require double-quoting in YAML values
NEEDS_QUOTING = re.compile(r"[:\"'\\\n\r\t#{}\[\],&*!|>%@`]")

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}


def yaml_escape(value: str) -> str:
    """Escape a value for YAML emission.

    Double-quotes the value when it contains any special character;
    simple values are returned unquoted.
    """
    if not NEEDS_QUOTING.search(value):
        return value
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def yaml_unescape(raw: str) -> str:
    """Parse a raw YAML scalar back to its value.

    Handles double-quoted (with escapes), single-quoted and plain values.
    """
    trimmed = raw.strip()
    if not trimmed:
        return ""

    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        body = trimmed[1:-1]
        out = []
        i = 0
        while i < len(body):
            ch = body[i]
            if ch == "\\" and i + 1 < len(body) and body[i + 1] in _ESCAPES:
                out.append(_ESCAPES[body[i + 1]])
                i += 2
                continue
            out.append(ch)
            i += 1
        return "".join(out)

    if len(trimmed) >= 2 and trimmed.startswith("'") and trimmed.endswith("'"):
        return trimmed[1:-1]

    return trimmed


def yaml_parse_kv(line: str) -> Optional[Tuple[str, str]]:
    """Split a ``key: value`` line at the first colon.

    Returns:
        (key, unescaped value) or None when the line is not a key/value pair
    """
    trimmed = line.strip()
    idx = trimmed.find(":")
    if idx == -1:
        return None
    key = trimmed[:idx].strip()
    if not key:
        return None
    return key, yaml_unescape(trimmed[idx + 1:])
