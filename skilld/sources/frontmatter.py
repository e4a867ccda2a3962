"""Helpers shared by the issue, discussion and release formatters."""

import re
from typing import Dict, Optional, Union

BOT_USERS = {
    "renovate[bot]",
    "dependabot[bot]",
    "renovate-bot",
    "dependabot",
    "github-actions[bot]",
}

BODY_PREVIEW_LIMIT = 500

_NEEDS_QUOTES = re.compile(r"[:\"\[\]]")


def iso_date(iso: Optional[str]) -> str:
    """``YYYY-MM-DD`` part of an ISO timestamp."""
    return (iso or "").split("T")[0]


def build_frontmatter(fields: Dict[str, Union[str, int, bool, None]]) -> str:
    """YAML frontmatter block; strings with special characters are quoted."""
    lines = ["---"]
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, str) and _NEEDS_QUOTES.search(value):
            value = '"' + value.replace('"', '\\"') + '"'
        lines.append(f"{key}: {value}")
    lines.append("---")
    return "\n".join(lines)


def truncate(text: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."
