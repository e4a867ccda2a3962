"""Markdown sanitizer applied to every cached document.

Strips agent-instruction injection vectors from untrusted markdown before
it lands in the reference cache. Regex based: the content is consumed as
text, not rendered in a browser.
"""

import re
from typing import Callable, List

# Zero-width and invisible formatting characters
ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\u200e\u200f\u2060\ufeff\u061c\u180e\u2028\u2029]")

HTML_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")

# Never legitimate, stripped even inside code blocks
AGENT_DIRECTIVE_TAGS = [
    "system",
    "instructions",
    "override",
    "prompt",
    "context",
    "role",
    "user-prompt",
    "assistant",
    "tool-use",
    "tool-result",
    "system-prompt",
    "human",
    "admin",
]

# May appear in code examples (e.g. `<script setup>`), stripped only outside fences
DANGEROUS_HTML_TAGS = ["script", "iframe", "style", "meta", "object", "embed", "form"]

EXTERNAL_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(https?://[^)]+\)", re.IGNORECASE)
EXTERNAL_LINK_RE = re.compile(r"\[([^\]]*)\]\((https?://[^)]+)\)", re.IGNORECASE)
DANGEROUS_PROTOCOL_RE = re.compile(
    r"!?\[([^\]]*)\]\(\s*(javascript|data|vbscript|file)\s*:[^)]*\)", re.IGNORECASE
)
DIRECTIVE_LINE_RE = re.compile(
    r"^[ \t]*(SYSTEM|OVERRIDE|INSTRUCTION|NOTE TO AI|IGNORE PREVIOUS|IGNORE ALL PREVIOUS"
    r"|DISREGARD|FORGET ALL|NEW INSTRUCTIONS?|IMPORTANT SYSTEM|ADMIN OVERRIDE)\s*[:>].*",
    re.IGNORECASE | re.MULTILINE,
)
BASE64_BLOB_RE = re.compile(r"^[A-Z0-9+/=]{100,}$", re.IGNORECASE | re.MULTILINE)
UNICODE_ESCAPE_SPAM_RE = re.compile(r"(\\u[\dA-Fa-f]{4}){4,}")

_FENCE_OPEN_RE = re.compile(r"^(`{3,}|~{3,})")
_FENCE_CLOSE_RE = re.compile(r"^(`{3,}|~{3,})\s*$")


def _decode_angle_bracket_entities(text: str) -> str:
    text = re.sub(r"&lt;", "<", text, flags=re.IGNORECASE)
    text = re.sub(r"&gt;", ">", text, flags=re.IGNORECASE)
    text = re.sub(r"&#0*60;", "<", text)
    text = re.sub(r"&#0*62;", ">", text)
    text = re.sub(r"&#x0*3c;", "<", text, flags=re.IGNORECASE)
    return re.sub(r"&#x0*3e;", ">", text, flags=re.IGNORECASE)


def _strip_tags(text: str, tags: List[str]) -> str:
    group = "|".join(re.escape(t) for t in tags)
    paired = re.compile(rf"<({group})(\s[^>]*)?>([\s\S]*?)</\1>", re.IGNORECASE)
    standalone = re.compile(rf"</?({group})(\s[^>]*)?/?>", re.IGNORECASE)
    return standalone.sub("", paired.sub("", text))


def process_outside_code_blocks(content: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to every span of ``content`` outside fenced code blocks.

    Unclosed fences are treated as non-code so a malformed fence cannot
    shield content from sanitization.
    """
    result: List[str] = []
    non_code: List[str] = []
    code: List[str] = []
    in_code = False
    fence_char = ""
    fence_len = 0

    def flush_non_code() -> None:
        if non_code:
            result.append(fn("\n".join(non_code)))
            non_code.clear()

    for line in content.split("\n"):
        trimmed = line.lstrip()
        if not in_code:
            match = _FENCE_OPEN_RE.match(trimmed)
            if match:
                flush_non_code()
                in_code = True
                fence_char = match.group(1)[0]
                fence_len = len(match.group(1))
                code = [line]
                continue
            non_code.append(line)
        else:
            match = _FENCE_CLOSE_RE.match(trimmed)
            if match and match.group(1)[0] == fence_char and len(match.group(1)) >= fence_len:
                result.append("\n".join(code))
                result.append(line)
                code = []
                in_code = False
                continue
            code.append(line)

    flush_non_code()

    if in_code and code:
        result.append(fn("\n".join(code)))

    return "\n".join(result)


def _sanitize_prose(text: str) -> str:
    t = _decode_angle_bracket_entities(text)
    t = _strip_tags(t, AGENT_DIRECTIVE_TAGS + DANGEROUS_HTML_TAGS)
    t = EXTERNAL_IMAGE_RE.sub("", t)
    t = EXTERNAL_LINK_RE.sub(r"\1", t)
    t = DANGEROUS_PROTOCOL_RE.sub("", t)
    t = DIRECTIVE_LINE_RE.sub("", t)
    t = BASE64_BLOB_RE.sub("", t)
    return UNICODE_ESCAPE_SPAM_RE.sub("", t)


def sanitize_markdown(content: str) -> str:
    """Strip prompt-injection vectors from markdown content."""
    if not content:
        return content

    result = ZERO_WIDTH_RE.sub("", content)
    result = HTML_COMMENT_RE.sub("", result)
    result = _strip_tags(result, AGENT_DIRECTIVE_TAGS)
    return process_outside_code_blocks(result, _sanitize_prose)
