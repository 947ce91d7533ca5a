"""Plain-text helpers shared by the collector, normalizer and draft composer.

Model output and message bodies are HTML/markdown-adjacent; everything that is
stored or shown goes through these helpers first.
"""

from __future__ import annotations

import html
import re
from typing import Any

from bs4 import BeautifulSoup

_BLOCK_TAGS = ["p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"]

_CODE_FENCE_START_RE = re.compile(r"^```(?:json)?\n?", re.IGNORECASE)
_CODE_FENCE_END_RE = re.compile(r"\n?```$")
_MARKDOWN_EMPHASIS_RE = re.compile(r"\*\*|__|`")
_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)

# Reply-tail heuristics. These are best-effort markers, not a grammar.
_PLAIN_SIGNATURE_RE = re.compile(r"^--\s?$")
_PLAIN_ATTRIBUTION_RE = re.compile(r"^On .+ wrote:\s*$")
_PLAIN_FORWARD_RE = re.compile(r"^-{2,}\s*(Original Message|Forwarded message)\s*-{2,}\s*$", re.IGNORECASE)
_HTML_TAIL_RES = (
    re.compile(
        r"<[a-z]+\b[^<>]*\bclass\s*=\s*[\"'][^\"']*\b(moz-signature|moz-cite-prefix|gmail_quote)\b",
        re.IGNORECASE,
    ),
    re.compile(r"<blockquote\b", re.IGNORECASE),
)


def normalize_text(value: Any) -> str:
    """Stringify, normalize line endings and trim."""
    if value is None:
        return ""
    return str(value).replace("\r\n", "\n").strip()


def normalize_base_url(value: Any) -> str:
    return normalize_text(value).rstrip("/")


def truncate_text(value: Any, limit: int, suffix: str = "") -> str:
    """Normalize and cap ``value`` at ``limit`` characters, suffix included."""
    text = normalize_text(value)
    if len(text) <= limit:
        return text
    if suffix and len(suffix) < limit:
        return text[: limit - len(suffix)].rstrip() + suffix
    return text[:limit].rstrip()


def strip_html(value: Any) -> str:
    """Convert an HTML fragment to readable plain text."""
    raw = str(value or "")
    if "<" not in raw and "&" not in raw:
        return normalize_text(raw)

    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")

    text = soup.get_text().replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return normalize_text(text)


def strip_markup(value: Any) -> str:
    """Strip HTML plus the markdown decorations models like to add."""
    text = strip_html(value)
    text = _MARKDOWN_HEADING_RE.sub("", text)
    text = _MARKDOWN_EMPHASIS_RE.sub("", text)
    return normalize_text(text)


def strip_code_fence(value: Any) -> str:
    text = normalize_text(value)
    if text.startswith("```") and text.endswith("```") and len(text) >= 6:
        text = _CODE_FENCE_START_RE.sub("", text)
        text = _CODE_FENCE_END_RE.sub("", text)
    return text.strip()


def plain_text_to_html(text: Any) -> str:
    escaped = html.escape(normalize_text(text), quote=True)
    return "<div>" + escaped.replace("\n", "<br>") + "</div>"


def split_reply_tail(text: Any) -> tuple[str, str]:
    """Split a plain-text body into (new text, signature/quoted tail).

    The tail starts at the first line that looks like a signature delimiter
    ("-- "), a quoted line (">"), an "On ... wrote:" attribution or a
    forwarded/original message banner. When nothing matches the tail is empty.
    """
    body = str(text or "").replace("\r\n", "\n")
    lines = body.split("\n")
    for index, line in enumerate(lines):
        stripped = line.rstrip()
        if (
            _PLAIN_SIGNATURE_RE.match(stripped)
            or stripped.startswith(">")
            or _PLAIN_ATTRIBUTION_RE.match(stripped.strip())
            or _PLAIN_FORWARD_RE.match(stripped.strip())
        ):
            head = "\n".join(lines[:index]).strip()
            tail = "\n".join(lines[index:]).strip("\n")
            return head, tail
    return body.strip(), ""


def split_html_reply_tail(value: Any) -> tuple[str, str]:
    """Split an HTML body at the first signature or citation container."""
    body = str(value or "")
    positions = [m.start() for m in (regex.search(body) for regex in _HTML_TAIL_RES) if m]
    if not positions:
        return body, ""
    cut = min(positions)
    return body[:cut], body[cut:]
