"""Final clean-up applied to assistant text before it is persisted or returned."""

from __future__ import annotations

import re
from typing import Iterable

OPENAI_IMAGE_HOST = "oaidalleapiprodscus.blob.core.windows.net"

_SEARCH_ARTIFACT_PATTERNS = (
    re.compile(r'\{"query"\s*:\s*"[^"]*"[^}]*\}\s*', re.IGNORECASE),
    re.compile(r'\{"search_results"\s*:\s*\[[^\]]*\]\s*\}', re.IGNORECASE),
    re.compile(
        r'\{"title"\s*:\s*"[^"]*",\s*"link"\s*:\s*"https?://[^"]*"[^}]*\}',
        re.IGNORECASE,
    ),
    re.compile(r'^\s*\{"query"[^\n]*$', re.MULTILINE),
    re.compile(r'^\s*\{[^{}\n]*(?:"query"|"top"|"source")[^{}\n]*\}\s*$', re.MULTILINE),
)

_SENTENCE_START = r"(?:^|(?<=[.!?]\s))"
_NARRATION_PATTERNS = (
    re.compile(r"\A(?:I'll\s+[^.\n]*\.\s*)+"),
    re.compile(
        _SENTENCE_START
        + r"(?:Searching for|Performing|Pulling|Querying|Fetching|Almost done|"
        r"Compiling|Providing)\b[^.\n]*\.\s*",
        re.MULTILINE,
    ),
    re.compile(r"^(?:Let me|I'm|I need to)\b[^.\n]*\.[ \t]*\n?", re.MULTILINE),
)

_LEADING_TITLE_JSON = re.compile(r'\A\s*\{\s*"title"\s*:\s*"[^"]+"\s*\}\s*')

_MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\(https?://[^\s)]+\)")
_OPENAI_IMAGE_URL = re.compile(
    r"https?://" + re.escape(OPENAI_IMAGE_HOST) + r"/[^\s)]+", re.IGNORECASE
)
_CONTEXT_WORDS = r"(?:image\s+link|link|url|view|download|here|source)"

# Either an existing markdown link (left alone) or a bare URL.
_LINK_OR_URL = re.compile(
    r"(?P<markdown>!?\[[^\]\n]*\]\([^)\s]*\))|(?P<url>https?://[^\s)\]<>\"']+)",
    re.IGNORECASE,
)
_IMAGE_FILE_URL = re.compile(
    r"\.(?:png|jpe?g|gif|webp)(?:\?[^\s]*)?$", re.IGNORECASE
)
_TRAILING_PUNCTUATION = ".,;:!?"
_DOMAIN = re.compile(r"https?://(?:www\.)?([^/?#]+)", re.IGNORECASE)


def strip_search_artifacts(text: str) -> str:
    """Remove raw tool-call or search-result JSON that leaked into prose."""

    for pattern in _SEARCH_ARTIFACT_PATTERNS:
        text = pattern.sub("", text)
    return text


def strip_reasoning_narration(text: str) -> str:
    for pattern in _NARRATION_PATTERNS:
        text = pattern.sub("", text)
    return text


def strip_image_urls(text: str, image_urls: Iterable[str]) -> str:
    """Drop references to generated images; they are shown through their own channel."""

    urls = [url for url in image_urls if url]
    if not urls:
        return text

    text = _MARKDOWN_IMAGE.sub("", text)
    for url in urls:
        escaped = re.escape(url)
        text = re.sub(r"\[[^\]\n]*\]\(" + escaped + r"\)", "", text)
        text = re.sub(
            _CONTEXT_WORDS + r"\s*:?\s*" + escaped, "", text, flags=re.IGNORECASE
        )
        text = text.replace(url, "")

    text = _OPENAI_IMAGE_URL.sub("", text)

    def _drop_bare_image(match: re.Match[str]) -> str:
        url = match.group("url")
        if url and _IMAGE_FILE_URL.search(url.rstrip(_TRAILING_PUNCTUATION)):
            return ""
        return match.group(0)

    return _LINK_OR_URL.sub(_drop_bare_image, text)


def link_text_for(url: str) -> str:
    match = _DOMAIN.match(url)
    domain = match.group(1).lower() if match else ""
    if "github.com" in domain:
        return "View on GitHub"
    if "stackoverflow.com" in domain:
        return "View on Stack Overflow"
    if "youtube.com" in domain or "youtu.be" in domain:
        return "Watch on YouTube"
    if "docs." in domain:
        return "View documentation"
    if "wikipedia.org" in domain:
        return "Read on Wikipedia"
    return "Visit link"


def linkify_urls(text: str) -> str:
    """Turn bare URLs into descriptive markdown links."""

    def _replace(match: re.Match[str]) -> str:
        url = match.group("url")
        if not url:
            return match.group(0)
        trimmed = url.rstrip(_TRAILING_PUNCTUATION)
        trailing = url[len(trimmed) :]
        if not trimmed or OPENAI_IMAGE_HOST in trimmed.lower():
            return match.group(0)
        return f"[{link_text_for(trimmed)}]({trimmed}){trailing}"

    return _LINK_OR_URL.sub(_replace, text)


def normalize_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n\s*\n\s*\n", "\n\n", text)
    return text.strip()


def _single_pass(text: str, image_urls: tuple[str, ...]) -> str:
    text = strip_search_artifacts(text)
    text = strip_reasoning_narration(text)
    text = strip_image_urls(text, image_urls)
    text = linkify_urls(text)
    text = _LEADING_TITLE_JSON.sub("", text)
    return normalize_whitespace(text)


def sanitize_response(text: str, image_urls: Iterable[str] = ()) -> str:
    """Clean assistant text; re-running on the output changes nothing."""

    if not text:
        return text
    # Steps only delete text, and linkify skips existing links.
    # Every step only removes text or links bare URLs once, so this converges.
    urls = tuple(image_urls)
    while True:
        cleaned = _single_pass(text, urls)
        if cleaned == text:
            return text
        text = cleaned


def strip_streamed_image_urls(text: str) -> str:
    """Remove OpenAI-hosted image links from a streamed reply before saving it."""

    found = _OPENAI_IMAGE_URL.findall(text)
    if not found:
        return text
    for url in found:
        escaped = re.escape(url)
        text = re.sub(
            _CONTEXT_WORDS + r"\s*:?\s*" + escaped, "", text, flags=re.IGNORECASE
        )
        text = text.replace(url, "")
    return text


__all__ = [
    "OPENAI_IMAGE_HOST",
    "link_text_for",
    "linkify_urls",
    "normalize_whitespace",
    "sanitize_response",
    "strip_image_urls",
    "strip_reasoning_narration",
    "strip_search_artifacts",
    "strip_streamed_image_urls",
]
