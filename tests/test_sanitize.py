from __future__ import annotations

import pytest

from assistant.chat.sanitize import (
    link_text_for,
    linkify_urls,
    sanitize_response,
    strip_image_urls,
    strip_streamed_image_urls,
)

IMAGE_URL = (
    "https://oaidalleapiprodscus.blob.core.windows.net/private/org/img-abc.png"
    "?st=2024&sig=xyz"
)


def test_generated_image_url_is_removed_everywhere() -> None:
    text = (
        f"Here's your sunset! ![sunset]({IMAGE_URL})\n\n"
        f"[Open image]({IMAGE_URL})\n"
        f"Image link: {IMAGE_URL}\n"
        f"Enjoy it."
    )

    cleaned = sanitize_response(text, [IMAGE_URL])

    assert IMAGE_URL not in cleaned
    assert "oaidalleapiprodscus" not in cleaned
    assert "Here's your sunset!" in cleaned
    assert "Enjoy it." in cleaned


def test_bare_image_file_urls_dropped_when_images_were_generated() -> None:
    text = "Also see https://cdn.example.com/picture.jpg for a copy."

    cleaned = strip_image_urls(text, ["https://cdn.example.com/other.png"])

    assert "picture.jpg" not in cleaned


def test_image_stripping_is_skipped_without_generated_images() -> None:
    text = "Chart: https://cdn.example.com/chart.png"

    assert strip_image_urls(text, []) == text


def test_leaked_search_json_is_removed() -> None:
    text = 'Result {"query": "weather houston"} It is sunny and 75F.'

    assert sanitize_response(text) == "Result It is sunny and 75F."


def test_search_results_blob_is_removed() -> None:
    text = 'Answer first.\n{"search_results": [1, 2]}\nDone.'

    cleaned = sanitize_response(text)

    assert "search_results" not in cleaned
    assert cleaned.startswith("Answer first.")
    assert cleaned.endswith("Done.")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("I'll look that up for you. The answer is 42.", "The answer is 42."),
        ("Searching for current prices. Gold is up today.", "Gold is up today."),
        ("Let me check the numbers.\nRevenue grew 8%.", "Revenue grew 8%."),
        ("Fetching results now. Almost done here. Rates held.", "Rates held."),
    ],
)
def test_reasoning_narration_is_removed(text: str, expected: str) -> None:
    assert sanitize_response(text) == expected


def test_leading_title_blob_is_removed() -> None:
    assert sanitize_response('{"title": "Trip"} Pack light.') == "Pack light."


@pytest.mark.parametrize(
    ("url", "label"),
    [
        ("https://github.com/org/repo", "View on GitHub"),
        ("https://stackoverflow.com/q/1", "View on Stack Overflow"),
        ("https://www.youtube.com/watch?v=1", "Watch on YouTube"),
        ("https://youtu.be/abc", "Watch on YouTube"),
        ("https://docs.python.org/3/", "View documentation"),
        ("https://en.wikipedia.org/wiki/Python", "Read on Wikipedia"),
        ("https://example.com/page", "Visit link"),
    ],
)
def test_link_text_for_known_domains(url: str, label: str) -> None:
    assert link_text_for(url) == label


def test_bare_urls_become_markdown_links() -> None:
    text = "Source: https://github.com/org/repo. More at https://example.com/page"

    assert linkify_urls(text) == (
        "Source: [View on GitHub](https://github.com/org/repo). "
        "More at [Visit link](https://example.com/page)"
    )


def test_existing_markdown_links_are_left_alone() -> None:
    text = "Read [the docs](https://docs.python.org/3/) first."

    assert linkify_urls(text) == text


def test_openai_blob_urls_are_never_linked() -> None:
    text = f"raw {IMAGE_URL}"

    assert linkify_urls(text) == text


@pytest.mark.parametrize(
    "text",
    [
        "Plain answer with no links.",
        "See https://github.com/org/repo and https://example.com/a.",
        f"I'll draw it. Here you go: ![img]({IMAGE_URL})\n\n\n\nView here: {IMAGE_URL}",
        'Searching for news. {"query": "x"}\n\nLet me think.\nHeadline one.',
        "[Visit link](https://example.com) then https://docs.example.org/guide!",
    ],
)
def test_sanitize_is_idempotent(text: str) -> None:
    once = sanitize_response(text, [IMAGE_URL])

    assert sanitize_response(once, [IMAGE_URL]) == once


def test_whitespace_runs_are_collapsed() -> None:
    assert sanitize_response("one  \n\n\n\ntwo\n") == "one\n\ntwo"


def test_streamed_reply_loses_openai_image_links() -> None:
    text = f"Your image is ready. Image link: {IMAGE_URL} Enjoy!"

    cleaned = strip_streamed_image_urls(text)

    assert IMAGE_URL not in cleaned
    assert cleaned.startswith("Your image is ready.")
    assert cleaned.endswith("Enjoy!")
    assert strip_streamed_image_urls("nothing to strip") == "nothing to strip"


def test_many_leading_future_tense_sentences_are_removed_at_once() -> None:
    text = "I'll a. I'll b. I'll c. I'll d. I'll e. I'll f. Answer here."

    once = sanitize_response(text)

    assert once == "Answer here."
    assert sanitize_response(once) == once
