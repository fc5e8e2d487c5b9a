import pytest

from scribe.batch.service.sanitizer import SECTION_HEADING, error_placeholder, finalize_section, sanitize_content

BODY = "Soil organic carbon responds to tillage, residue management and climate in ways that vary by region. " * 3


def test_meta_commentary_is_removed():
    raw = (
        "## Results\n\n"
        f"{BODY}\n\n"
        "[Note: this draft is shorter than requested]\n"
        "IMPORTANT: remember the word target\n\n\n\n"
        "This section represents approximately 60% of the requested length\n"
        "Would you like me to continue with additional sections?"
    )
    cleaned = sanitize_content(raw)

    assert "[Note" not in cleaned
    assert "IMPORTANT" not in cleaned
    assert "requested length" not in cleaned
    assert "Would you like me to continue" not in cleaned
    assert "\n\n\n" not in cleaned
    assert cleaned.startswith("## Results")


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "plain text",
        "Note: a\n\n\n\nb\n \n \nc",
        "# Title\n\nShould I continue?  [Note: x] Disclaimer: y\nbody",
        "   \n\n[This section represents 40%]\n\n\n text   ",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize_content(raw)
    assert sanitize_content(once) == once


def test_short_content_is_rejected():
    text, error = finalize_section("Too short.", 100)
    assert text is None
    assert error == "Generated content too short (10 characters)"


def test_heading_added_only_when_missing():
    text, error = finalize_section(BODY, 100)
    assert error is None
    assert text.startswith(SECTION_HEADING)

    text, _ = finalize_section("# Intro\n\n" + BODY, 100)
    assert text.startswith("# Intro")

    again, _ = finalize_section(text, 100)
    assert again == text


def test_error_placeholder():
    assert error_placeholder(2, "timeout") == "# Section 2: Error\n\n[Error processing section: timeout]"
