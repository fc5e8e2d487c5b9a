import pytest

from scribe.llm.entity.completion import LengthHint, Message
from scribe.llm.service.length_intent import (
    NUMERIC_RULES,
    LengthIntentDetector,
    detect_length_intent,
    resolve_max_output_tokens,
)


@pytest.fixture
def detector():
    return LengthIntentDetector()


def test_explicit_word_range(detector):
    hint = detector.detect("Write a 5000-7000 word essay")
    assert hint == LengthHint(min_words=5000, max_words=7000)


def test_word_qualifier(detector):
    hint = detector.detect("at least 3000 words")
    assert (hint.min_words, hint.max_words) == (3000, 4050)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("give me 5k words on rivers", (5000, 6500)),
        ("a 2000 word summary", (2000, 2500)),
        ("write 10-12 pages", (2500, 3600)),
        ("minimum 8 pages please", (2000, 2600)),
        ("about 6 pages", (1500, 1875)),
        ("a 20 minute read", (4000, 5200)),
    ],
)
def test_numeric_rules(detector, text, expected):
    hint = detector.detect(text)
    assert (hint.min_words, hint.max_words) == expected


def test_range_clamps_and_keeps_gap(detector):
    hint = detector.detect("write 500-600 words")
    assert hint.min_words == 800
    assert hint.max_words == 1300

    hint = detector.detect("write 25000-40000 words")
    assert hint.min_words == 20000
    assert hint.max_words == 30000


def test_bare_words_capped(detector):
    hint = detector.detect("just 20000 words")
    assert hint.min_words == 12000


def test_explicit_count_beats_keywords(detector):
    hint = detector.detect("a comprehensive dissertation chapter, 2000 words")
    assert hint.min_words == 2000


def test_range_beats_qualifier(detector):
    # both rules match; the range rule is listed first
    hint = detector.detect("at least 3000 words, ideally 4000-6000 words")
    assert (hint.min_words, hint.max_words) == (4000, 6000)


def test_long_form_keyword(detector):
    hint = detector.detect("Write a literature review on soil carbon")
    assert (hint.min_words, hint.max_words) == (7000, 15000)


def test_academic_keyword(detector):
    hint = detector.detect("Explain how rainfall forms")
    assert (hint.min_words, hint.max_words) == (1500, 4000)


def test_no_signal(detector):
    assert detector.detect("hi there") is None


def test_history_is_searched(detector):
    history = [
        Message(role="user", content="I need 4000-5000 words on trade policy"),
        Message(role="assistant", content="Sure."),
    ]
    hint = detector.detect("go ahead", history)
    assert (hint.min_words, hint.max_words) == (4000, 5000)


def test_case_insensitive(detector):
    assert detector.detect("AT LEAST 3000 WORDS").min_words == 3000


@pytest.mark.parametrize("low,high", [(900, 1000), (1500, 3000), (4000, 4001), (9000, 11000)])
def test_monotonic_in_requested_words(detector, low, high):
    a = detector.detect(f"at least {low} words")
    b = detector.detect(f"at least {high} words")
    assert a.min_words < b.min_words


def test_rule_order_is_stable():
    assert [name for name, _, _ in NUMERIC_RULES] == [
        "word_range",
        "word_qualifier",
        "k_words",
        "bare_words",
        "page_range",
        "page_qualifier",
        "bare_pages",
        "reading_time",
    ]


def test_module_level_helper():
    assert detect_length_intent("Write a 5000-7000 word essay").min_words == 5000


def test_resolve_max_output_tokens():
    hint = LengthHint(min_words=5000, max_words=7000)
    assert resolve_max_output_tokens(length_hint=hint) == 8192
    assert resolve_max_output_tokens(length_hint=LengthHint(min_words=7000, max_words=15000)) == 11200
    assert resolve_max_output_tokens(target_word_count=20000) == 20000
    assert resolve_max_output_tokens(max_output_tokens=100) == 2048
    assert resolve_max_output_tokens(max_output_tokens=50000) == 20000
    assert resolve_max_output_tokens(allow_long_outputs=True) == 12000
    assert resolve_max_output_tokens() == 8192
