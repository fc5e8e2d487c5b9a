# scribe/llm/service/length_intent.py
import math
import re
from typing import Callable, List, Optional, Sequence, Tuple

from scribe.core.logger import get_logger
from scribe.llm.entity.completion import LengthHint, Message
from scribe.llm.service import length_vocabulary as vocab

logger = get_logger("LengthIntentDetector")

_DASH = r"[-–—]"
_QUALIFIER = r"(?:at\s+least|minimum|min\.?|no\s+less\s+than|>=)"
_PAGE = r"(?:page|pages|pg|pgs|pp)"

WORDS_PER_PAGE = 250
WORDS_PER_PAGE_UPPER = 300
WORDS_PER_MINUTE = 200


def _round(value: float) -> int:
    """Round half up, the way browsers and the UI round."""
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def _word_range(m: re.Match) -> Tuple[int, int]:
    a, b = int(m.group(1)), int(m.group(2))
    n_min = _clamp(min(a, b), 800, 20000)
    n_max = min(max(max(a, b), n_min + 500), 30000)
    return n_min, n_max


def _word_qualifier(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)), 800, 20000)
    return n, _round(n * 1.35)


def _k_words(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)) * 1000, 800, 30000)
    return n, _round(n * 1.3)


def _bare_words(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)), 800, 12000)
    return n, _round(n * 1.25)


def _page_range(m: re.Match) -> Tuple[int, int]:
    a, b = int(m.group(1)), int(m.group(2))
    min_pages = _clamp(min(a, b), 3, 100)
    max_pages = min(max(max(a, b), min_pages + 1), 150)
    return min_pages * WORDS_PER_PAGE, max_pages * WORDS_PER_PAGE_UPPER


def _page_qualifier(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)), 3, 100) * WORDS_PER_PAGE
    return n, _round(n * 1.3)


def _bare_pages(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)), 3, 40) * WORDS_PER_PAGE
    return n, _round(n * 1.25)


def _reading_time(m: re.Match) -> Tuple[int, int]:
    n = _clamp(int(m.group(1)), 10, 120) * WORDS_PER_MINUTE
    return n, _round(n * 1.3)


# Evaluated top to bottom; the first match wins.
NUMERIC_RULES: List[Tuple[str, "re.Pattern[str]", Callable[[re.Match], Tuple[int, int]]]] = [
    ("word_range", re.compile(rf"(\d{{3,5}})\s*{_DASH}\s*(\d{{3,5}})\s*(?:word|words)\b"), _word_range),
    ("word_qualifier", re.compile(rf"{_QUALIFIER}\s*(\d{{3,5}})\s*(?:word|words)\b"), _word_qualifier),
    ("k_words", re.compile(r"(\d{1,3})\s*k\s*(?:word|words)?\b"), _k_words),
    ("bare_words", re.compile(r"(\d{3,5})\s*(?:word|words)\b"), _bare_words),
    ("page_range", re.compile(rf"(\d{{1,3}})\s*{_DASH}\s*(\d{{1,3}})\s*{_PAGE}\b"), _page_range),
    ("page_qualifier", re.compile(rf"{_QUALIFIER}\s*(\d{{1,3}})\s*{_PAGE}\b"), _page_qualifier),
    ("bare_pages", re.compile(rf"(\d{{1,3}})\s*{_PAGE}\b"), _bare_pages),
    ("reading_time", re.compile(r"(\d{1,3})\s*(?:minute|minutes)\s*(?:read)?\b"), _reading_time),
]


class LengthIntentDetector:
    """
    Derives a target word range from the request text.

    Explicit counts (words, pages, reading time) win over keyword
    heuristics; the rule order in NUMERIC_RULES is part of the contract.
    """

    def __init__(
        self,
        long_form_phrases: Sequence[str] = vocab.LONG_FORM_PHRASES,
        academic_phrases: Sequence[str] = vocab.ACADEMIC_PHRASES,
    ):
        self.long_form_phrases = tuple(p.lower() for p in long_form_phrases)
        self.academic_phrases = tuple(p.lower() for p in academic_phrases)

    def detect(self, current_message: str, history: Optional[Sequence[Message]] = None) -> Optional[LengthHint]:
        text = self._haystack(current_message, history or [])

        for name, pattern, convert in NUMERIC_RULES:
            match = pattern.search(text)
            if match:
                min_words, max_words = convert(match)
                logger.debug(f"length rule={name} match={match.group(0)!r} -> {min_words}-{max_words}")
                return LengthHint(min_words=min_words, max_words=max_words)

        if any(phrase in text for phrase in self.long_form_phrases):
            low, high = vocab.LONG_FORM_RANGE
            logger.debug(f"length rule=long_form_keyword vocab={vocab.VOCABULARY_VERSION}")
            return LengthHint(min_words=low, max_words=high)

        if any(phrase in text for phrase in self.academic_phrases):
            low, high = vocab.ACADEMIC_RANGE
            logger.debug(f"length rule=academic_keyword vocab={vocab.VOCABULARY_VERSION}")
            return LengthHint(min_words=low, max_words=high)

        return None

    @staticmethod
    def _haystack(current_message: str, history: Sequence[Message]) -> str:
        previous = "\n\n".join(m.content for m in history)
        return f"{previous}\n\n{current_message}".lower()


_default_detector = LengthIntentDetector()


def detect_length_intent(current_message: str, history: Optional[Sequence[Message]] = None) -> Optional[LengthHint]:
    return _default_detector.detect(current_message, history)


def resolve_max_output_tokens(
    max_output_tokens: Optional[int] = None,
    length_hint: Optional[LengthHint] = None,
    target_word_count: Optional[int] = None,
    allow_long_outputs: bool = False,
) -> int:
    """Pick the completion token ceiling for a request."""
    inferred = 0
    if length_hint is not None:
        inferred = min(20000, max(4096, _round(length_hint.min_words * 1.6)))
    elif target_word_count and target_word_count > 0:
        inferred = min(20000, max(4096, _round(target_word_count * 1.6)))

    if max_output_tokens and max_output_tokens > 0:
        return min(20000, max(2048, max_output_tokens))
    if allow_long_outputs:
        return max(12000, inferred or 12000)
    return max(8192, inferred or 8192)
