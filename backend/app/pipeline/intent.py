"""Reply intent classification for pending confirmations, plus mood cues.

The confirm/deny classifier sits behind the ``IntentClassifier`` protocol
so the pending-confirmation flow can take any implementation; the
default is regex based and looks only at how the reply starts.
"""

import re
from enum import Enum
from typing import Protocol


class Intent(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    AMBIGUOUS = "ambiguous"


class IntentClassifier(Protocol):
    def classify(self, text: str) -> Intent: ...


# Leading-word match on the lowercased reply; affirmative is tested first.
_AFFIRMATIVE_RE = re.compile(
    r"^(yes|confirm(ed)?|correct|that'?s right|yep|ja|ya|sure|ok|okay|proceed)\b"
)
_NEGATIVE_RE = re.compile(
    r"^(no|not|wrong|incorrect|skip|ignore|that'?s not right|nope)\b"
)


class RegexIntentClassifier:
    """Default yes/no classifier."""

    def __init__(self, affirmative: re.Pattern = _AFFIRMATIVE_RE,
                 negative: re.Pattern = _NEGATIVE_RE):
        self.affirmative = affirmative
        self.negative = negative

    def classify(self, text: str) -> Intent:
        lowered = (text or "").strip().lower()
        if self.affirmative.match(lowered):
            return Intent.AFFIRMATIVE
        if self.negative.match(lowered):
            return Intent.NEGATIVE
        return Intent.AMBIGUOUS


DEFAULT_CLASSIFIER = RegexIntentClassifier()


def classify_intent(text: str) -> Intent:
    return DEFAULT_CLASSIFIER.classify(text)


# ── Frustration / confusion cues ──

_FRUSTRATION_PATTERNS = [
    re.compile(r"\b(fuck|shit|damn|hell|crap|bloody|bullsh)\b", re.IGNORECASE),
    re.compile(r"don'?t (understand|get it|know what)", re.IGNORECASE),
    re.compile(r"this (is|isn'?t) (useless|stupid|confusing|ridiculous|impossible)", re.IGNORECASE),
    re.compile(r"not (working|helping|making sense)", re.IGNORECASE),
    re.compile(r"what (the hell|is this|do you want)", re.IGNORECASE),
    re.compile(r"give up|forget it|never mind|forget about it", re.IGNORECASE),
]

_CONFUSION_PATTERNS = [
    re.compile(r"i (still )?(don'?t|cannot|can'?t) (understand|get|follow)", re.IGNORECASE),
    re.compile(r"confused|confusing|unclear", re.IGNORECASE),
    re.compile(r"please (help|explain|clarify)", re.IGNORECASE),
]


def detect_frustration(message: str) -> bool:
    return any(p.search(message or "") for p in _FRUSTRATION_PATTERNS)


def detect_confusion(message: str) -> bool:
    return any(p.search(message or "") for p in _CONFUSION_PATTERNS)
