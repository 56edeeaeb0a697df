from __future__ import annotations

from enum import Enum


class Intent(str, Enum):
    """What the commenter is trying to do. The taxonomy is closed."""

    BUYING_INTENT = "buying_intent"
    HELP_REQUEST = "help_request"
    PROBLEM = "problem"
    QUESTION = "question"
    COMPLAINT = "complaint"
    FEEDBACK = "feedback"
    NEUTRAL = "neutral"
    SPAM = "spam"

    @classmethod
    def parse(cls, label: str | None) -> Intent:
        """Map a model-provided label onto the taxonomy; unknown labels are neutral."""
        if not label:
            return cls.NEUTRAL
        try:
            return cls(label.strip().lower())
        except ValueError:
            return cls.NEUTRAL

    @property
    def is_lead_signal(self) -> bool:
        return self in _LEAD_SIGNALS

    @property
    def label(self) -> str:
        return _LABELS[self]

    def __str__(self) -> str:
        return self.value


_LEAD_SIGNALS = frozenset({Intent.BUYING_INTENT, Intent.HELP_REQUEST, Intent.PROBLEM})

_LABELS = {
    Intent.BUYING_INTENT: "Buying intent",
    Intent.HELP_REQUEST: "Help request",
    Intent.PROBLEM: "Problem",
    Intent.QUESTION: "Question",
    Intent.COMPLAINT: "Complaint",
    Intent.FEEDBACK: "Feedback",
    Intent.NEUTRAL: "Neutral",
    Intent.SPAM: "Spam",
}

# Display order for dashboards
ALL_INTENTS: tuple[Intent, ...] = (
    Intent.BUYING_INTENT,
    Intent.HELP_REQUEST,
    Intent.PROBLEM,
    Intent.QUESTION,
    Intent.COMPLAINT,
    Intent.FEEDBACK,
    Intent.NEUTRAL,
    Intent.SPAM,
)
