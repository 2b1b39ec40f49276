"""Insight generation - post-session analysis behind an opaque interface.

The pipeline hands a transcript plus notes to an ``InsightGenerator`` and
stores whatever summary, topics and emotional journey come back. Model
prompting lives behind the interface.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from coachflow.recording.redaction import CUE_TIMING


@dataclass
class SessionInsights:
    summary: str | None = None
    key_topics: list[str] = field(default_factory=list)
    emotional_journey: list[Any] = field(default_factory=list)
    sentiment: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


class InsightGenerator(ABC):
    """Base class for transcript analysers."""

    @abstractmethod
    async def analyze(
        self,
        transcript: str,
        context: dict[str, Any],
    ) -> SessionInsights:
        """Analyse a finished session.

        Args:
            transcript: Redacted transcript text
            context: Notes, goals and duration for the session
        """
        ...


_WORD = re.compile(r"[a-zA-Z][a-zA-Z'-]{3,}")

_STOPWORDS = frozenset({
    "about", "after", "again", "also", "because", "been", "before", "being",
    "could", "does", "doing", "from", "have", "having", "into", "just",
    "like", "more", "much", "really", "should", "some", "that", "their",
    "them", "then", "there", "these", "they", "thing", "think", "this",
    "those", "want", "were", "what", "when", "where", "which", "while",
    "will", "with", "would", "your", "yeah", "okay", "know", "going",
    "redacted", "transcription", "paused", "content", "removed", "privacy",
})


class ExtractiveInsightGenerator(InsightGenerator):
    """Offline analyser: frequent terms as topics, opening lines as summary.

    Used when no model-backed generator is configured.
    """

    def __init__(self, max_topics: int = 5, summary_sentences: int = 2) -> None:
        self._max_topics = max_topics
        self._summary_sentences = summary_sentences

    async def analyze(self, transcript: str, context: dict[str, Any]) -> SessionInsights:
        text_lines = [
            line.strip()
            for line in transcript.splitlines()
            if line.strip() and not CUE_TIMING.search(line) and not line.startswith(("WEBVTT", "["))
        ]
        body = " ".join(text_lines)

        counts = Counter(
            word.lower() for word in _WORD.findall(body) if word.lower() not in _STOPWORDS
        )
        topics = [word for word, _ in counts.most_common(self._max_topics)]

        sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", body) if s.strip()]
        summary = " ".join(sentences[: self._summary_sentences]) or None

        return SessionInsights(
            summary=summary,
            key_topics=topics,
            raw={"generator": "extractive", "word_count": sum(counts.values())},
        )
