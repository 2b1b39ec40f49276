"""Recording, transcript ingestion and privacy redaction."""

from coachflow.recording.insights import ExtractiveInsightGenerator, InsightGenerator, SessionInsights
from coachflow.recording.pipeline import FinalizeResult, RecordingPipeline
from coachflow.recording.redaction import parse_timestamp, redact_transcript

__all__ = [
    "ExtractiveInsightGenerator",
    "FinalizeResult",
    "InsightGenerator",
    "RecordingPipeline",
    "SessionInsights",
    "parse_timestamp",
    "redact_transcript",
]
