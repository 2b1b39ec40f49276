"""Transcript redaction for paused transcription segments.

Works on WebVTT-style transcripts: a cue starts with a timing line
``HH:MM:SS.mmm --> HH:MM:SS.mmm`` followed by text lines up to the next
blank line. A cue overlapping any paused segment keeps its timing line and
has its text replaced by a single redaction marker.
"""

from __future__ import annotations

import re
from typing import Iterable

from coachflow.config.constants import ORCH
from coachflow.orchestrator.models import PausedSegment, PrivacySettings

CUE_TIMING = re.compile(r"(\d{2}:\d{2}:\d{2}\.\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2}\.\d{3})")


def parse_timestamp(value: str) -> float:
    """``HH:MM:SS.mmm`` -> seconds."""
    clock, millis = value.split(".")
    hours, minutes, seconds = (int(part) for part in clock.split(":"))
    return hours * 3600 + minutes * 60 + seconds + int(millis) / 1000


def format_timestamp(seconds: float) -> str:
    """Seconds -> ``HH:MM:SS.mmm``."""
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def format_cue(start: float, end: float, text: str) -> str:
    return f"{format_timestamp(start)} --> {format_timestamp(end)}\n{text.strip()}\n"


def redaction_marker(method: str) -> str:
    if method == "silence":
        return ORCH.REDACTION_MARKER_SILENCE
    return ORCH.REDACTION_MARKER_REMOVE


def overlaps_any(start: float, end: float, segments: Iterable[PausedSegment]) -> bool:
    return any(segment.overlaps(start, end) for segment in segments)


def redact_transcript(
    transcript: str,
    segments: list[PausedSegment],
    method: str = "silence",
) -> str:
    """Replace the text of cues overlapping ``segments`` with a marker.

    Lines outside redacted cues pass through unchanged.
    """
    if not segments:
        return transcript

    marker = redaction_marker(method)
    out: list[str] = []
    redacting = False

    for line in transcript.split("\n"):
        timing = CUE_TIMING.search(line)
        if timing:
            start = parse_timestamp(timing.group(1))
            end = parse_timestamp(timing.group(2))
            out.append(line)
            redacting = overlaps_any(start, end, segments)
            if redacting:
                out.append(marker)
            continue

        if redacting:
            if line.strip():
                continue
            redacting = False
        out.append(line)

    return "\n".join(out)


def apply_privacy(
    transcript: str,
    segments: list[PausedSegment],
    privacy: PrivacySettings,
) -> str:
    """Redact according to the recording's privacy settings."""
    if not segments or not privacy.auto_redact_pauses:
        return transcript
    return redact_transcript(transcript, segments, privacy.redaction_method)
