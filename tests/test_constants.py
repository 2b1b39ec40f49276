"""Tests for orchestration constants."""

from dataclasses import FrozenInstanceError

import pytest

from coachflow.config.constants import ORCH, OrchestrationConstants


class TestOrchestrationConstants:
    """Tests for OrchestrationConstants class."""

    def test_is_frozen(self):
        """Constants are frozen (immutable)."""
        with pytest.raises(FrozenInstanceError):
            ORCH.ROOM_MAX_PARTICIPANTS = 10

    def test_singleton_instance(self):
        assert isinstance(ORCH, OrchestrationConstants)


class TestLockNamespaces:

    def test_namespaces_are_distinct(self):
        names = {ORCH.LOCK_SESSION_STATE, ORCH.LOCK_VIDEO_ROOM, ORCH.LOCK_JOIN_TOKEN}
        assert len(names) == 3

    def test_lock_ids_fit_31_bits(self):
        assert ORCH.LOCK_ID_MODULUS == 2**31 - 1


class TestRoomContract:

    def test_one_to_one_rooms(self):
        """Rooms admit exactly a coach and a client."""
        assert ORCH.ROOM_MAX_PARTICIPANTS == 2

    def test_room_and_token_lifetimes(self):
        assert ORCH.ROOM_LIFETIME_S == 4 * 3600
        assert ORCH.MEETING_TOKEN_LIFETIME_S == ORCH.ROOM_LIFETIME_S

    def test_join_links_outlive_rooms(self):
        assert ORCH.JOIN_TOKEN_LIFETIME_S > ORCH.ROOM_LIFETIME_S


class TestJoinRateLimit:

    def test_three_attempts_per_minute(self):
        assert ORCH.JOIN_RATE_LIMIT_ATTEMPTS == 3
        assert ORCH.JOIN_RATE_LIMIT_WINDOW_S == 60


class TestRedaction:

    def test_markers_differ(self):
        assert ORCH.REDACTION_MARKER_SILENCE != ORCH.REDACTION_MARKER_REMOVE

    def test_analysis_threshold(self):
        """Transcripts of 50 characters or fewer are not analysed."""
        assert ORCH.MIN_TRANSCRIPT_FOR_ANALYSIS == 50


class TestWebhookHeaders:

    def test_headers_are_lowercase(self):
        for header in (
            ORCH.TRANSCRIPTION_SIGNATURE_HEADER,
            ORCH.DAILY_SIGNATURE_HEADER,
            ORCH.DAILY_TIMESTAMP_HEADER,
        ):
            assert header == header.lower()
