"""Session Booking Bridge - promotes ephemeral intents into sessions.

Intents handled:
- Completed assessments booked with a coach
- Anonymous guest sessions converted after sign-up
- Questionnaire responses linked to an existing session
- Instant-connect requests awaiting a coach response

Every path that creates a session consults the capacity gate first and
reports a rejection as ``reason="capacity"``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PayloadError
from pydantic.alias_generators import to_camel

from coachflow.access.tokens import TokenIssuer
from coachflow.config.constants import ORCH
from coachflow.exceptions import (
    CapacityExceededError,
    CoachFlowError,
    RecordNotFoundError,
    SessionNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from coachflow.observability.logging import SideEffectLogger, get_logger
from coachflow.orchestrator.capacity import CapacityGate
from coachflow.orchestrator.models import (
    Coach,
    Session,
    SessionState,
    UserResponse,
    new_id,
    utcnow,
)
from coachflow.orchestrator.repository import SessionRepository
from coachflow.orchestrator.state_machine import SessionStateMachine
from coachflow.outbox import (
    EMAIL_COACH_NOTIFICATION,
    EMAIL_SESSION_CONFIRMATION,
    EMAIL_SESSION_DECLINED,
    OutboxQueue,
)
from coachflow.video.provisioner import VideoRoomProvisioner

logger = get_logger(__name__)


# =============================================================================
# Action payloads
# =============================================================================


class _ActionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class BookFromAssessment(_ActionPayload):
    user_response_id: str
    coach_id: str
    scheduled_time: datetime
    session_duration: int | None = Field(default=None, ge=5, le=480)


class ConvertGuestSession(_ActionPayload):
    guest_session_id: str
    user_id: str
    coach_id: str | None = None
    scheduled_time: datetime | None = None
    session_duration: int | None = Field(default=None, ge=5, le=480)


class LinkResponseToSession(_ActionPayload):
    session_id: str
    response_id: str


class MigrateGuestSession(_ActionPayload):
    guest_session_id: str
    user_id: str


@dataclass
class BookingResult:
    success: bool
    session_id: str | None = None
    reason: str | None = None
    message: str = ""
    user_response_id: str | None = None
    video_join_url: str | None = None
    price_amount: float | None = None
    coin_cost: int | None = None

    def to_dict(self) -> dict[str, Any]:
        body = {
            "success": self.success,
            "sessionId": self.session_id,
            "reason": self.reason,
            "message": self.message,
            "userResponseId": self.user_response_id,
            "videoJoinUrl": self.video_join_url,
            "priceAmount": self.price_amount,
            "coinCost": self.coin_cost,
        }
        return {k: v for k, v in body.items() if v is not None}


def quote(coach: Coach, duration_minutes: int) -> tuple[float, int]:
    """Price and coin cost for ``duration_minutes`` with ``coach``."""
    price = coach.hourly_rate_amount * duration_minutes / 60
    coins = round(coach.hourly_coin_cost * duration_minutes / 60)
    return price, coins


class BookingBridge:
    """Creates durable sessions from guest and pre-auth interactions.

    Usage:
        bridge = BookingBridge(repo, capacity, fsm, provisioner, issuer, outbox, website_url)
        result = await bridge.book_from_request("convert_guest_session", payload)
    """

    def __init__(
        self,
        repository: SessionRepository,
        capacity: CapacityGate,
        state_machine: SessionStateMachine,
        provisioner: VideoRoomProvisioner,
        issuer: TokenIssuer,
        outbox: OutboxQueue,
        website_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._capacity = capacity
        self._fsm = state_machine
        self._provisioner = provisioner
        self._issuer = issuer
        self._outbox = outbox
        self._website_url = website_url.rstrip("/")
        self._clock = clock
        self._side_effects = SideEffectLogger("booking")

    async def book_from_request(self, action: str, payload: dict[str, Any]) -> BookingResult:
        """Dispatch a bridge action.

        Raises:
            ValidationError: Unknown action or malformed payload
            RecordNotFoundError: Referenced coach, guest session or response missing
        """
        handlers = {
            "book_from_assessment": (BookFromAssessment, self.book_from_assessment),
            "convert_guest_session": (ConvertGuestSession, self.convert_guest_session),
            "link_response_to_session": (LinkResponseToSession, self.link_response_to_session),
            "migrate_guest_session": (MigrateGuestSession, self.migrate_guest_session),
        }
        if action not in handlers:
            raise ValidationError(f"Unknown action: {action}", field="action")

        model, handler = handlers[action]
        try:
            request = model.model_validate(payload)
        except PayloadError as e:
            missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ValidationError(f"Invalid {action} payload: {missing}", field=missing or None)

        logger.info("booking_action", action=action)
        try:
            return await handler(request)
        except CapacityExceededError as e:
            return BookingResult(success=False, reason=e.reason, message=e.message)

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def book_from_assessment(self, request: BookFromAssessment) -> BookingResult:
        await self._capacity.ensure_capacity("booking")

        response = await self._repo.get_user_response(request.user_response_id)
        if response is None:
            raise RecordNotFoundError("user-response", request.user_response_id)
        coach = await self._require_coach(request.coach_id)

        session = await self._create_scheduled_session(
            coach,
            client_id=response.user_id,
            scheduled_time=request.scheduled_time,
            duration=request.session_duration,
            notes=f"Booked from assessment {response.id}",
            participant_status={"booked_from_assessment": True},
        )
        await self._repo.link_user_response(response.id, session.id)
        join_url = await self._provision_best_effort(session.id)

        return BookingResult(
            success=True,
            session_id=session.id,
            user_response_id=response.id,
            video_join_url=join_url,
            price_amount=session.price_amount,
            coin_cost=session.coin_cost,
            message="Session successfully booked from assessment",
        )

    async def convert_guest_session(self, request: ConvertGuestSession) -> BookingResult:
        existing = await self._repo.find_user_response(request.guest_session_id, request.user_id)
        if existing is not None and existing.session_id:
            session = await self._repo.get_session(existing.session_id)
            if session is not None:
                return BookingResult(
                    success=True,
                    session_id=session.id,
                    user_response_id=existing.id,
                    video_join_url=session.video_join_url,
                    price_amount=session.price_amount,
                    coin_cost=session.coin_cost,
                    message="Guest session already converted",
                )

        await self._capacity.ensure_capacity("booking")

        guest = await self._repo.get_guest_session(request.guest_session_id)
        if guest is None or (guest.expires_at is not None and guest.expires_at < self._clock()):
            raise RecordNotFoundError("guest-session", request.guest_session_id)

        coach_id = request.coach_id or next(iter(guest.recommended_coaches), None)
        if not coach_id:
            raise ValidationError(
                "No coach specified and no recommended coaches available", field="coachId"
            )
        coach = await self._require_coach(coach_id)

        response = existing or await self._migrate(guest.session_id, request.user_id)

        session = await self._create_scheduled_session(
            coach,
            client_id=request.user_id,
            scheduled_time=request.scheduled_time,
            duration=request.session_duration,
            notes=f"Converted from guest session {guest.session_id}",
            participant_status={"guest_session_converted": True},
        )
        await self._repo.link_user_response(response.id, session.id)
        join_url = await self._provision_best_effort(session.id)

        return BookingResult(
            success=True,
            session_id=session.id,
            user_response_id=response.id,
            video_join_url=join_url,
            price_amount=session.price_amount,
            coin_cost=session.coin_cost,
            message="Guest session successfully converted to full session",
        )

    async def link_response_to_session(self, request: LinkResponseToSession) -> BookingResult:
        if await self._repo.get_session(request.session_id) is None:
            raise SessionNotFoundError(request.session_id)
        if not await self._repo.link_user_response(request.response_id, request.session_id):
            raise RecordNotFoundError("user-response", request.response_id)
        return BookingResult(
            success=True,
            session_id=request.session_id,
            user_response_id=request.response_id,
            message="Response successfully linked to session",
        )

    async def migrate_guest_session(self, request: MigrateGuestSession) -> BookingResult:
        """Copy guest assessment data to the user; repeat calls are no-ops."""
        existing = await self._repo.find_user_response(request.guest_session_id, request.user_id)
        if existing is not None:
            return BookingResult(
                success=True, user_response_id=existing.id, message="Already migrated"
            )
        if await self._repo.get_guest_session(request.guest_session_id) is None:
            raise RecordNotFoundError("guest-session", request.guest_session_id)

        response = await self._migrate(request.guest_session_id, request.user_id)
        return BookingResult(
            success=True,
            user_response_id=response.id,
            message="Guest session migrated successfully",
        )

    # -------------------------------------------------------------------------
    # Instant connect
    # -------------------------------------------------------------------------

    async def create_instant_session(
        self,
        coach_id: str,
        client_id: str,
        user_goal: str | None = None,
        client_bio: str | None = None,
    ) -> Session:
        """Create a session awaiting the coach's accept/decline."""
        coach = await self._require_coach(coach_id)
        await self._capacity.ensure_capacity("instant")

        session = Session(
            id=new_id(),
            coach_id=coach.id,
            client_id=client_id,
            scheduled_time=self._clock() + timedelta(seconds=ORCH.INSTANT_LEAD_TIME_S),
            duration_minutes=ORCH.INSTANT_DURATION_MIN,
            price_amount=ORCH.INSTANT_PRICE_AMOUNT,
            price_currency=ORCH.INSTANT_PRICE_CURRENCY,
            coin_cost=ORCH.INSTANT_COIN_COST,
            state=SessionState.PENDING_COACH_RESPONSE,
            notes=json.dumps({"userGoal": user_goal, "clientBio": client_bio, "type": "instant"}),
        )
        session = await self._repo.insert_session(session)
        logger.info("instant_session_created", session_id=session.id, coach_id=coach.id)

        await self._queue(
            EMAIL_COACH_NOTIFICATION,
            f"coach-notify:{session.id}",
            {
                "sessionId": session.id,
                "coachId": coach.id,
                "clientId": client_id,
                "to": coach.notification_email,
                "userGoal": user_goal,
                "clientBio": client_bio,
                "respondUrl": f"{self._website_url}/coach-response/{session.id}",
                "type": "instant",
            },
            session.id,
        )
        return session

    async def respond_to_request(self, session_id: str, coach_user_id: str, action: str) -> Session:
        """Apply a coach's accept/decline to a pending request.

        Raises:
            ValidationError: Unknown action
            UnauthorizedError: Caller is not the session's coach
        """
        if action not in ("accept", "decline"):
            raise ValidationError(f"Unknown action: {action}", field="action")

        session = await self._repo.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        coach = await self._repo.get_coach(session.coach_id)
        if coach is None or coach.user_id != coach_user_id:
            raise UnauthorizedError("Only the session's coach can respond to this request")

        holder = f"coach:{coach_user_id}"
        if action == "decline":
            updated = await self._fsm.apply_transition(
                session_id, SessionState.DECLINED, lock_holder_id=holder, reason="coach_declined"
            )
            await self._queue(
                EMAIL_SESSION_DECLINED,
                f"declined:{session_id}",
                {"sessionId": session_id, "clientId": session.client_id, "coachName": coach.name},
                session_id,
            )
            return updated

        updated = await self._fsm.apply_transition(
            session_id, SessionState.SCHEDULED, lock_holder_id=holder, reason="coach_accepted"
        )
        token, expires_at = await self._issuer.create_join_token(session_id)
        join_link = f"{self._website_url}/join-session?token={token}"
        for recipient, user_id in (("client", session.client_id), ("coach", coach.user_id)):
            await self._queue(
                EMAIL_SESSION_CONFIRMATION,
                f"confirm:{session_id}:{recipient}",
                {
                    "sessionId": session_id,
                    "recipient": recipient,
                    "userId": user_id,
                    "coachName": coach.name,
                    "scheduledTime": session.scheduled_time.isoformat(),
                    "joinLink": join_link,
                    "expiresAt": expires_at.isoformat(),
                },
                session_id,
            )
        return await self._repo.get_session(session_id) or updated

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_coach(self, coach_id: str) -> Coach:
        coach = await self._repo.get_coach(coach_id)
        if coach is None:
            raise RecordNotFoundError("coach", coach_id)
        return coach

    async def _create_scheduled_session(
        self,
        coach: Coach,
        client_id: str,
        scheduled_time: datetime | None,
        duration: int | None,
        notes: str,
        participant_status: dict[str, Any],
    ) -> Session:
        minutes = duration or coach.min_session_duration or ORCH.DEFAULT_SESSION_DURATION_MIN
        price, coins = quote(coach, minutes)
        session = Session(
            id=new_id(),
            coach_id=coach.id,
            client_id=client_id,
            scheduled_time=scheduled_time
            or self._clock() + timedelta(seconds=ORCH.DEFAULT_BOOKING_LEAD_TIME_S),
            duration_minutes=minutes,
            price_amount=price,
            coin_cost=coins,
            state=SessionState.SCHEDULED,
            notes=notes,
            participant_status={"client_joined": False, "coach_joined": False, **participant_status},
        )
        session = await self._repo.insert_session(session)
        logger.info(
            "session_booked",
            session_id=session.id,
            coach_id=coach.id,
            duration_minutes=minutes,
            price_amount=price,
            coin_cost=coins,
        )
        return session

    async def _migrate(self, guest_session_id: str, user_id: str) -> UserResponse:
        guest = await self._repo.get_guest_session(guest_session_id)
        if guest is None:
            raise RecordNotFoundError("guest-session", guest_session_id)
        response = UserResponse(
            id=new_id(),
            user_id=user_id,
            selected_goal=guest.selected_goal,
            responses=dict(guest.responses),
            ai_analysis=dict(guest.ai_analysis),
            recommended_coaches=list(guest.recommended_coaches),
            guest_session_id=guest_session_id,
        )
        try:
            return await self._repo.insert_user_response(response)
        except ValueError:
            # Concurrent migration of the same pair
            existing = await self._repo.find_user_response(guest_session_id, user_id)
            if existing is None:
                raise
            return existing

    async def _provision_best_effort(self, session_id: str) -> str | None:
        try:
            room = await self._provisioner.ensure_room(session_id, check_capacity=False)
        except CoachFlowError as e:
            self._side_effects.failed("provision_room", e.message, session_id=session_id, reason=e.reason)
            return None
        return room.room_url

    async def _queue(self, kind: str, dedup_key: str, payload: dict[str, Any], session_id: str) -> None:
        try:
            await self._outbox.enqueue(kind, dedup_key, payload)
        except Exception as exc:
            self._side_effects.failed(f"enqueue:{kind}", str(exc), session_id=session_id)
