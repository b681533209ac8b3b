"""
Chat-facing operations over the session registry.

ChatService is the transport-agnostic surface a web front end binds to:
create a session, post messages, stream live events, approve or reject the
pending plan, and query status, result and health.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from . import events
from .errors import CrispError, PlanningError, UsageError
from .events import EventSubscription
from .interfaces import IntakeAgent
from .orchestrator import Orchestrator, plan_card
from .plan import DeliveryResult, ExecutionPhase
from .registry import SessionRegistry
from .session import ChatMessage, CrispSession, MessageRole, SessionStatus

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[CrispSession | None], Orchestrator]


class SessionNotFoundError(CrispError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ChatService:
    def __init__(
        self,
        registry: SessionRegistry,
        intake_agent: IntakeAgent,
        orchestrator_factory: OrchestratorFactory,
    ):
        self.registry = registry
        self.intake_agent = intake_agent
        self.orchestrator_factory = orchestrator_factory

    def _session(self, session_id: str) -> CrispSession:
        session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _reply(
        self,
        session: CrispSession,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        message = session.add_message(MessageRole.ASSISTANT, content, metadata)
        session.events.publish(events.agent_message(message.message_id, message.content))
        return message

    # -- sessions and messages --------------------------------------------

    def create_session(self, owner_id: str) -> CrispSession:
        return self.registry.create(owner_id)

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        return self._session(session_id).messages

    def subscribe(self, session_id: str) -> EventSubscription:
        return self._session(session_id).events.subscribe()

    async def stream_sse(self, session_id: str) -> AsyncIterator[str]:
        """Server-Sent Events frames for a session until the subscription closes."""
        async with self.subscribe(session_id) as subscription:
            async for event in subscription:
                yield event.format_sse()

    async def post_message(self, session_id: str, content: str) -> ChatMessage:
        session = self._session(session_id)
        status = session.status
        if status == SessionStatus.EXECUTING:
            raise UsageError(f"Session {session_id} is executing a plan")
        if status.is_terminal:
            raise UsageError(f"Session {session_id} is {status.value}; start a new session")

        logger.info("Processing message in session %s", session_id)
        if status == SessionStatus.AWAITING_APPROVAL:
            # A new message while a plan is pending counts as a change request.
            session.reject_plan()
        session.add_message(MessageRole.USER, content)
        return await self._process(session, content)

    async def _process(self, session: CrispSession, content: str) -> ChatMessage:
        reply = await self.intake_agent.respond(session, content)
        if reply.requirements is None:
            if session.status == SessionStatus.PLANNING:
                session.transition(SessionStatus.INTAKE)
            return self._reply(session, reply.content, {"phase": ExecutionPhase.INTAKE.value})

        if session.status == SessionStatus.INTAKE:
            session.transition(SessionStatus.PLANNING)
        session.project_name = reply.requirements.project_name

        orchestrator = self.orchestrator_factory(session)
        try:
            plan = await orchestrator.create_plan(reply.requirements)
        except PlanningError as exc:
            logger.warning("Planning failed in session %s: %s", session.session_id, exc)
            session.transition(SessionStatus.INTAKE)
            session.events.publish(events.error(str(exc)))
            return self._reply(
                session,
                f"I couldn't build a plan: {exc}",
                {"phase": ExecutionPhase.PLANNING.value},
            )

        session.set_plan(plan)
        text = f"{reply.content}\n\n{plan.summary}" if reply.content else plan.summary
        message = self._reply(
            session, text, {"phase": ExecutionPhase.PLANNING.value, "plan": plan_card(plan)}
        )
        session.events.publish(events.plan_ready(plan.to_dict()))
        return message

    # -- approval ---------------------------------------------------------

    async def handle_approval(
        self, session_id: str, approved: bool, feedback: str | None = None
    ) -> ChatMessage:
        session = self._session(session_id)
        logger.info("Approval for session %s: approved=%s", session_id, approved)

        if not approved:
            session.reject_plan()
            text = (
                f"I'd like to make changes: {feedback}"
                if feedback
                else "I'd like to make changes to the plan."
            )
            session.add_message(MessageRole.USER, text)
            return await self._process(session, text)

        plan = session.approve_plan()
        orchestrator = self.orchestrator_factory(session)
        try:
            result = await orchestrator.execute_plan(plan, session.events)
        except asyncio.CancelledError:
            session.fail()
            session.events.publish(events.error("Execution cancelled"))
            raise
        except Exception as exc:
            logger.exception("Plan execution failed in session %s", session_id)
            result = DeliveryResult.failed(
                plan.requirements.scm_platform.display_name,
                plan.repository.default_branch,
                str(exc),
            )
            session.events.publish(events.error(result.error_message or "Unknown error"))

        # execute_plan has already published delivery_ready or error on the session stream.
        session.complete(result)
        if result.success:
            return self._reply(
                session,
                result.summary_card or "Repository created successfully!",
                {"phase": ExecutionPhase.DELIVERY.value, "delivery_card": result.delivery_card()},
            )

        return self._reply(
            session,
            f"Execution failed: {result.error_message}",
            {"phase": ExecutionPhase.EXECUTION.value},
        )

    # -- queries ----------------------------------------------------------

    def get_status(self, session_id: str) -> dict[str, Any]:
        session = self._session(session_id)
        plan = session.current_plan
        result = session.delivery_result
        return {
            "session_id": session.session_id,
            "status": session.status.value,
            "project_name": session.project_name,
            "last_activity_at": session.last_activity_at.isoformat(),
            "steps": [step.to_dict() for step in plan.steps] if plan else [],
            "error_message": result.error_message if result else None,
        }

    def get_result(self, session_id: str) -> DeliveryResult:
        session = self._session(session_id)
        result = session.delivery_result
        if session.status != SessionStatus.COMPLETED or result is None:
            raise UsageError(f"Session {session_id} has not completed")
        return result

    async def health(self) -> dict[str, Any]:
        problems = await self.orchestrator_factory(None).validate_configuration()
        return {
            "status": "degraded" if problems else "healthy",
            "problems": problems,
            "sessions": len(self.registry),
        }
