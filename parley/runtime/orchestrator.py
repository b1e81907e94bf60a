from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable

from .cancellation import CancellationScope, GlobalCancellation
from .error_codes import ErrorCode
from .event_bus import EventBus
from .ids import new_id
from .llm.errors import LLMErrorCode, LLMRequestError
from .llm.providers.base import ChatProvider, ProviderRegistry
from .llm.types import ChatRequest, ChatRole, LLMStreamEventKind
from .protocol import EventKind
from .session import Session

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "request interrupted"


class SendStatus(StrEnum):
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class SendOutcome:
    status: SendStatus
    text: str
    attempts: int = 0
    assistant_turn: int | None = None
    error: LLMRequestError | None = None


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 1.0

    def delay_before(self, attempt: int) -> float:
        """Backoff before `attempt` (2-based): base, 2*base, 4*base, ..."""
        return self.base_delay_s * (2 ** (attempt - 2))


@dataclass(slots=True)
class _SendState:
    attempts: int = 0
    user_turn: int | None = None


@dataclass(slots=True)
class Orchestrator:
    """
    Drives one user turn to completion against a provider.

    `send()` appends the user turn once, retries the provider with exponential backoff, and
    appends the assistant turn only on success. The whole retry sequence races the per-request
    and the global cancellation scopes; whichever loses is cancelled and its stream closed.
    After `send()` returns the log holds either both new turns or neither.
    """

    providers: ProviderRegistry
    event_bus: EventBus
    global_cancel: GlobalCancellation
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    _request_scope: CancellationScope | None = None

    @property
    def in_flight(self) -> bool:
        return self._request_scope is not None

    def interrupt(self) -> bool:
        """Fire the per-request scope of the outstanding send, if any."""
        scope = self._request_scope
        if scope is None:
            return False
        scope.cancel()
        return True

    def resolve_provider(self, session: Session) -> tuple[str, ChatProvider]:
        name = session.provider or self.providers.name_for_model(session.model)
        if name is None:
            raise LLMRequestError(
                f"No configured provider serves model {session.model!r}",
                code=LLMErrorCode.NOT_FOUND,
                model=session.model,
                retryable=False,
                details={"operation": "resolve_provider"},
            )
        return name, self.providers.get(name)

    async def send(self, session: Session, text: str) -> SendOutcome:
        request_id = new_id("req")
        try:
            provider_name, provider = self.resolve_provider(session)
        except LLMRequestError as e:
            self._emit(session, EventKind.LLM_REQUEST_FAILED, _error_payload(e, attempts=0), request_id)
            return SendOutcome(status=SendStatus.EXHAUSTED, text=text, error=e)

        state = _SendState()
        scope = CancellationScope()
        global_scope = self.global_cancel.scope
        self._request_scope = scope

        retry_task = asyncio.create_task(
            self._run_attempts(session, text, provider_name, provider, state, request_id)
        )
        request_wait = asyncio.create_task(scope.wait())
        global_wait = asyncio.create_task(global_scope.wait())
        tasks = (retry_task, request_wait, global_wait)
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Wait for losers so an open stream is closed before we touch the log again.
            await asyncio.gather(*tasks, return_exceptions=True)
            self._request_scope = None

        if retry_task in done:
            return retry_task.result()

        if global_wait in done:
            self.global_cancel.consume()
        self._retract_own_turn(session, state)
        self._emit(
            session,
            EventKind.OPERATION_CANCELLED,
            {
                "message": INTERRUPTED_MESSAGE,
                "error_code": ErrorCode.CANCELLED.value,
                "source": "global" if global_wait in done else "request",
                "attempts": state.attempts,
            },
            request_id,
        )
        return SendOutcome(status=SendStatus.CANCELLED, text=text, attempts=state.attempts)

    async def _run_attempts(
        self,
        session: Session,
        text: str,
        provider_name: str,
        provider: ChatProvider,
        state: _SendState,
        request_id: str,
    ) -> SendOutcome:
        policy = self.retry_policy
        last_error: LLMRequestError | None = None
        for attempt in range(1, policy.max_attempts + 1):
            if attempt == 1:
                state.user_turn = session.append(ChatRole.USER, text)
                self._emit(
                    session,
                    EventKind.USER_TURN_APPENDED,
                    {"number": state.user_turn, "text": text},
                    request_id,
                )
            else:
                delay = policy.delay_before(attempt)
                self._emit(
                    session,
                    EventKind.LLM_RETRY_SCHEDULED,
                    {"attempt": attempt, "max_attempts": policy.max_attempts, "delay_s": delay},
                    request_id,
                )
                await self.sleep(delay)

            state.attempts = attempt
            try:
                content = await self._attempt(session, provider_name, provider, attempt, request_id)
            except LLMRequestError as e:
                last_error = e
                logger.info("attempt %d/%d failed: %s (%s)", attempt, policy.max_attempts, e, e.code)
                self._emit(
                    session,
                    EventKind.LLM_ATTEMPT_FAILED,
                    {**_error_payload(e, attempts=attempt), "will_retry": attempt < policy.max_attempts},
                    request_id,
                )
                continue

            number = session.append_with_attribution(content, provider=provider_name, model=session.model)
            self._emit(
                session,
                EventKind.LLM_RESPONSE_COMPLETED,
                {"number": number, "provider": provider_name, "model": session.model, "attempts": attempt},
                request_id,
            )
            return SendOutcome(status=SendStatus.COMPLETED, text=text, attempts=attempt, assistant_turn=number)

        self._retract_own_turn(session, state)
        payload = _error_payload(last_error, attempts=state.attempts)
        self._emit(session, EventKind.LLM_REQUEST_FAILED, payload, request_id)
        return SendOutcome(status=SendStatus.EXHAUSTED, text=text, attempts=state.attempts, error=last_error)

    async def _attempt(
        self,
        session: Session,
        provider_name: str,
        provider: ChatProvider,
        attempt: int,
        request_id: str,
    ) -> str:
        request = ChatRequest(
            model=session.model,
            messages=session.messages(),
            temperature=session.temperature,
            max_tokens=session.max_tokens,
            thinking_enabled=session.thinking_enabled,
            thinking_budget=session.thinking_budget,
        )
        self._emit(
            session,
            EventKind.LLM_REQUEST_STARTED,
            {"attempt": attempt, "provider": provider_name, "model": session.model},
            request_id,
        )
        parts: list[str] = []
        try:
            async with aclosing(provider.stream_chat(request)) as stream:
                async for ev in stream:
                    if ev.kind is LLMStreamEventKind.TEXT_DELTA:
                        parts.append(ev.text)
                        self._emit(session, EventKind.LLM_RESPONSE_DELTA, {"text": ev.text}, request_id)
                    elif ev.kind is LLMStreamEventKind.THINKING_DELTA:
                        self._emit(session, EventKind.LLM_THINKING_DELTA, {"text": ev.text}, request_id)
        except LLMRequestError:
            raise
        except Exception as e:
            logger.warning("provider %s raised an unexpected error", provider_name, exc_info=True)
            raise LLMRequestError(
                str(e) or e.__class__.__name__,
                code=LLMErrorCode.UNKNOWN,
                provider_kind=provider.kind,
                model=session.model,
                retryable=True,
                details={"operation": "stream"},
                cause=e,
            ) from e

        content = "".join(parts)
        if not content.strip():
            raise LLMRequestError(
                "Empty response from provider",
                code=LLMErrorCode.EMPTY_RESPONSE,
                provider_kind=provider.kind,
                model=session.model,
                retryable=True,
                details={"operation": "stream"},
            )
        return content

    def _retract_own_turn(self, session: Session, state: _SendState) -> None:
        # Only the user turn this send appended may be removed.
        if state.user_turn is None or not session.turns or session.turns[-1].number != state.user_turn:
            return
        session.retract_last_if_unpaired()
        state.user_turn = None

    def _emit(self, session: Session, kind: EventKind, payload: dict[str, Any], request_id: str) -> None:
        self.event_bus.emit(kind, payload, session_id=session.session_id, request_id=request_id)


def _error_payload(error: LLMRequestError | None, *, attempts: int) -> dict[str, Any]:
    if error is None:
        return {"error": "request failed", "error_code": ErrorCode.UNKNOWN.value, "attempts": attempts}
    return {
        "error": str(error),
        "error_code": error.code.value,
        "provider_kind": error.provider_kind.value if error.provider_kind is not None else None,
        "model": error.model,
        "status_code": error.status_code,
        "retryable": error.retryable,
        "attempts": attempts,
    }
