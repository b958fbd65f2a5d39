"""Conversation state for one event-design session.

``ConversationSession`` owns the event table and the chat log. User turns are
appended optimistically; model results are applied only if the request that
produced them is still the active one. ``stop()`` and ``reset()`` cancel the
active request's token, release the awaiting caller at once, and leave the
network call to finish in the background where its result is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set, TypeVar

from ..core.state_machine import is_busy, is_valid_transition
from ..domain.chat_models import ChatMessage, Role, SessionState
from ..domain.event_models import Event
from .generation import GenerationClient, GenerationFailed, strip_data_uri
from .refinement import RefinementClient, RefinementFailed
from .transport import InputError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCREENSHOT_PLACEHOLDER = "Generate events from this screenshot."
STOPPED_MESSAGE = "Stopped by user."
REFINEMENT_ERROR_MESSAGE = "Sorry, I encountered an error updating the events."


def generation_summary(count: int) -> str:
    return (
        f"I've analyzed your input and generated {count} events. "
        "Review the table below. You can chat with me to refine them."
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class CancelToken:
    """Marks one request; once cancelled, its eventual result is discarded."""

    kind: SessionState
    cancelled: bool = False
    _event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def cancel(self) -> None:
        self.cancelled = True
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    pass


class ConversationSession:
    def __init__(
        self,
        generator: Optional[GenerationClient] = None,
        refiner: Optional[RefinementClient] = None,
        *,
        clock: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._generator = generator or GenerationClient()
        self._refiner = refiner or RefinementClient()
        self._clock = clock
        self._id_factory = id_factory

        self._events: List[Event] = []
        self._messages: List[ChatMessage] = []
        self._state = SessionState.IDLE
        self._active: Optional[CancelToken] = None
        self._abandoned: Set[asyncio.Future] = set()

        self.draft_description: str = ""
        self.draft_image: Optional[str] = None
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def busy(self) -> bool:
        return is_busy(self._state)

    @property
    def has_generated(self) -> bool:
        return bool(self._messages or self._events)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def generate(self, description: str = "", image: Optional[str] = None) -> bool:
        """Generate a fresh event table. Returns False when the input was refused."""

        description = description or ""
        if image and not strip_data_uri(image):
            image = None
        if not description.strip() and not image:
            logger.debug("Ignoring generate with no description and no image")
            return False
        if self.busy:
            logger.debug("Ignoring generate while %s", self._state.value)
            return False

        self.draft_description = description
        self.draft_image = image
        token = self._begin(SessionState.GENERATING)
        self._append("user", description.strip() or SCREENSHOT_PLACEHOLDER, image_data=image)
        await self._execute(
            token,
            lambda: self._generator.generate(description, image),
            on_success=lambda events: self._commit(events, generation_summary(len(events))),
            on_failure=lambda exc: self._fail(
                exc, exc.message if isinstance(exc, GenerationFailed) else GenerationFailed.fallback_message
            ),
        )
        return True

    async def send_message(self, text: str) -> bool:
        """Ask the model to rewrite the event table. Returns False when refused."""

        if not (text or "").strip():
            return False
        if self.busy:
            logger.debug("Ignoring message while %s", self._state.value)
            return False

        snapshot = list(self._events)
        token = self._begin(SessionState.REFINING)
        self._append("user", text)
        await self._execute(
            token,
            lambda: self._refiner.refine(snapshot, text),
            on_success=lambda result: self._commit(result.events, result.message),
            on_failure=lambda exc: self._fail(exc, REFINEMENT_ERROR_MESSAGE),
        )
        return True

    def stop(self) -> bool:
        """Abandon the in-flight request. Only valid while generating or refining."""

        if not self.busy or self._active is None:
            return False
        logger.info("Request stopped by user while %s", self._state.value)
        self._active.cancel()
        self._active = None
        self._transition(SessionState.IDLE)
        self._append("model", STOPPED_MESSAGE)
        return True

    def delete_event(self, event_id: str) -> bool:
        before = len(self._events)
        self._events = [e for e in self._events if e.id != event_id]
        return len(self._events) != before

    def reset(self) -> None:
        """Start over: drop events, messages and draft input, abandoning any request."""

        if self._active is not None:
            self._active.cancel()
            self._active = None
        self._state = SessionState.IDLE
        self._events = []
        self._messages = []
        self.draft_description = ""
        self.draft_image = None
        self.last_error = None

    async def drain(self) -> None:
        """Wait for abandoned backend calls to settle."""

        while self._abandoned:
            pending = list(self._abandoned)
            await asyncio.gather(*pending, return_exceptions=True)
            self._abandoned.difference_update(pending)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _transition(self, target: SessionState) -> None:
        if not is_valid_transition(self._state, target):
            raise RuntimeError(f"Invalid session transition {self._state.value} -> {target.value}")
        self._state = target

    def _begin(self, kind: SessionState) -> CancelToken:
        self._transition(kind)
        token = CancelToken(kind=kind)
        self._active = token
        self.last_error = None
        return token

    def _finish(self, token: CancelToken, apply: Callable[[], None]) -> None:
        # A token that is no longer active was stopped or reset; its result is dropped.
        if token.cancelled or self._active is not token:
            return
        apply()
        self._active = None
        self._transition(SessionState.IDLE)

    async def _execute(
        self,
        token: CancelToken,
        call: Callable[[], Awaitable[T]],
        *,
        on_success: Callable[[T], None],
        on_failure: Callable[[Exception], None],
    ) -> None:
        try:
            result = await self._await_result(token, call)
        except _Cancelled:
            return
        except asyncio.CancelledError:
            # The caller itself was cancelled (e.g. Ctrl-C); treat it as a stop.
            if self._active is token:
                self.stop()
            raise
        except Exception as exc:
            if not isinstance(exc, (GenerationFailed, RefinementFailed, InputError)):
                logger.exception("Unexpected error during %s", token.kind.value)
            self._finish(token, lambda: on_failure(exc))
            return
        self._finish(token, lambda: on_success(result))

    async def _await_result(self, token: CancelToken, call: Callable[[], Awaitable[T]]) -> T:
        task = asyncio.ensure_future(call())
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon(task)
            raise
        finally:
            waiter.cancel()
        if token.cancelled:
            self._abandon(task)
            raise _Cancelled()
        return task.result()

    def _abandon(self, task: asyncio.Future) -> None:
        if task.done():
            self._discard(task)
            return
        self._abandoned.add(task)
        task.add_done_callback(self._discard)

    def _discard(self, task: asyncio.Future) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Discarded failure of abandoned request: %s", exc)
        else:
            logger.debug("Discarded result of abandoned request")

    def _commit(self, events: List[Event], text: str) -> None:
        self._events = list(events)
        self._append("model", text)

    def _fail(self, exc: Exception, text: str) -> None:
        self.last_error = str(exc)
        logger.warning("Session request failed: %s", exc)
        self._append("model", text)

    def _append(self, role: Role, text: str, image_data: Optional[str] = None) -> ChatMessage:
        message = ChatMessage(
            id=self._id_factory(),
            role=role,
            text=text,
            timestamp=self._clock(),
            image_data=image_data,
        )
        self._messages.append(message)
        return message
