"""Chat session: the composition root that owns all mutable engine state."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
from typing import Any

from pydantic import ValidationError

from .attachments import PdfTextExtractor, PendingAttachments, TesseractPageOcr
from .catalog import ModelCatalog
from .config import Config, GenerationOptions, load_config
from .conversation import Conversation
from .events import (
    CONNECTION_CHANGED,
    CONVERSATION_UPDATED,
    ERROR_CHANGED,
    MODELS_UPDATED,
    EventBus,
)
from .exceptions import (
    InvalidConfigurationError,
    NoModelsAvailableError,
    OllamaCompanionError,
    OllamaConnectionError,
)
from .models import Attachment, Message, ModelDescriptor, Role
from .orchestrator import MultiModalOrchestrator
from .probe import ConnectionProbe
from .state import StateManager, StreamState
from .streaming import StreamingResponseEngine, StreamOutcome
from .task_manager import ACTIVE_TURN, TaskManager
from .transport import OllamaTransport, map_exception

LOGGER = logging.getLogger(__name__)


class ChatSession:
    """Single logical owner of the conversation, the model selection and the active turn.

    Presentation layers read the properties below and subscribe to the
    injected :class:`EventBus` for change notifications. Only one turn runs
    at a time; a second send while one is active is refused.
    """

    def __init__(
        self,
        transport: OllamaTransport,
        probe: ConnectionProbe,
        *,
        bus: EventBus | None = None,
        conversation: Conversation | None = None,
        catalog: ModelCatalog | None = None,
        orchestrator: MultiModalOrchestrator | None = None,
        generation: GenerationOptions | None = None,
        system_prompt: str = "",
        context_char_limit: int = 8000,
        task_manager: TaskManager | None = None,
    ) -> None:
        self.transport = transport
        self.probe = probe
        self.bus = bus or EventBus()
        self.conversation = conversation or Conversation()
        self.catalog = catalog or ModelCatalog(transport)
        self.orchestrator = orchestrator or MultiModalOrchestrator(transport)
        self.generation = generation or GenerationOptions()
        self.system_prompt = system_prompt
        self.context_char_limit = context_char_limit
        self.tasks = task_manager or TaskManager()
        self.state_manager = StateManager()
        self.engine = StreamingResponseEngine(
            transport,
            self.conversation,
            bus=self.bus,
            state_manager=self.state_manager,
        )
        self.pending = PendingAttachments()
        self.notice: str | None = None
        self.probe.on_state_change(self._on_connection_change)

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any] | None = None,
        *,
        bus: EventBus | None = None,
    ) -> ChatSession:
        """Build a session and its collaborators from a configuration mapping.

        Without ``config`` the user's config file is loaded. An explicit
        mapping that fails validation raises InvalidConfigurationError.
        """
        raw = config if config is not None else load_config()
        try:
            settings = Config.model_validate(raw)
        except ValidationError as exc:
            raise InvalidConfigurationError(f"Invalid configuration: {exc}") from exc

        server = settings.server
        attachments = settings.attachments
        transport = OllamaTransport(
            server.host,
            request_timeout=server.request_timeout_seconds,
            resource_timeout=server.resource_timeout_seconds,
        )
        probe = ConnectionProbe(
            server.host,
            timeout=server.probe_timeout_seconds,
            check_interval_seconds=server.connection_check_interval_seconds,
        )
        pdf_extractor = PdfTextExtractor(
            max_pages=attachments.max_pdf_pages,
            ocr=TesseractPageOcr(dpi=attachments.ocr_dpi, language=attachments.ocr_language),
            ocr_enabled=attachments.ocr_enabled,
        )
        return cls(
            transport,
            probe,
            bus=bus,
            catalog=ModelCatalog(transport, preferred_model=server.model),
            orchestrator=MultiModalOrchestrator(
                transport,
                pdf_extractor=pdf_extractor,
                vision_model=server.vision_model,
                document_model=server.document_model,
            ),
            generation=settings.generation,
            system_prompt=server.system_prompt,
            context_char_limit=attachments.document_context_chars,
        )

    # Observable state -------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.conversation.messages

    @property
    def visible_messages(self) -> tuple[Message, ...]:
        return self.conversation.visible_messages

    @property
    def connected(self) -> bool:
        return self.probe.connected

    @property
    def models(self) -> tuple[ModelDescriptor, ...]:
        return self.catalog.models

    @property
    def selected_model(self) -> ModelDescriptor | None:
        return self.catalog.selected

    @property
    def live_answer(self) -> str:
        return self.engine.live_answer

    @property
    def live_reasoning(self) -> str | None:
        return self.engine.live_reasoning

    @property
    def is_streaming(self) -> bool:
        return self.engine.is_streaming

    @property
    def state(self) -> StreamState:
        return self.state_manager.state

    @property
    def last_error(self) -> str | None:
        return self.engine.last_error

    @property
    def document_context(self) -> str | None:
        return self.conversation.document_context

    def clear_error(self) -> None:
        self.engine.clear_error()

    async def _publish_error(self, message: str | None) -> None:
        self.engine.last_error = message
        await self.bus.publish(ERROR_CHANGED, {"error": message}, source="session")

    async def _on_connection_change(self, old: bool, new: bool) -> None:
        await self.bus.publish(
            CONNECTION_CHANGED, {"old": old, "connected": new}, source="session"
        )

    # Connection and models --------------------------------------------

    async def check_connection(self) -> bool:
        return await self.probe.probe()

    async def refresh_models(self) -> list[ModelDescriptor]:
        """Reload the model list; failures become ``notice`` or ``last_error``."""
        try:
            models = await self.catalog.fetch_models()
        except NoModelsAvailableError as exc:
            self.notice = str(exc)
            self.catalog.clear_selection()
            await self.bus.publish(MODELS_UPDATED, {"models": []}, source="session")
            return []
        except OllamaCompanionError as exc:
            if isinstance(exc, OllamaConnectionError):
                await self.probe.mark_disconnected()
            await self._publish_error(str(exc))
            return []

        self.notice = None
        await self.bus.publish(
            MODELS_UPDATED,
            {
                "models": [model.name for model in models],
                "selected": self.catalog.selected_name,
            },
            source="session",
        )
        return models

    async def select_model(self, name: str) -> ModelDescriptor:
        descriptor = self.catalog.select(name)
        await self.bus.publish(
            MODELS_UPDATED,
            {
                "models": [model.name for model in self.catalog.models],
                "selected": descriptor.name,
            },
            source="session",
        )
        return descriptor

    async def start(self, *, monitor: bool = False) -> bool:
        """Probe the server, load models when reachable and optionally keep polling."""
        connected = await self.check_connection()
        if connected:
            await self.refresh_models()
        if monitor:
            await self.probe.start_monitoring()
        return connected

    # Turns ------------------------------------------------------------

    async def send(
        self,
        text: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> StreamOutcome:
        """Run one turn to completion.

        ``attachments`` defaults to (and consumes) the pending attachments.
        Turns with attachments go through the multi-modal orchestrator,
        text-only turns are streamed.
        """
        if self.is_streaming:
            LOGGER.info("session.send.refused", extra={"event": "session.send.refused"})
            return StreamOutcome(
                state=self.state,
                error=OllamaCompanionError("A response is already in progress."),
            )

        items = tuple(attachments) if attachments is not None else self.pending.take()
        if items:
            outcome = await self._send_with_attachments(text, items)
        else:
            outcome = await self.engine.send(
                text,
                model=self.catalog.selected_name,
                options=self.generation.to_options(),
                system_prompt=self.system_prompt,
                context_char_limit=self.context_char_limit,
            )

        if isinstance(outcome.error, OllamaConnectionError):
            await self.probe.mark_disconnected()
        elif outcome.state is StreamState.COMPLETED:
            await self.probe.mark_connected()
        return outcome

    async def _send_with_attachments(
        self, text: str, attachments: tuple[Attachment, ...]
    ) -> StreamOutcome:
        if not await self.state_manager.begin_turn():
            return StreamOutcome(
                state=self.state,
                error=OllamaCompanionError("A response is already in progress."),
            )
        await self.engine.set_state(StreamState.SENDING)
        self.engine.clear_error()

        user_message = Message(role=Role.USER, content=text, attachments=attachments)
        placeholder = self.conversation.begin_turn(user_message)
        await self.bus.publish(CONVERSATION_UPDATED, {}, source="session")

        try:
            result = await self.orchestrator.respond(
                text, attachments, options=self.generation.to_options()
            )
        except asyncio.CancelledError:
            await self.engine.set_state(StreamState.CANCELLED)
            raise
        except Exception as exc:  # noqa: BLE001 - every failure ends the turn as FAILED.
            return await self.engine.fail(map_exception(exc, self.transport.host), placeholder)

        reply = placeholder.with_content(result.content, result.reasoning, result.metrics)
        self.conversation.replace(reply)
        self.conversation.set_document_context(result.extracted_text)
        LOGGER.info(
            "session.attachments.completed",
            extra={
                "event": "session.attachments.completed",
                "attachments": len(attachments),
                "document_chars": len(result.extracted_text or ""),
            },
        )
        await self.bus.publish(CONVERSATION_UPDATED, {}, source="session")
        await self.engine.set_state(StreamState.COMPLETED)
        return StreamOutcome(
            state=StreamState.COMPLETED, message=reply, metrics=result.metrics
        )

    def submit(
        self,
        text: str,
        attachments: Sequence[Attachment] | None = None,
    ) -> asyncio.Task[StreamOutcome]:
        """Start :meth:`send` as the tracked active-turn task."""
        task = asyncio.create_task(self.send(text, attachments))
        self.tasks.add(task, name=ACTIVE_TURN)
        return task

    async def stop(self) -> bool:
        """Cancel the active turn, keeping whatever text already arrived."""
        cancelled = await self.tasks.cancel(ACTIVE_TURN)
        if self.state.is_active:
            await self.engine.set_state(StreamState.CANCELLED)
        if cancelled:
            LOGGER.info("session.turn.stopped", extra={"event": "session.turn.stopped"})
        return cancelled

    async def reset(self) -> None:
        """Stop any active turn and forget messages, attachments and document context."""
        await self.stop()
        self.conversation.clear()
        self.pending.clear()
        self.notice = None
        self.engine.clear_error()
        await self.engine.set_state(StreamState.IDLE)
        await self.bus.publish(CONVERSATION_UPDATED, {}, source="session")

    async def aclose(self) -> None:
        await self.tasks.cancel_all()
        await self.probe.aclose()
        await self.transport.aclose()
