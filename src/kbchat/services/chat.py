"""Question answering: intent short-circuit, retrieval, grounded generation, history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence
from uuid import uuid4

from kbchat.errors import ChatProcessingError, KBChatError, SessionNotFoundError
from kbchat.metrics.observability import PipelineMetrics, TimedSection, get_logger
from kbchat.models import ChatMessage, ChatSource, SearchResult, utcnow
from kbchat.retrieval.service import Retriever
from kbchat.services.generation import FALLBACK_ANSWER, CompletionBackend, TemplateGenerator
from kbchat.services.intent import Intent, IntentClassifier
from kbchat.storage.base import SessionStore


@dataclass(frozen=True)
class ContextBuilderConfig:
    """Formatting of the context block handed to the completion model."""

    source_template: str = "[Source: {source}]\n{text}"
    separator: str = "\n\n---\n\n"
    preview_chars: int = 200
    preview_suffix: str = "..."


class ContextBuilder:
    """Renders retrieved chunks as model context and as response citations."""

    def __init__(self, config: ContextBuilderConfig | None = None) -> None:
        self._config = config or ContextBuilderConfig()

    def build_context(self, results: Sequence[SearchResult]) -> str:
        return self._config.separator.join(
            self._config.source_template.format(source=result.payload.source, text=result.payload.text)
            for result in results
        )

    def build_sources(self, results: Sequence[SearchResult]) -> List[ChatSource]:
        return [
            ChatSource(
                source=result.payload.source,
                text=result.payload.text[: self._config.preview_chars] + self._config.preview_suffix,
                score=result.score,
            )
            for result in results
        ]


class ChatService:
    """Answers one question per call and records the exchange.

    Greetings and thanks are answered from canned replies without touching the
    embedding or completion services.  Anything else is answered from the
    user's own documents, or with :data:`FALLBACK_ANSWER` when nothing clears
    the similarity threshold.  Failures on the retrieval path leave no trace in
    the session or log stores.
    """

    def __init__(
        self,
        *,
        retriever: Retriever,
        sessions: SessionStore,
        generator: CompletionBackend | None = None,
        classifier: IntentClassifier | None = None,
        context_builder: ContextBuilder | None = None,
        allow_client_session_ids: bool = True,
    ) -> None:
        self._retriever = retriever
        self._sessions = sessions
        self._generator = generator or TemplateGenerator()
        self._classifier = classifier or IntentClassifier()
        self._context_builder = context_builder or ContextBuilder()
        self._allow_client_session_ids = allow_client_session_ids
        self._logger = get_logger("chat")

    async def process_question(self, question: str, user_id: str, session_id: str | None = None) -> ChatMessage:
        if (
            session_id
            and not self._allow_client_session_ids
            and self._sessions.get_session(session_id) is None
        ):
            raise SessionNotFoundError(f"Session {session_id} not found")

        intent = self._classifier.classify(question)
        if intent is not Intent.NONE:
            answer = self._classifier.respond(intent)
            sources: List[ChatSource] = []
            PipelineMetrics.record_short_circuit(intent.value)
            self._logger.info("chat.intent", intent=intent.value, user_id=user_id)
        else:
            answer, sources = await self._answer_from_documents(question, user_id)

        return self._record(question, answer, sources, user_id, session_id)

    async def _answer_from_documents(self, question: str, user_id: str) -> tuple[str, List[ChatSource]]:
        try:
            results = await self._retriever.retrieve(question, user_id)
            if not results:
                self._logger.info("chat.fallback", user_id=user_id)
                return FALLBACK_ANSWER, []
            context = self._context_builder.build_context(results)
            with TimedSection(PipelineMetrics.observe_generation) as timer:
                answer = await self._generator.complete(question, context)
        except KBChatError as exc:
            PipelineMetrics.record_failure("chat")
            self._logger.error("chat.failed", user_id=user_id, error=str(exc))
            raise ChatProcessingError(f"Failed to answer question: {exc}") from exc
        self._logger.info(
            "generation.complete",
            user_id=user_id,
            source_count=len(results),
            duration_seconds=timer.elapsed,
        )
        return answer, self._context_builder.build_sources(results)

    def _record(
        self,
        question: str,
        answer: str,
        sources: Sequence[ChatSource],
        user_id: str,
        session_id: str | None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=uuid4().hex,
            question=question,
            answer=answer,
            sources=tuple(sources),
            timestamp=utcnow(),
            user_id=user_id,
            session_id=session_id,
        )
        if session_id:
            if self._sessions.get_session(session_id) is None:
                self._sessions.create_session(user_id, session_id=session_id, created_at=message.timestamp)
                self._logger.info("chat.session_created", session_id=session_id, user_id=user_id)
            self._sessions.append_message(session_id, message.as_item())
        self._sessions.record_log(message)
        return message
