"""
Chat Orchestrator

Runs one grounded chat turn:
    embed message -> resolve scope -> rank chunks -> build prompt with
    evidence + recent history -> call the language model -> record reply

The reply is returned together with the (document_id, chunk_index) pairs
that were given to the model, so callers can render citations.

If the model call fails, the user message stays in the conversation and
``ModelUnavailable`` is raised; ``retry_turn`` answers that message again
without appending it twice.
"""

import os
import logging
from typing import Iterable, Optional
from dataclasses import dataclass, field

from .config import RAGSettings
from .document_store import DocumentStore
from .conversations import ConversationStore
from .context import ContextAssembler, RetrievalQuery, EvidenceBundle
from .citation import CitationExtractor
from .prompts import build_system_prompts, TITLE_SYSTEM_PROMPT
from .errors import InvalidArgument, ModelUnavailable
from .metrics import get_metrics_collector

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_FALLBACK_LENGTH = 50


@dataclass
class ChatResult:
    """Outcome of one chat turn."""
    reply: str
    conversation_id: str
    used_chunks: list = field(default_factory=list)  # [(document_id, chunk_index), ...]
    citations: list = field(default_factory=list)
    title: str = DEFAULT_TITLE

    @property
    def grounded(self) -> bool:
        return bool(self.used_chunks)


class ChatOrchestrator:
    """
    Combines retrieved evidence, history and the user's message into a
    language-model request.

    Usage:
        orchestrator = ChatOrchestrator(documents, conversations, embeddings)
        result = orchestrator.answer("When can the lease be terminated?", owner_id="u1")
        result.reply, result.used_chunks
    """

    def __init__(
        self,
        documents: DocumentStore,
        conversations: ConversationStore,
        embeddings,
        llm_client=None,
        settings: Optional[RAGSettings] = None,
        assembler: Optional[ContextAssembler] = None,
        citation_extractor: Optional[CitationExtractor] = None,
        metrics=None,
    ):
        self.documents = documents
        self.conversations = conversations
        self.embeddings = embeddings
        self.settings = settings or RAGSettings()
        self.assembler = assembler or ContextAssembler(documents, settings=self.settings)
        self.citations = citation_extractor or CitationExtractor()
        self.metrics = metrics or get_metrics_collector()
        self._llm_client = llm_client

    @property
    def llm_client(self):
        if self._llm_client is None:
            self._llm_client = self._init_client()
        return self._llm_client

    def _init_client(self):
        """Create an OpenAI-compatible client (LLM_BASE_URL for other providers)."""
        from openai import OpenAI
        kwargs = {"api_key": os.getenv("OPENAI_API_KEY"), "timeout": 120.0}
        if self.settings.llm_base_url:
            kwargs["base_url"] = self.settings.llm_base_url
        return OpenAI(**kwargs)

    # =========================================================================
    # Public API
    # =========================================================================

    def answer(
        self,
        message: str,
        owner_id: str,
        conversation_id: Optional[str] = None,
        attached_document_ids: Iterable[str] = (),
        top_k: Optional[int] = None,
    ) -> ChatResult:
        """
        Answer a user message, grounded in the documents in scope.

        Args:
            message: User message text
            owner_id: Owner of the conversation and documents
            conversation_id: Existing conversation, or None to start one
            attached_document_ids: Explicit scope for this turn only
            top_k: Evidence chunk limit (defaults to RETRIEVAL_TOP_K)

        Raises:
            InvalidArgument: Empty message or non-positive top_k
            ConversationNotFound: Unknown conversation for this owner
            ModelUnavailable: The language model call failed
        """
        if not message or not message.strip():
            raise InvalidArgument("message must not be empty")
        self._check_top_k(top_k)
        attached = tuple(attached_document_ids or ())

        if conversation_id:
            self.conversations.get_conversation(conversation_id, owner_id)

        return self._run_turn(conversation_id, message, owner_id, attached, top_k, append_user=True)

    def retry_turn(
        self,
        conversation_id: str,
        owner_id: str,
        attached_document_ids: Iterable[str] = (),
        top_k: Optional[int] = None,
    ) -> ChatResult:
        """
        Re-answer the conversation's last user message after a model failure.

        The retried turn uses the same explicit attachment as the failed one
        unless ``attached_document_ids`` is given.

        Raises:
            InvalidArgument: The last message is not an unanswered user message
        """
        self._check_top_k(top_k)
        conversation = self.conversations.get_conversation(conversation_id, owner_id)
        if not conversation.messages or conversation.messages[-1].role != "user":
            raise InvalidArgument(
                f"Conversation {conversation_id} has no unanswered user message to retry"
            )
        pending = conversation.messages[-1]
        attached = tuple(attached_document_ids or ()) or pending.attached_document_ids
        logger.info(f"Retrying turn for conversation {conversation_id}")
        return self._run_turn(
            conversation_id, pending.content, owner_id, attached, top_k, append_user=False,
        )

    # =========================================================================
    # Turn execution
    # =========================================================================

    def _run_turn(
        self,
        conversation_id: Optional[str],
        message: str,
        owner_id: str,
        attached: tuple,
        top_k: Optional[int],
        append_user: bool,
    ) -> ChatResult:
        with self.metrics.track_turn(owner_id, message) as tracker:
            # A failed embedding must not create or change a conversation
            query_vector = self.embeddings.embed_query(message)
            if conversation_id is None:
                conversation_id = self.conversations.create_conversation(
                    owner_id, title=DEFAULT_TITLE
                ).conversation_id
            logger.info(f"Chat turn in {conversation_id}: {message[:200]}")

            with self.conversations.turn_lock(conversation_id):
                if attached:
                    self.conversations.add_document_ids(conversation_id, attached)
                conversation = self.conversations.get_conversation(conversation_id)

                query = RetrievalQuery.build(message, attached, conversation.document_ids)
                bundle = self.assembler.assemble(
                    query, query_vector, owner_id=owner_id, top_k=top_k
                )

                if append_user:
                    self.conversations.append_message(
                        conversation_id, "user", message,
                        attached_document_ids=query.attached_document_ids,
                    )

                cited = self.citations.extract(bundle.ranked_chunks, bundle.document_names)
                history = self._recent_history(conversation_id, message)
                reply = self._complete(conversation_id, bundle, cited, history)

                used = bundle.used_chunks
                self.conversations.append_message(
                    conversation_id, "assistant", reply, used_chunks=used
                )
                title = self._ensure_title(conversation_id, message)

            tracker.set_result(len(used))

        return ChatResult(
            reply=reply,
            conversation_id=conversation_id,
            used_chunks=used,
            citations=[cc.citation for cc in cited],
            title=title,
        )

    def _recent_history(self, conversation_id: str, message: str) -> list[dict]:
        """The last HISTORY_WINDOW earlier messages, then the message being answered."""
        earlier = self.conversations.get_conversation(conversation_id).messages[:-1]
        window = earlier[-self.settings.history_window:] if self.settings.history_window else []
        history = [{"role": m.role, "content": m.content} for m in window]
        history.append({"role": "user", "content": message})
        return history

    def _complete(self, conversation_id: str, bundle: EvidenceBundle, cited, history) -> str:
        """Call the language model; any failure becomes ModelUnavailable."""
        evidence_block = self.citations.format_context(cited) if cited else ""
        messages = build_system_prompts(bundle, evidence_block) + history

        try:
            response = self.llm_client.chat.completions.create(
                model=self.settings.llm_model,
                messages=messages,
                temperature=self.settings.llm_temperature,
                max_tokens=self.settings.llm_max_tokens,
            )
            reply = response.choices[0].message.content
        except Exception as e:
            logger.error(f"LLM generation failed for {conversation_id}: {type(e).__name__}: {e}")
            raise ModelUnavailable(
                f"Language model unavailable: {e}",
                conversation_id=conversation_id,
                used_chunks=bundle.used_chunks,
            ) from e

        if not reply or not reply.strip():
            logger.error(f"LLM returned an empty reply for {conversation_id}")
            raise ModelUnavailable(
                "Language model returned an empty reply",
                conversation_id=conversation_id,
                used_chunks=bundle.used_chunks,
            )
        return reply.strip()

    def _ensure_title(self, conversation_id: str, message: str) -> str:
        """Title a new conversation from its first message. Never fails the turn."""
        conversation = self.conversations.get_conversation(conversation_id)
        if conversation.title != DEFAULT_TITLE:
            return conversation.title

        try:
            response = self.llm_client.chat.completions.create(
                model=self.settings.llm_model,
                messages=[
                    {"role": "system", "content": TITLE_SYSTEM_PROMPT},
                    {"role": "user", "content": message},
                ],
                temperature=0.5,
                max_tokens=20,
            )
            title = (response.choices[0].message.content or "").strip().strip('"')
        except Exception as e:
            logger.warning(f"Title generation failed for {conversation_id}: {e}")
            title = ""

        if not title:
            title = message.strip()[:TITLE_FALLBACK_LENGTH]

        self.conversations.set_title(conversation_id, title)
        return title

    @staticmethod
    def _check_top_k(top_k: Optional[int]) -> None:
        if top_k is not None and top_k <= 0:
            raise InvalidArgument(f"top_k must be positive, got {top_k}")
