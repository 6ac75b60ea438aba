"""
Memory service: the retrieval-augmented generation core.

Converts text into stored memories (embed + persist), retrieves the most
relevant memories for a query, and assembles them into a bounded context
block for prompting the chat model.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..config import MemoryConfig
from ..errors import MemoryServiceError, StoreError, UpstreamError
from ..llm.workers_ai_client import WorkersAIClient
from ..models import (
    ChatMessage, ChatResult, ClearResult, MemoryRecord, MemoryStats,
    Modality, MonotonicClock, QueryContext, RetrievedMemory, clean_metadata
)
from .vectordb import QdrantVectorStore

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Persistent semantic memory over the inference gateway and vector store.

    Features:
    - Store text as embedded memory records
    - Top-K retrieval with optional modality filter
    - Bounded context prompt assembly
    - Memory-augmented chat that remembers both sides of the conversation
    - Best-effort bulk clear and statistics
    """

    def __init__(
        self,
        gateway: WorkersAIClient,
        vector_store: QdrantVectorStore,
        config: Optional[MemoryConfig] = None,
        clock: Optional[MonotonicClock] = None
    ):
        """
        Initialize the memory service.

        Args:
            gateway: Client used for embeddings and chat completion
            vector_store: Vector index holding the memories
            config: Retrieval and prompt configuration
            clock: Timestamp source for new records
        """
        self.gateway = gateway
        self.vector_store = vector_store
        self.config = config or MemoryConfig()
        self.clock = clock or MonotonicClock()

        logger.info("MemoryService initialized")

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(
        self,
        text: str,
        modality: Union[Modality, str] = Modality.GENERAL,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Embed text and persist it as a new memory.

        Args:
            text: Canonical text of the memory
            modality: Media kind the memory came from
            metadata: Additional primitive key-value pairs

        Returns:
            Id of the stored memory

        Raises:
            MemoryServiceError: If the text is empty or embedding/insert fails
            ValidationError: If the modality or metadata is invalid
        """
        if not text or not text.strip():
            raise MemoryServiceError("Cannot store an empty memory")

        modality = Modality.parse(modality)
        extension = clean_metadata(metadata)

        try:
            embedding = self.gateway.embed(text)
        except UpstreamError as e:
            logger.error(f"Embedding failed while storing memory: {e}")
            raise MemoryServiceError(f"Failed to embed memory: {e.message}", cause=e)

        record = self._build_record(text, modality, embedding, extension)
        try:
            self.vector_store.insert([record])
        except StoreError as e:
            logger.error(f"Vector insert failed while storing memory: {e}")
            raise MemoryServiceError(f"Failed to persist memory: {e.message}", cause=e)

        logger.info(f"Stored {modality.value} memory {record.id}: {text[:80]!r}")
        return record.id

    def store_many(
        self,
        entries: Sequence[Tuple[str, Union[Modality, str], Optional[Dict[str, Any]]]]
    ) -> List[str]:
        """
        Store several memories with one batched embedding call and one insert.

        Args:
            entries: (text, modality, metadata) triples

        Returns:
            Ids of the stored memories, in input order

        Raises:
            MemoryServiceError: If any text is empty or embedding/insert fails
        """
        if not entries:
            return []

        prepared = []
        for text, modality, metadata in entries:
            if not text or not text.strip():
                raise MemoryServiceError("Cannot store an empty memory")
            prepared.append((text, Modality.parse(modality), clean_metadata(metadata)))

        try:
            embeddings = self.gateway.embed_batch([text for text, _, _ in prepared])
        except UpstreamError as e:
            raise MemoryServiceError(f"Failed to embed memories: {e.message}", cause=e)

        records = [
            self._build_record(text, modality, embedding, extension)
            for (text, modality, extension), embedding in zip(prepared, embeddings)
        ]
        try:
            ids = self.vector_store.insert(records)
        except StoreError as e:
            raise MemoryServiceError(f"Failed to persist memories: {e.message}", cause=e)

        logger.info(f"Stored {len(ids)} memories in one batch")
        return ids

    def _build_record(
        self,
        text: str,
        modality: Modality,
        embedding: List[float],
        extension: Dict[str, Any]
    ) -> MemoryRecord:
        return MemoryRecord(
            id=str(uuid.uuid4()),
            text=text,
            modality=modality,
            embedding=embedding,
            timestamp=self.clock.now_ms(),
            metadata=extension
        )

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        modality: Optional[Union[Modality, str]] = None
    ) -> QueryContext:
        """
        Retrieve the memories most relevant to a query.

        Args:
            query: Natural-language query
            top_k: Maximum number of memories (configured default when None)
            modality: Restrict results to one modality

        Returns:
            QueryContext ordered by descending relevance; empty when nothing matches

        Raises:
            MemoryServiceError: If embedding or the vector query fails
        """
        if top_k is None:
            top_k = self.config.default_top_k
        top_k = min(top_k, self.config.max_top_k)
        if top_k <= 0 or not query or not query.strip():
            return QueryContext(query=query or "")

        filter_conditions = None
        if modality is not None:
            filter_conditions = {"modality": Modality.parse(modality).value}

        try:
            query_embedding = self.gateway.embed(query)
            matches = self.vector_store.query(query_embedding, top_k, filter_conditions)
        except (UpstreamError, StoreError) as e:
            logger.error(f"Retrieval failed: {e}")
            raise MemoryServiceError(f"Failed to retrieve memories: {e.message}", cause=e)

        memories = []
        for match in matches:
            payload = match.payload
            try:
                match_modality = Modality(payload.get("modality", Modality.GENERAL.value))
            except ValueError:
                match_modality = Modality.GENERAL
            memories.append(RetrievedMemory(
                id=match.id,
                text=payload.get("text", ""),
                modality=match_modality,
                score=max(0.0, min(1.0, match.score)),
                timestamp=payload.get("timestamp"),
                metadata=payload.get("metadata", {})
            ))

        logger.info(f"Retrieved {len(memories)} memories for query: {query[:50]!r}")
        return QueryContext(memories=memories, query=query)

    def build_context_prompt(self, context: QueryContext) -> str:
        """
        Format retrieved memories as a bounded numbered list.

        Each line reads ``N. [<modality>, <relevance>%] <text>``. Memory texts
        are truncated to ``max_memory_chars`` and lines stop being added once
        ``max_context_chars`` would be exceeded.
        """
        lines: List[str] = []
        used = 0
        for index, memory in enumerate(context.memories, start=1):
            text = " ".join(memory.text.split())
            if len(text) > self.config.max_memory_chars:
                text = text[:self.config.max_memory_chars].rstrip() + "..."
            line = f"{index}. [{memory.modality.value}, {memory.relevance_percent}%] {text}"
            if lines and used + len(line) + 1 > self.config.max_context_chars:
                break
            lines.append(line)
            used += len(line) + 1
        return "\n".join(lines)

    def build_system_prompt(self, context: Optional[QueryContext]) -> str:
        """Plain system prompt, or one embedding the context block when there is context."""
        if context is None or context.is_empty:
            return self.config.system_prompt
        return self.config.context_prompt_template.format(
            system_prompt=self.config.system_prompt,
            context=self.build_context_prompt(context)
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat_with_context(
        self,
        user_message: str,
        history: Optional[Iterable[ChatMessage]] = None,
        use_memory: bool = True
    ) -> ChatResult:
        """
        Answer a chat turn, grounded on retrieved memories.

        Context is retrieved before the current turn is stored, so a turn
        never retrieves itself. Memory failures degrade to an empty context
        or an unsaved turn; only the completion call can fail the request.

        Args:
            user_message: The user's message
            history: Prior conversation turns
            use_memory: Retrieve context and remember both turns

        Returns:
            ChatResult with the response and the context used

        Raises:
            UpstreamError: If the chat completion fails
        """
        history = list(history or [])
        if self.config.max_history_turns:
            history = history[-self.config.max_history_turns:]
        context = QueryContext(query=user_message)
        memory_saved = False

        if use_memory:
            try:
                context = self.retrieve(user_message)
            except MemoryServiceError as e:
                logger.warning(f"Continuing chat without memory context: {e}")
            user_saved = self._remember(user_message, {"role": "user"})
        else:
            user_saved = False

        messages = [ChatMessage(role="system", content=self.build_system_prompt(context))]
        messages.extend(history)
        messages.append(ChatMessage(role="user", content=user_message))

        response = self.gateway.complete(messages)

        if use_memory:
            reply_saved = self._remember(response, {"role": "assistant", "in_reply_to": user_message[:200]})
            memory_saved = user_saved and reply_saved

        return ChatResult(response=response, context=context, memory_saved=memory_saved)

    def _remember(self, text: str, metadata: Dict[str, Any]) -> bool:
        try:
            self.store(text, Modality.TEXT, metadata)
            return True
        except MemoryServiceError as e:
            logger.error(f"Failed to remember chat turn: {e}")
            return False

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def clear(self) -> ClearResult:
        """
        Delete every stored memory.

        Enumerates ids and deletes them in batches. Not atomic: a failure
        part-way leaves the earlier batches deleted.

        Raises:
            MemoryServiceError: If enumeration or a delete batch fails
        """
        batch_size = self.vector_store.config.delete_batch_size
        deleted = 0
        try:
            ids = self.vector_store.list_ids()
            for start in range(0, len(ids), batch_size):
                batch = ids[start:start + batch_size]
                self.vector_store.delete_by_ids(batch)
                deleted += len(batch)
        except StoreError as e:
            logger.error(f"Clearing memories stopped after {deleted} deletions: {e}")
            raise MemoryServiceError(f"Failed to clear memories after {deleted} deletions: {e.message}", cause=e)

        logger.info(f"Cleared {deleted} memories")
        return ClearResult(
            deleted=deleted,
            message=f"Deleted {deleted} memories (best-effort, not atomic)"
        )

    def stats(self) -> MemoryStats:
        """
        Get memory totals by modality.

        Raises:
            MemoryServiceError: If the vector store cannot report counts
        """
        try:
            store_stats = self.vector_store.stats()
        except StoreError as e:
            raise MemoryServiceError(f"Failed to get memory stats: {e.message}", cause=e)

        return MemoryStats(
            total_memories=store_stats.count,
            by_type=dict(store_stats.count_by_modality),
            exact=store_stats.exact
        )
