"""
Unit tests for MemoryService.

Covers storing and retrieving memories, context prompt assembly,
memory-augmented chat, bulk clearing, and statistics.
"""

from unittest.mock import Mock

import pytest

from memrag.config import MemoryConfig
from memrag.errors import MemoryServiceError, StoreError, UpstreamError, ValidationError
from memrag.models import ChatMessage, Modality, QueryContext, RetrievedMemory
from memrag.retrieval.memory_service import MemoryService


class TestStoreAndRetrieve:
    """Test cases for storing and retrieving memories."""

    def test_round_trip(self, memory_service):
        memory_id = memory_service.store("my favourite colour is blue", Modality.TEXT, {"source": "chat"})

        context = memory_service.retrieve("my favourite colour is blue")

        top = context.memories[0]
        assert top.id == memory_id
        assert top.text == "my favourite colour is blue"
        assert top.modality is Modality.TEXT
        assert top.metadata == {"source": "chat"}
        assert top.score == pytest.approx(1.0, abs=1e-4)
        assert top.timestamp is not None

    def test_store_accepts_modality_string(self, memory_service):
        memory_service.store("a podcast about bees", "audio")
        assert memory_service.stats().by_type == {"audio": 1}

    def test_store_empty_text(self, memory_service, gateway):
        with pytest.raises(MemoryServiceError):
            memory_service.store("   ")
        gateway.embed.assert_not_called()

    def test_store_invalid_modality(self, memory_service):
        with pytest.raises(ValidationError):
            memory_service.store("hello", "document")

    def test_store_ignores_caller_timestamp(self, memory_service):
        memory_id = memory_service.store("hello there", Modality.TEXT, {"timestamp": 5, "source": "ui"})

        top = memory_service.retrieve("hello there").memories[0]
        assert top.id == memory_id
        assert top.metadata == {"source": "ui"}
        assert top.timestamp > 5

    def test_store_embedding_failure(self, memory_service, gateway):
        gateway.embed.side_effect = UpstreamError("embedding down")

        with pytest.raises(MemoryServiceError):
            memory_service.store("hello")

    def test_store_many_uses_one_batch(self, memory_service, gateway):
        ids = memory_service.store_many([
            ("first memory", Modality.TEXT, None),
            ("second memory", "image", {"image_name": "a.png"}),
        ])

        assert len(ids) == 2
        gateway.embed_batch.assert_called_once_with(["first memory", "second memory"])
        assert memory_service.stats().total_memories == 2

    def test_store_many_rejects_empty_text(self, memory_service, gateway):
        with pytest.raises(MemoryServiceError):
            memory_service.store_many([("ok", Modality.TEXT, None), ("", Modality.TEXT, None)])
        gateway.embed_batch.assert_not_called()

    def test_timestamps_increase(self, memory_service):
        memory_service.store("one two three")
        memory_service.store("four five six")

        context = memory_service.retrieve("one two three four five six", top_k=2)
        timestamps = sorted(memory.timestamp for memory in context.memories)
        assert timestamps[0] < timestamps[1]

    def test_retrieve_bounded_by_top_k(self, memory_service):
        for i in range(6):
            memory_service.store(f"memory number {i}")

        context = memory_service.retrieve("memory number", top_k=3)

        assert len(context) == 3
        scores = [memory.score for memory in context.memories]
        assert scores == sorted(scores, reverse=True)

    def test_retrieve_caps_at_max_top_k(self, gateway, vector_store):
        service = MemoryService(gateway, vector_store, MemoryConfig(max_top_k=2))
        for i in range(4):
            service.store(f"memory number {i}")

        assert len(service.retrieve("memory", top_k=10)) == 2

    def test_retrieve_non_positive_top_k(self, memory_service, gateway):
        memory_service.store("hello world")
        gateway.embed.reset_mock()

        assert memory_service.retrieve("hello", top_k=0).is_empty
        gateway.embed.assert_not_called()

    def test_retrieve_empty_store(self, memory_service):
        assert memory_service.retrieve("anything").is_empty

    def test_retrieve_with_modality(self, memory_service):
        memory_service.store("bird song at dawn", Modality.AUDIO)
        memory_service.store("bird on a branch", Modality.IMAGE)

        context = memory_service.retrieve("bird", modality="image")

        assert [memory.modality for memory in context.memories] == [Modality.IMAGE]

    def test_retrieve_failure(self, memory_service, gateway):
        gateway.embed.side_effect = UpstreamError("embedding down")

        with pytest.raises(MemoryServiceError):
            memory_service.retrieve("hello")


class TestContextPrompt:
    """Test cases for context prompt assembly."""

    def make_context(self, *texts):
        return QueryContext(memories=[
            RetrievedMemory(id=str(i), text=text, modality=Modality.TEXT, score=0.9)
            for i, text in enumerate(texts)
        ])

    def test_numbered_lines(self, memory_service):
        prompt = memory_service.build_context_prompt(self.make_context("first", "second"))
        assert prompt == "1. [text, 90%] first\n2. [text, 90%] second"

    def test_memory_truncation(self, gateway, vector_store):
        service = MemoryService(gateway, vector_store, MemoryConfig(max_memory_chars=5))
        prompt = service.build_context_prompt(self.make_context("abcdefghij"))
        assert prompt == "1. [text, 90%] abcde..."

    def test_total_budget(self, gateway, vector_store):
        service = MemoryService(gateway, vector_store, MemoryConfig(max_context_chars=30))
        prompt = service.build_context_prompt(self.make_context("first memory", "second memory"))
        assert prompt.count("\n") == 0

    def test_system_prompt_without_context(self, memory_service):
        assert memory_service.build_system_prompt(QueryContext()) == memory_service.config.system_prompt

    def test_system_prompt_with_context(self, memory_service):
        prompt = memory_service.build_system_prompt(self.make_context("likes tea"))
        assert prompt.startswith(memory_service.config.system_prompt)
        assert "1. [text, 90%] likes tea" in prompt


class TestChatWithContext:
    """Test cases for memory-augmented chat."""

    def test_chat_uses_and_stores_memory(self, memory_service, gateway):
        memory_service.store("the user's dog is called Rex", Modality.TEXT)
        gateway.complete.return_value = "Your dog is called Rex."

        result = memory_service.chat_with_context("what is my dog called")

        assert result.response == "Your dog is called Rex."
        assert result.memory_saved
        assert not result.context.is_empty
        messages = gateway.complete.call_args[0][0]
        assert messages[0].role == "system"
        assert "Rex" in messages[0].content
        assert messages[-1].content == "what is my dog called"
        # stored memory plus both chat turns
        assert memory_service.stats().total_memories == 3

    def test_chat_does_not_retrieve_current_turn(self, memory_service):
        result = memory_service.chat_with_context("a brand new message")
        assert result.context.is_empty

    def test_chat_without_memory(self, memory_service, gateway):
        result = memory_service.chat_with_context("hello", use_memory=False)

        assert not result.memory_saved
        assert result.context.is_empty
        gateway.embed.assert_not_called()
        assert memory_service.stats().total_memories == 0

    def test_chat_includes_history(self, memory_service, gateway):
        history = [
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello"),
        ]

        memory_service.chat_with_context("how are you", history)

        messages = gateway.complete.call_args[0][0]
        assert [m.content for m in messages[1:3]] == ["hi", "hello"]

    def test_chat_truncates_history(self, gateway, vector_store):
        service = MemoryService(gateway, vector_store, MemoryConfig(max_history_turns=1))
        history = [
            ChatMessage(role="user", content="old"),
            ChatMessage(role="assistant", content="recent"),
        ]

        service.chat_with_context("next", history, use_memory=False)

        messages = gateway.complete.call_args[0][0]
        assert [m.content for m in messages][1:] == ["recent", "next"]

    def test_chat_continues_when_retrieval_fails(self, memory_service, gateway):
        gateway.embed.side_effect = UpstreamError("embedding down")

        result = memory_service.chat_with_context("hello")

        assert result.response == "mock answer"
        assert result.context.is_empty
        assert not result.memory_saved

    def test_chat_completion_failure_propagates(self, memory_service, gateway):
        gateway.complete.side_effect = UpstreamError("chat down")

        with pytest.raises(UpstreamError):
            memory_service.chat_with_context("hello")


class TestManagement:
    """Test cases for clearing and statistics."""

    def test_stats(self, memory_service):
        memory_service.store("text one", Modality.TEXT)
        memory_service.store("audio one", Modality.AUDIO)

        stats = memory_service.stats()

        assert stats.total_memories == 2
        assert stats.by_type == {"text": 1, "audio": 1}
        assert stats.exact

    def test_stats_idempotent(self, memory_service):
        memory_service.store("text one")
        assert memory_service.stats() == memory_service.stats()

    def test_clear_deletes_everything(self, memory_service, vector_store):
        vector_store.config.delete_batch_size = 2
        for i in range(5):
            memory_service.store(f"memory {i}")

        result = memory_service.clear()

        assert result.deleted == 5
        assert result.supported
        assert memory_service.stats().total_memories == 0

    def test_clear_partial_failure(self, gateway):
        store = Mock()
        store.config.delete_batch_size = 2
        store.list_ids.return_value = ["a", "b", "c"]
        store.delete_by_ids.side_effect = [None, StoreError("gone")]
        service = MemoryService(gateway, store)

        with pytest.raises(MemoryServiceError) as exc_info:
            service.clear()
        assert "after 2 deletions" in exc_info.value.message

    def test_stats_failure(self, gateway):
        store = Mock()
        store.stats.side_effect = StoreError("down")
        service = MemoryService(gateway, store)

        with pytest.raises(MemoryServiceError):
            service.stats()
