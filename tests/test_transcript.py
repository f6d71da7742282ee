"""
Tests for Transcript and AugmentationState

Author: auxmerge contributors | 2026-10-19
"""

import pytest
from unittest.mock import AsyncMock, Mock

from auxmerge_core.markers import InsertBlock, SecondaryInstructionSet
from auxmerge_core.transcript import AugmentationState, Message, Transcript, TranscriptEvent


class TestAugmentationState:
    """Tests for AugmentationState."""

    def test_empty_state(self):
        state = AugmentationState()

        assert not state.processed
        assert not state.can_reconcile()
        assert not state.has_aux_content()

    def test_commit(self):
        state = AugmentationState()
        instructions = SecondaryInstructionSet(append=["x"])

        state.commit("primary", "[APPEND]x[/APPEND]", instructions)

        assert state.primary_original == "primary"
        assert state.raw_secondary_output == "[APPEND]x[/APPEND]"
        assert state.instructions is instructions
        assert state.can_reconcile()
        assert state.has_aux_content()

    def test_dict_round_trip(self):
        state = AugmentationState(processed=True)
        state.commit("p", "raw", SecondaryInstructionSet(prepend=["a"], inserts=[InsertBlock(1, "i")]))

        restored = AugmentationState.from_dict(state.to_dict())

        assert restored.primary_original == "p"
        assert restored.processed
        assert restored.instructions.prepend == ["a"]
        assert restored.instructions.inserts == [InsertBlock(1, "i")]

    def test_from_empty_dict(self):
        state = AugmentationState.from_dict({})

        assert state.instructions is None
        assert not state.processed


class TestTranscript:
    """Tests for Transcript."""

    def test_add_and_get(self):
        t = Transcript("t1")
        first = t.add_message("user", "hi")
        second = t.add_message("assistant", "hello")

        assert first.id == 0
        assert second.id == 1
        assert t.get_message(1) is second
        assert t.get_message(5) is None
        assert t.last_message_id() == 1
        assert first.is_user
        assert not second.is_user

    def test_empty_transcript(self):
        assert Transcript("t1").last_message_id() is None

    def test_delete_message(self):
        t = Transcript("t1")
        t.add_message("user", "a")
        t.add_message("assistant", "b")

        assert t.delete_message(0)
        assert not t.delete_message(0)
        assert t.add_message("user", "c").id == 2

    def test_render(self):
        t = Transcript("t1")
        msg = t.add_message("assistant", "old")

        t.render(msg.id, "new")
        t.render(msg.id, "new")
        t.render(99, "ignored")

        assert msg.content == "new"
        assert t.render_count == 2

    @pytest.mark.asyncio
    async def test_receive_emits_event(self):
        t = Transcript("t1")
        handler = Mock(return_value=None)
        t.on(TranscriptEvent.MESSAGE_RECEIVED, handler)

        msg = await t.receive_message("assistant", "hello")

        handler.assert_called_once_with(msg.id)

    @pytest.mark.asyncio
    async def test_async_handlers_awaited(self):
        t = Transcript("t1")
        handler = AsyncMock()
        t.on(TranscriptEvent.MESSAGE_EDITED, handler)
        msg = t.add_message("assistant", "hello")

        await t.edit_message(msg.id, "edited")

        handler.assert_awaited_once_with(msg.id)
        assert msg.content == "edited"

    @pytest.mark.asyncio
    async def test_edit_unknown_message(self):
        t = Transcript("t1")
        handler = Mock()
        t.on(TranscriptEvent.MESSAGE_EDITED, handler)

        assert await t.edit_message(3, "x") is None
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_off(self):
        t = Transcript("t1")
        handler = Mock()
        t.on(TranscriptEvent.MESSAGE_RECEIVED, handler)
        t.off(TranscriptEvent.MESSAGE_RECEIVED, handler)

        await t.receive_message("assistant", "x")

        handler.assert_not_called()

    def test_save_and_load(self, temp_dir):
        t = Transcript("chat_42", character_id="c1", character_name="Aria", lore_books=["world"])
        t.add_message("user", "hi", name="Sam")
        msg = t.add_message("assistant", "A\n\nB\n\nX")
        msg.augmentation.commit("A\n\nB", "[APPEND]X[/APPEND]", SecondaryInstructionSet(append=["X"]))
        msg.augmentation.processed = True

        path = t.save(str(temp_dir))
        loaded = Transcript.load("chat_42", str(temp_dir))

        assert path.exists()
        assert loaded.character_name == "Aria"
        assert loaded.lore_books == ["world"]
        restored = loaded.get_message(1)
        assert restored.augmentation.primary_original == "A\n\nB"
        assert restored.augmentation.instructions.append == ["X"]
        assert loaded.add_message("user", "next").id == 2

    def test_load_missing(self, temp_dir):
        assert Transcript.load("nope", str(temp_dir)) is None

    def test_message_from_dict_defaults(self):
        msg = Message.from_dict({"id": 3, "role": "assistant"})

        assert msg.content == ""
        assert not msg.augmentation.processed
