"""
Test rebuilding live sessions from journal entries
"""

import pytest

from backend.commands import (
    AddGreeting,
    ClarifyingQuestionReady,
    SelectVoice,
    SubmitUserInput,
    SubmitUserResponse,
    VoicesReady,
)
from backend.core.conversation_serializer import snapshot_to_json
from backend.core.conversation_state_machine import ConversationStateMachine
from backend.core.messages import SelectedVoice
from backend.core.session_restore import can_resume, restore_session
from backend.persistence import JournalEntry
from backend.results import RestoredSession, RestoreUnavailable
from backend.utils.conversation_stages import ChatStage

NOW = "2026-03-01T10:00:00Z"


def make_entry(conversation_data, thinker=None):
    return JournalEntry(
        id="entry-1",
        user_id="u1",
        user_input="I feel stuck",
        created_at=NOW,
        updated_at=NOW,
        thinker=thinker,
        conversation_data=conversation_data,
    )


@pytest.fixture
def machine():
    return ConversationStateMachine()


@pytest.fixture
def showing_state(machine, passages):
    state = machine.initial_state()
    for action in (
        AddGreeting("Sam"),
        SubmitUserInput("I feel stuck"),
        ClarifyingQuestionReady(acknowledgment="I hear you.", question="What's underneath that?"),
        SubmitUserResponse("Fear of failing"),
        VoicesReady(passages),
    ):
        state = machine.apply(state, action)
    return state


class TestRestoreSession:

    def test_null_conversation_data(self):
        result = restore_session(make_entry(None))
        assert isinstance(result, RestoreUnavailable)
        assert "no conversation data" in result.reason

    def test_empty_dict(self):
        assert isinstance(restore_session(make_entry({})), RestoreUnavailable)

    def test_unknown_stage(self, showing_state):
        data = snapshot_to_json(showing_state, now=NOW)
        data['stage'] = 'daydreaming'
        result = restore_session(make_entry(data))
        assert isinstance(result, RestoreUnavailable)
        assert "could not be read" in result.reason

    def test_inconsistent_snapshot(self, showing_state, passages):
        data = snapshot_to_json(showing_state, now=NOW)
        data['stage'] = 'voice_selected'
        result = restore_session(make_entry(data))
        assert isinstance(result, RestoreUnavailable)
        assert "inconsistent" in result.reason
        assert "selected_voice=None in stage 'voice_selected'" in result.reason

    def test_restores_showing_voices(self, showing_state, passages):
        result = restore_session(make_entry(snapshot_to_json(showing_state, now=NOW)))

        assert isinstance(result, RestoredSession)
        state = result.state
        assert state.stage == ChatStage.SHOWING_VOICES
        assert state.user_input == "I feel stuck"
        assert state.clarification == "Fear of failing"
        assert state.fetched_voices == passages
        assert state.shown_thinkers == showing_state.shown_thinkers
        assert state.journal_entry_id == "entry-1"
        assert state.is_saved is False
        assert state.error is None
        assert [m.type for m in state.messages] == [m.type for m in showing_state.messages]

    def test_fresh_message_ids(self, showing_state):
        state = restore_session(make_entry(snapshot_to_json(showing_state, now=NOW))).state
        ids = [m.id for m in state.messages]

        assert all(i.startswith("restored-") for i in ids)
        assert len(set(ids)) == len(ids)
        assert not set(ids) & {m.id for m in showing_state.messages}

    def test_selected_voice_restored_expanded(self, machine, showing_state, passages):
        selected = machine.apply(showing_state, SelectVoice(passages[1]))
        state = restore_session(make_entry(snapshot_to_json(selected, now=NOW))).state

        assert state.stage == ChatStage.VOICE_SELECTED
        assert state.selected_voice == passages[1]
        assert state.latest(SelectedVoice).expanded is True

    def test_fetched_voices_from_last_cards(self, showing_state, passages):
        data = snapshot_to_json(showing_state, now=NOW)
        del data['fetchedVoices']
        state = restore_session(make_entry(data)).state
        assert state.fetched_voices == passages

    def test_restored_session_continues(self, machine, showing_state, passages):
        state = restore_session(make_entry(snapshot_to_json(showing_state, now=NOW))).state
        state = machine.apply(state, SelectVoice(passages[3]))
        assert state.stage == ChatStage.VOICE_SELECTED


class TestCanResume:

    def test_resumable(self, showing_state):
        assert can_resume(make_entry(snapshot_to_json(showing_state, now=NOW)))

    def test_no_data(self):
        assert not can_resume(make_entry(None))

    def test_empty_messages(self):
        assert not can_resume(make_entry({'messages': [], 'stage': 'awaiting_input'}))

    def test_voice_already_chosen(self, showing_state):
        entry = make_entry(snapshot_to_json(showing_state, now=NOW), thinker="Rumi")
        assert not can_resume(entry)
