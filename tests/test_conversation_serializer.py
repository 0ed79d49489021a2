"""
Test conversation snapshots and stored message mapping
"""

import pytest

from backend.commands import (
    AddGreeting,
    ClarifyingQuestionReady,
    SelectVoice,
    SetLoading,
    SubmitUserInput,
    SubmitUserResponse,
    VoicesReady,
)
from backend.core.conversation_serializer import (
    ConversationSnapshot,
    message_from_json,
    message_to_json,
    serialize,
    snapshot_to_json,
)
from backend.core.conversation_state_machine import ConversationStateMachine
from backend.core.messages import (
    ClarifyingQuestion,
    Greeting,
    SelectedVoice,
    VoiceCards,
    loading,
)
from backend.utils.conversation_stages import ChatStage

NOW = "2026-03-01T10:00:00Z"


@pytest.fixture
def machine():
    return ConversationStateMachine()


@pytest.fixture
def selected_state(machine, passages):
    state = machine.initial_state()
    for action in (
        AddGreeting("Sam"),
        SubmitUserInput("I feel stuck"),
        ClarifyingQuestionReady(acknowledgment="I hear you.", question="What's underneath that?"),
        SubmitUserResponse("Fear of failing"),
        VoicesReady(passages),
        SelectVoice(passages[2]),
    ):
        state = machine.apply(state, action)
    return state


class TestSerialize:

    def test_snapshot_fields(self, selected_state, passages):
        snapshot = serialize(selected_state, now=NOW)

        assert snapshot.stage == ChatStage.VOICE_SELECTED
        assert snapshot.user_input == "I feel stuck"
        assert snapshot.clarification == "Fear of failing"
        assert snapshot.selected_voice == passages[2]
        assert snapshot.shown_thinkers == ('Seneca', 'Laozi', 'Rumi', 'Hillel')
        assert snapshot.saved_at == NOW
        assert snapshot.is_complete is True
        assert snapshot.fetched_voices == passages
        assert all(m.timestamp == NOW for m in snapshot.messages)

    def test_loading_is_dropped(self, machine, selected_state):
        state = machine.apply(selected_state, SetLoading("Saving..."))
        snapshot = serialize(state, now=NOW)

        assert len(snapshot.messages) == len(selected_state.messages)
        assert not any(m.message.type == 'loading' for m in snapshot.messages)

    def test_incomplete_without_selection(self, machine):
        state = machine.apply(machine.initial_state(), AddGreeting())
        state = machine.apply(state, SubmitUserInput("I feel stuck"))
        snapshot = serialize(state, now=NOW)

        assert snapshot.is_complete is False
        assert snapshot.selected_voice is None

    def test_default_timestamp(self, selected_state):
        snapshot = serialize(selected_state)
        assert snapshot.saved_at.endswith("Z")


class TestSnapshotJson:

    def test_keys(self, selected_state):
        data = snapshot_to_json(selected_state, now=NOW)

        assert set(data) == {
            'messages', 'stage', 'userInput', 'clarification', 'selectedVoice',
            'shownThinkers', 'savedAt', 'isComplete', 'fetchedVoices',
        }
        assert data['stage'] == 'voice_selected'
        assert data['selectedVoice']['thinker'] == 'Rumi'
        assert data['isComplete'] is True

    def test_stored_message_shapes(self, selected_state):
        data = snapshot_to_json(selected_state, now=NOW)
        types = [m['type'] for m in data['messages']]

        assert types == [
            'greeting', 'user_input', 'clarifying_question', 'user_response',
            'voices_intro', 'selected_voice',
        ]
        assert data['messages'][2]['acknowledgment'] == "I hear you."
        assert 'expanded' not in data['messages'][-1]
        assert all('id' not in m for m in data['messages'])

    def test_from_json(self, selected_state, passages):
        snapshot = ConversationSnapshot.from_json(snapshot_to_json(selected_state, now=NOW))

        assert snapshot.stage == ChatStage.VOICE_SELECTED
        assert snapshot.selected_voice == passages[2]
        assert snapshot.fetched_voices == passages
        assert [m.message.type for m in snapshot.messages][-1] == 'selected_voice'
        assert snapshot.messages[0].message.text == "Hi, Sam"

    def test_unknown_stage(self, selected_state):
        data = snapshot_to_json(selected_state, now=NOW)
        data['stage'] = 'daydreaming'
        with pytest.raises(ValueError, match="Unknown conversation stage"):
            ConversationSnapshot.from_json(data)

    def test_missing_stage(self, selected_state):
        data = snapshot_to_json(selected_state, now=NOW)
        del data['stage']
        with pytest.raises(ValueError, match="stage"):
            ConversationSnapshot.from_json(data)

    def test_messages_must_be_list(self):
        with pytest.raises(ValueError, match="messages"):
            ConversationSnapshot.from_json({'messages': 'nope', 'stage': 'awaiting_input'})

    def test_not_a_dict(self):
        with pytest.raises(ValueError):
            ConversationSnapshot.from_json(["messages"])

    def test_malformed_selected_voice(self, selected_state):
        data = snapshot_to_json(selected_state, now=NOW)
        del data['selectedVoice']['reflectionQuestion']
        with pytest.raises(ValueError):
            ConversationSnapshot.from_json(data)

    def test_legacy_payload_defaults(self):
        snapshot = ConversationSnapshot.from_json({
            'messages': [
                {'type': 'greeting', 'text': 'Hi', 'timestamp': NOW},
                {'type': 'loading', 'timestamp': NOW},
                {'type': 'user_input', 'text': 'I feel stuck', 'timestamp': NOW},
            ],
            'stage': 'loading_clarify',
            'shownThinkers': ['Rumi', 'Rumi', 'Laozi'],
        })

        assert len(snapshot.messages) == 2
        assert snapshot.fetched_voices is None
        assert snapshot.shown_thinkers == ('Rumi', 'Laozi')
        assert snapshot.is_complete is False
        assert snapshot.user_input == ''


class TestMessageMapping:

    def test_loading_never_stored(self):
        with pytest.raises(TypeError):
            message_to_json(loading("Thinking..."), NOW)

    def test_unknown_variant(self):
        with pytest.raises(TypeError, match="Unknown message variant"):
            message_to_json(object(), NOW)

    def test_question_without_acknowledgment(self):
        data = message_to_json(ClarifyingQuestion("Why?"), NOW)
        assert 'acknowledgment' not in data
        assert message_from_json(data).acknowledgment is None

    def test_voice_cards(self, passages):
        data = message_to_json(VoiceCards(passages), NOW)
        message = message_from_json(data)
        assert isinstance(message, VoiceCards)
        assert message.voices == passages

    def test_selected_voice_comes_back_expanded(self, passages):
        data = message_to_json(SelectedVoice(voice=passages[0], expanded=False), NOW)
        message = message_from_json(data)
        assert message.expanded is True

    def test_fresh_id(self):
        original = Greeting("Hi")
        assert message_from_json(message_to_json(original, NOW)).id != original.id

    def test_unknown_stored_type(self):
        with pytest.raises(ValueError, match="Unknown stored message type"):
            message_from_json({'type': 'banner', 'text': 'x'})

    def test_missing_text(self):
        with pytest.raises(ValueError, match="missing text"):
            message_from_json({'type': 'user_input'})
