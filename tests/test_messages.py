"""
Test message model and passage contract
"""

import pytest

from backend.contracts import Passage, Tradition
from backend.core.messages import (
    LOADING_MESSAGE_ID,
    MESSAGE_TYPES,
    ClarifyingQuestion,
    Greeting,
    SelectedVoice,
    UserInput,
    UserResponse,
    VoiceCards,
    is_user_authored,
    loading,
    message_text,
    with_expanded,
)
from backend.utils.helpers import get_greeting


class TestMessages:

    def test_ids_are_unique(self):
        ids = {Greeting("Hi").id for _ in range(200)}
        assert len(ids) == 200

    def test_loading_uses_fixed_id(self):
        assert loading().id == LOADING_MESSAGE_ID
        assert loading("Thinking...").id == LOADING_MESSAGE_ID
        assert loading("Thinking...").text == "Thinking..."

    def test_type_tags_cover_every_variant(self):
        assert set(MESSAGE_TYPES) == {
            'greeting', 'user_input', 'clarifying_question', 'user_response',
            'voices_intro', 'voice_cards', 'selected_voice', 'loading',
            'reflection_acknowledgment',
        }

    def test_messages_are_immutable(self):
        msg = UserInput("I feel stuck")
        with pytest.raises(Exception):
            msg.text = "changed"

    def test_with_expanded_keeps_id(self, passages):
        voice = SelectedVoice(voice=passages[0])
        collapsed = with_expanded(voice, False)

        assert collapsed.id == voice.id
        assert collapsed.expanded is False
        assert voice.expanded is True

    def test_with_expanded_rejects_other_variants(self):
        with pytest.raises(TypeError, match="selected_voice"):
            with_expanded(Greeting("Hi"), False)

    def test_message_text(self, passages):
        assert message_text(ClarifyingQuestion("Why?", acknowledgment="Ok.")) == "Why?"
        assert message_text(VoiceCards(passages)) is None
        assert message_text(loading()) is None

    def test_message_text_unknown_variant(self):
        with pytest.raises(TypeError):
            message_text("not a message")

    def test_is_user_authored(self):
        assert is_user_authored(UserInput("a"))
        assert is_user_authored(UserResponse("b"))
        assert not is_user_authored(Greeting("Hi"))


class TestGreeting:

    def test_anonymous(self):
        assert get_greeting() == "Hi"

    def test_named(self):
        assert get_greeting("Sam") == "Hi, Sam"


class TestPassageJson:

    def test_camel_case_keys(self, passages):
        data = passages[0].to_json()
        assert data['reflectionQuestion'] == passages[0].reflection_question
        assert data['thinkerDates'] == '4 BC-65 AD'
        assert data['tradition'] == 'stoicism'

    def test_optional_fields_omitted(self, passages):
        data = passages[1].to_json()
        assert 'thinkerDates' not in data

    def test_from_json(self, passages):
        assert Passage.from_json(passages[0].to_json()) == passages[0]

    def test_missing_key(self, passages):
        data = passages[0].to_json()
        del data['reflectionQuestion']
        with pytest.raises(ValueError, match="reflectionQuestion"):
            Passage.from_json(data)

    def test_unknown_tradition(self, passages):
        data = dict(passages[0].to_json(), tradition='hermeticism')
        with pytest.raises(ValueError, match="Unknown tradition"):
            Passage.from_json(data)

    def test_tradition_is_enum(self, passages):
        assert Passage.from_json(passages[2].to_json()).tradition is Tradition.SUFISM
