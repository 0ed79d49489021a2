"""
Shared fixtures: sample passages and hand-written collaborator fakes.
"""

import pytest

from backend.contracts import (
    ClarifyResponse,
    Intent,
    IntentClassification,
    Passage,
    ReflectionAcknowledgmentResponse,
    Tradition,
    WisdomResponse,
)


def make_passage(passage_id, thinker, tradition=Tradition.STOICISM, **overrides):
    fields = dict(
        id=passage_id,
        tradition=tradition,
        thinker=thinker,
        role=f"{tradition.value.title()} teacher",
        text=f'"A saying of {thinker}."',
        context=f"{thinker} taught for many years.",
        reflection_question=f"What would {thinker} ask you now?",
    )
    fields.update(overrides)
    return Passage(**fields)


@pytest.fixture
def passage_factory():
    return make_passage


@pytest.fixture
def passages():
    return (
        make_passage('seneca-1', 'Seneca', Tradition.STOICISM, thinker_dates='4 BC-65 AD', source='Letters'),
        make_passage('laozi-8', 'Laozi', Tradition.TAOISM, source='Tao Te Ching 8'),
        make_passage('rumi-guest', 'Rumi', Tradition.SUFISM, thinker_dates='1207-1273'),
        make_passage('hillel-1', 'Hillel', Tradition.JUDAISM, source='Pirkei Avot 1:14'),
    )


@pytest.fixture
def more_passages():
    return (
        make_passage('epictetus-1', 'Epictetus', Tradition.STOICISM),
        make_passage('buddha-dp-1', 'The Buddha', Tradition.BUDDHISM, source='Dhammapada 1'),
        make_passage('merton-1', 'Thomas Merton', Tradition.CHRISTIANITY),
        make_passage('zhuangzi-1', 'Zhuangzi', Tradition.TAOISM),
    )


class FakeClarifier:
    def __init__(self):
        self.response = ClarifyResponse(acknowledgment="I hear you.", question="What's underneath that?")
        self.error = None
        self.calls = []
        self.on_call = None

    def get_clarifying_question(self, user_input):
        self.calls.append(user_input)
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return self.response


class FakeWisdomRetriever:
    def __init__(self):
        self.responses = []
        self.error = None
        self.calls = []
        self.on_call = None

    def get_wisdom_passages(self, user_input, clarification, conversation_context=None,
                            exclude_thinkers=None):
        self.calls.append({
            'user_input': user_input,
            'clarification': clarification,
            'conversation_context': conversation_context,
            'exclude_thinkers': exclude_thinkers,
        })
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return WisdomResponse(passages=tuple(self.responses.pop(0)))


class FakeAcknowledger:
    def __init__(self):
        self.text = "That is a generous reading.\n\nWould you like to hear more voices on this?"
        self.error = None
        self.calls = []

    def acknowledge(self, user_input, selected_voice, reflection):
        self.calls.append((user_input, selected_voice, reflection))
        if self.error:
            raise self.error
        return ReflectionAcknowledgmentResponse(acknowledgment=self.text)


class FakeIntentClassifier:
    def __init__(self):
        self.result = IntentClassification(intent=Intent.CONTINUE_REFLECTING, confidence=0.8)
        self.error = None
        self.calls = []

    def classify(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result


class FakeIdentity:
    def __init__(self, user_id=None, user_name=None):
        self.user_id = user_id
        self.user_name = user_name

    def current_user_id(self):
        return self.user_id

    def is_authenticated(self):
        return self.user_id is not None


@pytest.fixture
def make_identity():
    return FakeIdentity


@pytest.fixture
def clarifier():
    return FakeClarifier()


@pytest.fixture
def wisdom_retriever(passages):
    retriever = FakeWisdomRetriever()
    retriever.responses.append(passages)
    return retriever


@pytest.fixture
def acknowledger():
    return FakeAcknowledger()


@pytest.fixture
def intent_classifier():
    return FakeIntentClassifier()


@pytest.fixture
def collaborators(clarifier, wisdom_retriever, acknowledger, intent_classifier):
    return {
        'clarifier': clarifier,
        'wisdom_retriever': wisdom_retriever,
        'reflection_acknowledger': acknowledger,
        'intent_classifier': intent_classifier,
    }
