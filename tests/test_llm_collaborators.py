"""
Test the LLM-backed collaborators against a mocked HuggingFace client

Covers:
- Constructor validation of the client
- Parsing of well-formed model output
- Fallbacks for malformed output
- Error propagation when the call itself fails
"""

import json
from unittest.mock import Mock

import pytest

from backend.contracts import Intent, Tradition
from backend.core.clarifier import Clarifier
from backend.core.intent_classifier import IntentClassifier
from backend.core.reflection_acknowledger import ReflectionAcknowledger
from backend.core.wisdom_retriever import WisdomRetriever
from backend.utils import fallbacks

COLLABORATORS = [Clarifier, WisdomRetriever, ReflectionAcknowledger, IntentClassifier]


@pytest.fixture
def hf_client():
    client = Mock()
    client.is_loaded.return_value = True
    return client


def passage_json(passage_id, thinker, tradition, **overrides):
    data = {
        "id": passage_id,
        "tradition": tradition,
        "thinker": thinker,
        "role": "Teacher",
        "text": f"A saying of {thinker}.",
        "context": f"{thinker} lived long ago.",
        "reflectionQuestion": "What does this stir in you?",
    }
    data.update(overrides)
    return data


class TestClientValidation:

    @pytest.mark.parametrize("collaborator", COLLABORATORS)
    def test_missing_generate_json(self, collaborator):
        client = Mock(spec=['is_loaded'])
        with pytest.raises(TypeError, match="generate_json"):
            collaborator(client)

    @pytest.mark.parametrize("collaborator", COLLABORATORS)
    def test_missing_is_loaded(self, collaborator):
        client = Mock(spec=['generate_json'])
        with pytest.raises(TypeError, match="is_loaded"):
            collaborator(client)

    @pytest.mark.parametrize("collaborator", COLLABORATORS)
    def test_model_not_loaded(self, collaborator, hf_client):
        hf_client.is_loaded.return_value = False
        with pytest.raises(RuntimeError, match="not loaded"):
            collaborator(hf_client)


class TestClarifier:

    def test_parses_question(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({
            "acknowledgment": "I hear you.",
            "question": "What's underneath that?",
        })
        response = Clarifier(hf_client).get_clarifying_question("I feel stuck")

        assert response.acknowledgment == "I hear you."
        assert response.question == "What's underneath that?"

    def test_sends_system_and_user(self, hf_client):
        hf_client.generate_json.return_value = '{"question": "Why?"}'
        Clarifier(hf_client, temperature=0.3, max_tokens=100).get_clarifying_question("I feel stuck")

        kwargs = hf_client.generate_json.call_args.kwargs
        assert kwargs['prompt'] == 'The user shared: "I feel stuck"'
        assert "clarifying question" in kwargs['system']
        assert kwargs['temperature'] == 0.3
        assert kwargs['max_tokens'] == 100

    def test_missing_acknowledgment(self, hf_client):
        hf_client.generate_json.return_value = '{"question": "Why?"}'
        response = Clarifier(hf_client).get_clarifying_question("I feel stuck")
        assert response.acknowledgment == ""
        assert response.question == "Why?"

    @pytest.mark.parametrize("output", ["not json", "[1, 2]", '{"acknowledgment": "Ok"}', '{"question": "  "}'])
    def test_malformed_output_falls_back(self, hf_client, output):
        hf_client.generate_json.return_value = output
        response = Clarifier(hf_client).get_clarifying_question("I feel stuck")

        assert response.acknowledgment == fallbacks.FALLBACK_CLARIFY_ACKNOWLEDGMENT
        assert response.question == fallbacks.FALLBACK_CLARIFY_QUESTION

    def test_call_failure_raises(self, hf_client):
        hf_client.generate_json.side_effect = ValueError("CUDA out of memory")
        with pytest.raises(RuntimeError, match="CUDA out of memory"):
            Clarifier(hf_client).get_clarifying_question("I feel stuck")


class TestWisdomRetriever:

    def test_parses_passages(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({"passages": [
            passage_json("seneca-1", "Seneca", "stoicism", thinkerDates="4 BC-65 AD"),
            passage_json("rumi-1", "Rumi", "Sufism"),
            passage_json("laozi-1", "Laozi", "taoism", source="Tao Te Ching"),
        ]})
        response = WisdomRetriever(hf_client).get_wisdom_passages("I feel stuck", "Fear")

        assert [p.thinker for p in response.passages] == ["Seneca", "Rumi", "Laozi"]
        assert response.passages[1].tradition is Tradition.SUFISM
        assert response.passages[0].thinker_dates == "4 BC-65 AD"
        assert response.passages[2].source == "Tao Te Ching"

    def test_generates_missing_and_duplicate_ids(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({"passages": [
            passage_json(None, "Seneca", "stoicism"),
            passage_json("same", "Rumi", "sufism"),
            passage_json("same", "Hillel", "judaism"),
        ]})
        passages = WisdomRetriever(hf_client).get_wisdom_passages("I feel stuck", "Fear").passages

        assert passages[0].id.startswith("stoicism-")
        assert passages[1].id == "same"
        assert passages[2].id.startswith("judaism-")
        assert len({p.id for p in passages}) == 3

    def test_drops_unusable_passages(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({"passages": [
            passage_json("a", "Hermes", "hermeticism"),
            "just a string",
            {"id": "b", "tradition": "stoicism", "thinker": "Epictetus"},
            passage_json("c", "Hillel", "judaism"),
        ]})
        passages = WisdomRetriever(hf_client).get_wisdom_passages("I feel stuck", "Fear").passages

        assert [p.id for p in passages] == ["c"]

    @pytest.mark.parametrize("output", ["no json here", '{"quotes": []}', '{"passages": []}'])
    def test_fallback_passages(self, hf_client, output):
        hf_client.generate_json.return_value = output
        passages = WisdomRetriever(hf_client).get_wisdom_passages("I feel stuck", "Fear").passages
        assert passages == fallbacks.FALLBACK_PASSAGES

    def test_excluded_thinkers_in_prompt_and_filtered(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({"passages": [
            passage_json("seneca-1", "Seneca", "stoicism"),
            passage_json("merton-1", "Thomas Merton", "christianity"),
        ]})
        retriever = WisdomRetriever(hf_client)
        passages = retriever.get_wisdom_passages(
            "I feel stuck", "Fear",
            conversation_context="User has engaged with wisdom from Seneca.",
            exclude_thinkers=["Seneca"],
        ).passages

        assert [p.thinker for p in passages] == ["Thomas Merton"]
        prompt = hf_client.generate_json.call_args.kwargs['prompt']
        assert "already shown: Seneca" in prompt
        assert "User has engaged with wisdom from Seneca." in prompt

    def test_keeps_batch_when_all_excluded(self, hf_client):
        hf_client.generate_json.return_value = json.dumps({"passages": [
            passage_json("seneca-1", "Seneca", "stoicism"),
        ]})
        passages = WisdomRetriever(hf_client).get_wisdom_passages(
            "I feel stuck", "Fear", exclude_thinkers=["Seneca"]
        ).passages
        assert [p.thinker for p in passages] == ["Seneca"]

    def test_call_failure_raises(self, hf_client):
        hf_client.generate_json.side_effect = RuntimeError("generation failed")
        with pytest.raises(RuntimeError, match="WisdomRetriever LLM call failed"):
            WisdomRetriever(hf_client).get_wisdom_passages("I feel stuck", "Fear")


class TestReflectionAcknowledger:

    def test_parses_acknowledgment(self, hf_client, passages):
        hf_client.generate_json.return_value = json.dumps({
            "acknowledgment": "That is honest.\n\nWould you like to hear more voices on this?"
        })
        response = ReflectionAcknowledger(hf_client).acknowledge("I feel stuck", passages[0], "I hold on")

        assert response.acknowledgment.startswith("That is honest.")
        kwargs = hf_client.generate_json.call_args.kwargs
        assert kwargs['prompt'] == "I hold on"
        assert "Seneca" in kwargs['system']

    @pytest.mark.parametrize("output", ["oops", '{"acknowledgment": ""}', '["a"]'])
    def test_fallback(self, hf_client, passages, output):
        hf_client.generate_json.return_value = output
        response = ReflectionAcknowledger(hf_client).acknowledge("I feel stuck", passages[0], "I hold on")
        assert response.acknowledgment == fallbacks.FALLBACK_ACKNOWLEDGMENT

    def test_call_failure_raises(self, hf_client, passages):
        hf_client.generate_json.side_effect = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            ReflectionAcknowledger(hf_client).acknowledge("I feel stuck", passages[0], "I hold on")


class TestIntentClassifier:

    def test_wants_more_voices(self, hf_client):
        hf_client.generate_json.return_value = '{"intent": "wants_more_voices", "confidence": 0.95}'
        result = IntentClassifier(hf_client).classify("yes please")

        assert result.intent is Intent.WANTS_MORE_VOICES
        assert result.confidence == 0.95

    def test_low_confidence_still_acted_on(self, hf_client):
        hf_client.generate_json.return_value = '{"intent": "wants_more_voices", "confidence": 0.1}'
        assert IntentClassifier(hf_client).classify("maybe").intent is Intent.WANTS_MORE_VOICES

    def test_confidence_clamped(self, hf_client):
        hf_client.generate_json.return_value = '{"intent": "continue_reflecting", "confidence": 7}'
        assert IntentClassifier(hf_client).classify("hmm").confidence == 1.0

    def test_bad_confidence(self, hf_client):
        hf_client.generate_json.return_value = '{"intent": "continue_reflecting", "confidence": "high"}'
        assert IntentClassifier(hf_client).classify("hmm").confidence == 0.5

    @pytest.mark.parametrize("output", ["garbage", '{"intent": "leave"}', "[]"])
    def test_safe_default(self, hf_client, output):
        hf_client.generate_json.return_value = output
        result = IntentClassifier(hf_client).classify("sure")

        assert result.intent is Intent.CONTINUE_REFLECTING
        assert result.confidence == 0.5

    def test_call_failure_defaults(self, hf_client):
        hf_client.generate_json.side_effect = RuntimeError("boom")
        result = IntentClassifier(hf_client).classify("sure")
        assert result.intent is Intent.CONTINUE_REFLECTING

    def test_deterministic_temperature(self, hf_client):
        hf_client.generate_json.return_value = '{"intent": "continue_reflecting", "confidence": 0.9}'
        IntentClassifier(hf_client).classify("let me think")
        assert hf_client.generate_json.call_args.kwargs['temperature'] == 0.0
