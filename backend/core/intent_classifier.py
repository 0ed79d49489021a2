"""
Intent Classifier - LLM-powered two-way classification

Decides whether text sent after a reflection acknowledgment asks for
more voices or continues the reflection.

Error Handling:
    Never raises for model problems. Call failure, invalid JSON or an
    unknown label all yield continue_reflecting with confidence 0.5, so
    the user's text is kept as a reflection rather than lost.
"""

import json
import logging

from backend.contracts import Intent, IntentClassification
from backend.utils.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

VALID_INTENTS = {intent.value for intent in Intent}


class IntentClassifier:
    """Classify a reply to "Would you like to hear more voices on this?" """

    def __init__(
        self,
        hf_client,
        prompt_builder: PromptBuilder = None,
        temperature: float = 0.0,
        max_tokens: int = 64
    ) -> None:
        """
        Raises:
            TypeError: If hf_client is missing generate_json()
            RuntimeError: If hf_client model not loaded
        """
        if not callable(getattr(hf_client, 'generate_json', None)):
            raise TypeError("hf_client must have callable generate_json() method")

        if not callable(getattr(hf_client, 'is_loaded', None)):
            raise TypeError("hf_client must have callable is_loaded() method")

        if not hf_client.is_loaded():
            raise RuntimeError("HuggingFace client model not loaded")

        self.hf_client = hf_client
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.temperature = temperature
        self.max_tokens = max_tokens

        logger.info(f"IntentClassifier initialized (temp={temperature}, max_tokens={max_tokens})")

    def classify(self, text: str) -> IntentClassification:
        """
        Args:
            text: User message sent in reflection_acknowledged

        Returns:
            IntentClassification. The top label is always acted on.
        """
        spec = self.prompt_builder.build_intent_prompt(text)

        try:
            llm_output = self.hf_client.generate_json(
                prompt=spec.user,
                system=spec.system,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            logger.warning(f"IntentClassifier LLM call failed, defaulting to continue_reflecting: {e}")
            return self._safe_default()

        try:
            parsed = json.loads(llm_output)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"IntentClassifier: Invalid JSON from LLM: {e}")
            return self._safe_default()

        if not isinstance(parsed, dict):
            logger.warning(f"IntentClassifier: Expected JSON object, got {type(parsed).__name__}")
            return self._safe_default()

        label = parsed.get('intent')
        if label not in VALID_INTENTS:
            logger.warning(f"IntentClassifier: Unknown intent {label!r}")
            return self._safe_default()

        confidence = parsed.get('confidence', DEFAULT_CONFIDENCE)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            logger.warning(f"IntentClassifier: Non-numeric confidence {confidence!r}, using {DEFAULT_CONFIDENCE}")
            confidence = DEFAULT_CONFIDENCE
        confidence = min(max(float(confidence), 0.0), 1.0)

        classification = IntentClassification(intent=Intent(label), confidence=confidence)
        logger.info(f"Intent: {classification.intent.value} (confidence={classification.confidence:.2f})")
        return classification

    @staticmethod
    def _safe_default() -> IntentClassification:
        return IntentClassification(intent=Intent.CONTINUE_REFLECTING, confidence=DEFAULT_CONFIDENCE)
