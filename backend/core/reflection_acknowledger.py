"""
Reflection Acknowledger - LLM-powered response to a reflection

Honors what the user wrote about the voice they chose, links it back to
the passage, and asks in a separate paragraph whether they want more
voices.

Error Handling:
    - LLM call fails -> raise RuntimeError
    - Invalid JSON / empty acknowledgment -> FALLBACK_ACKNOWLEDGMENT
"""

import json
import logging

from backend.contracts import Passage, ReflectionAcknowledgmentResponse
from backend.utils import fallbacks
from backend.utils.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class ReflectionAcknowledger:
    """Acknowledge a reflection on the selected voice"""

    def __init__(
        self,
        hf_client,
        prompt_builder: PromptBuilder = None,
        temperature: float = 0.7,
        max_tokens: int = 256
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

        logger.info(f"ReflectionAcknowledger initialized (temp={temperature}, max_tokens={max_tokens})")

    def acknowledge(self, user_input: str, selected_voice: Passage,
                    reflection: str) -> ReflectionAcknowledgmentResponse:
        spec = self.prompt_builder.build_acknowledgment_prompt(user_input, selected_voice, reflection)

        try:
            llm_output = self.hf_client.generate_json(
                prompt=spec.user,
                system=spec.system,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            logger.error(f"ReflectionAcknowledger LLM call failed: {type(e).__name__} - {e}")
            raise RuntimeError(f"ReflectionAcknowledger LLM call failed: {e}") from e

        try:
            parsed = json.loads(llm_output)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"ReflectionAcknowledger: Invalid JSON from LLM: {e}")
            return ReflectionAcknowledgmentResponse(acknowledgment=fallbacks.FALLBACK_ACKNOWLEDGMENT)

        acknowledgment = parsed.get('acknowledgment') if isinstance(parsed, dict) else None
        if not isinstance(acknowledgment, str) or not acknowledgment.strip():
            logger.warning("ReflectionAcknowledger: Missing acknowledgment in LLM output")
            return ReflectionAcknowledgmentResponse(acknowledgment=fallbacks.FALLBACK_ACKNOWLEDGMENT)

        return ReflectionAcknowledgmentResponse(acknowledgment=acknowledgment.strip())
