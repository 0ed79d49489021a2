"""
Clarifier - LLM-powered clarifying question

Purpose:
    Turn the user's opening statement into a short warm acknowledgment
    plus one gentle clarifying question.

Error Handling:
    - LLM call fails (CUDA OOM, model error) -> raise RuntimeError (the
      orchestrator records it and appends the fallback pair)
    - LLM returns invalid JSON or no question -> log warning, return the
      fallback pair
"""

import json
import logging
from typing import Any, Dict

from backend.contracts import ClarifyResponse
from backend.utils import fallbacks
from backend.utils.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class Clarifier:
    """Ask one clarifying question about what the user shared"""

    def __init__(
        self,
        hf_client,
        prompt_builder: PromptBuilder = None,
        temperature: float = 0.7,
        max_tokens: int = 256
    ) -> None:
        """
        Args:
            hf_client: Loaded HuggingFaceClient (or anything with
                generate_json() and is_loaded())
            prompt_builder: PromptBuilder (default: new instance)
            temperature: LLM sampling temperature
            max_tokens: Max tokens to generate (output is a small JSON)

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

        logger.info(f"Clarifier initialized (temp={temperature}, max_tokens={max_tokens})")

    def get_clarifying_question(self, user_input: str) -> ClarifyResponse:
        """
        Args:
            user_input: The user's opening statement

        Returns:
            ClarifyResponse(acknowledgment, question)

        Raises:
            RuntimeError: If the LLM call fails
        """
        spec = self.prompt_builder.build_clarify_prompt(user_input)

        try:
            llm_output = self.hf_client.generate_json(
                prompt=spec.user,
                system=spec.system,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            logger.error(f"Clarifier LLM call failed: {type(e).__name__} - {e}")
            raise RuntimeError(f"Clarifier LLM call failed: {e}") from e

        logger.debug(f"Clarifier raw LLM output: {llm_output}")
        return self._parse_llm_output(llm_output)

    def _parse_llm_output(self, llm_output: str) -> ClarifyResponse:
        try:
            parsed: Dict[str, Any] = json.loads(llm_output)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Clarifier: Invalid JSON from LLM: {e}")
            logger.warning(f"Clarifier: Raw output was: {str(llm_output)[:200]}")
            return self._fallback()

        if not isinstance(parsed, dict):
            logger.warning(f"Clarifier: Expected JSON object, got {type(parsed).__name__}")
            return self._fallback()

        question = parsed.get('question')
        if not isinstance(question, str) or not question.strip():
            logger.warning("Clarifier: Missing question in LLM output")
            return self._fallback()

        acknowledgment = parsed.get('acknowledgment')
        if not isinstance(acknowledgment, str):
            acknowledgment = ""

        return ClarifyResponse(acknowledgment=acknowledgment.strip(), question=question.strip())

    @staticmethod
    def _fallback() -> ClarifyResponse:
        return ClarifyResponse(
            acknowledgment=fallbacks.FALLBACK_CLARIFY_ACKNOWLEDGMENT,
            question=fallbacks.FALLBACK_CLARIFY_QUESTION,
        )
