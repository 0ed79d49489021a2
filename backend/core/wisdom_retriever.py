"""
Wisdom Retriever - LLM-powered passage retrieval

Purpose:
    Surface a batch of short passages ("voices") from different wisdom
    traditions that speak to what the user shared.

Contract:
    - Target 4 passages spanning at least 3 traditions (asked of the
      model, not enforced)
    - Thinkers in exclude_thinkers are not offered again when the model
      leaves any alternative
    - Every returned passage has a known tradition and a unique id

Error Handling:
    - LLM call fails -> raise RuntimeError (the orchestrator surfaces an
      error, no cards are shown)
    - Invalid JSON / no passages list -> log warning, FALLBACK_PASSAGES
    - Passage without id -> generated id
    - Passage with unknown tradition or missing fields -> dropped
    - Nothing survives -> FALLBACK_PASSAGES
"""

import json
import logging
from typing import Any, Iterable, List, Optional

from backend.contracts import Passage, VALID_TRADITIONS, WisdomResponse
from backend.utils import fallbacks
from backend.utils.helpers import generate_entry_id
from backend.utils.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class WisdomRetriever:
    """Retrieve candidate passages for the user's situation"""

    def __init__(
        self,
        hf_client,
        prompt_builder: PromptBuilder = None,
        temperature: float = 0.7,
        max_tokens: int = 1024
    ) -> None:
        """
        Args:
            hf_client: Loaded HuggingFaceClient (shared with the other collaborators)
            prompt_builder: PromptBuilder (default: new instance)
            temperature: LLM sampling temperature
            max_tokens: Max tokens to generate (four passages of JSON)

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

        logger.info(f"WisdomRetriever initialized (temp={temperature}, max_tokens={max_tokens})")

    def get_wisdom_passages(
        self,
        user_input: str,
        clarification: str,
        conversation_context: Optional[str] = None,
        exclude_thinkers: Optional[Iterable[str]] = None
    ) -> WisdomResponse:
        """
        Args:
            user_input: Opening statement
            clarification: Latest clarification text
            conversation_context: Conversation summary (more-voices fetches)
            exclude_thinkers: Thinkers already shown in this session

        Returns:
            WisdomResponse with at least one passage

        Raises:
            RuntimeError: If the LLM call fails
        """
        excluded = list(exclude_thinkers or [])
        spec = self.prompt_builder.build_wisdom_prompt(
            user_input=user_input,
            clarification=clarification,
            conversation_context=conversation_context,
            exclude_thinkers=excluded
        )

        try:
            llm_output = self.hf_client.generate_json(
                prompt=spec.user,
                system=spec.system,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            logger.error(f"WisdomRetriever LLM call failed: {type(e).__name__} - {e}")
            raise RuntimeError(f"WisdomRetriever LLM call failed: {e}") from e

        logger.debug(f"WisdomRetriever raw LLM output: {str(llm_output)[:500]}")

        passages = self._parse_llm_output(llm_output)
        passages = self._apply_exclusions(passages, excluded)

        traditions = {p.tradition.value for p in passages}
        logger.info(f"Retrieved {len(passages)} passages across {len(traditions)} traditions")
        if len(traditions) < 3:
            logger.warning(f"Passage batch spans only {len(traditions)} traditions")

        return WisdomResponse(passages=tuple(passages))

    def _parse_llm_output(self, llm_output: str) -> List[Passage]:
        try:
            parsed = json.loads(llm_output)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"WisdomRetriever: Invalid JSON from LLM: {e}")
            logger.warning(f"WisdomRetriever: Raw output was: {str(llm_output)[:200]}")
            return list(fallbacks.FALLBACK_PASSAGES)

        raw_passages = parsed.get('passages') if isinstance(parsed, dict) else None
        if not isinstance(raw_passages, list):
            logger.warning("WisdomRetriever: Missing passages list in LLM output")
            return list(fallbacks.FALLBACK_PASSAGES)

        passages = []
        seen_ids = set()
        for index, raw in enumerate(raw_passages):
            passage = self._coerce_passage(raw, index)
            if passage is None:
                continue
            if passage.id in seen_ids:
                passage = Passage.from_json({**passage.to_json(), 'id': self._generate_id(passage.tradition.value)})
            seen_ids.add(passage.id)
            passages.append(passage)

        if not passages:
            logger.warning("WisdomRetriever: No usable passages, using fallback list")
            return list(fallbacks.FALLBACK_PASSAGES)

        return passages

    def _coerce_passage(self, raw: Any, index: int) -> Optional[Passage]:
        if not isinstance(raw, dict):
            logger.warning(f"WisdomRetriever: Passage {index} is not an object, dropped")
            return None

        tradition = raw.get('tradition')
        if isinstance(tradition, str):
            tradition = tradition.strip().lower()
        if tradition not in VALID_TRADITIONS:
            logger.warning(f"WisdomRetriever: Passage {index} has unknown tradition {tradition!r}, dropped")
            return None

        data = {**raw, 'tradition': tradition}
        if not data.get('id'):
            data['id'] = self._generate_id(tradition)

        try:
            return Passage.from_json(data)
        except ValueError as e:
            logger.warning(f"WisdomRetriever: Passage {index} malformed ({e}), dropped")
            return None

    @staticmethod
    def _generate_id(tradition: str) -> str:
        return f"{tradition}-{generate_entry_id(short=True)}"

    @staticmethod
    def _apply_exclusions(passages: List[Passage], excluded: List[str]) -> List[Passage]:
        if not excluded:
            return passages

        excluded_set = set(excluded)
        fresh = [p for p in passages if p.thinker not in excluded_set]
        if not fresh:
            logger.warning("WisdomRetriever: Every passage repeats a shown thinker, keeping batch as is")
            return passages

        if len(fresh) < len(passages):
            logger.info(f"Dropped {len(passages) - len(fresh)} passages from already shown thinkers")
        return fresh
