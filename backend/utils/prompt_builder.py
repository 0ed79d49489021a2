"""
Prompt Builder - Construct the reflection prompts

Responsibilities:
- Hold the system prompts for each LLM collaborator
- Build the user turn for each call from conversation data
- Validate inputs before a prompt is built

NOT responsible for:
- Model-specific formatting (PromptFormatter)
- LLM calls
- Parsing responses

Design principles:
- Fail-fast validation (no partial builds)
- Deterministic: same inputs, same prompt text
- Output is a (system, user) pair, the client formats it for the model
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from backend.contracts import Passage, Tradition

logger = logging.getLogger(__name__)


class PromptBuildError(Exception):
    """Raised when prompt cannot be built due to invalid input"""
    pass


@dataclass(frozen=True)
class PromptSpec:
    """
    A prompt ready to send.

    Attributes:
        system: System instructions
        user: User turn text
    """
    system: str
    user: str

    def __post_init__(self):
        if not self.system or not isinstance(self.system, str):
            raise PromptBuildError("system prompt must be non-empty string")
        if not self.user or not isinstance(self.user, str):
            raise PromptBuildError("user prompt must be non-empty string")


CLARIFY_SYSTEM_PROMPT = """You are a thoughtful companion in a spiritual wisdom app called Pania. Your role is to help users explore what's on their mind before surfacing wisdom from various traditions.

When a user shares something, you should:
1. Provide a brief, warm acknowledgment (1 short sentence)
2. Ask ONE gentle clarifying question to understand the emotional core

Guidelines:
- Never diagnose, label, or give advice
- Focus on feelings and meaning, not logistics
- Keep your tone warm, present, and unhurried
- The question should help surface what really matters to them

Respond in JSON format:
{
  "acknowledgment": "Brief warm acknowledgment",
  "question": "Your single clarifying question"
}"""

_TRADITION_LIST = "\n".join(f"- {t.value}" for t in Tradition)

WISDOM_SYSTEM_PROMPT = f"""You are a thoughtful companion in a spiritual wisdom app called Pania. Based on what the user has shared, surface 4 passages from different spiritual and philosophical traditions that speak to their situation.

Available traditions (use exactly these names):
{_TRADITION_LIST}

For each passage:
- Use real, accurate quotes from public domain texts or well-known teachings
- Include proper attribution (thinker name, their role/tradition, source if known)
- Provide brief historical context about the thinker
- Create a personalized reflection question based on the user's specific situation

Guidelines:
- Always include passages from at least 3-4 DIFFERENT traditions
- Keep quotes short and punchy (1-3 sentences)
- Never editorialize or rank the passages
- The reflection question should connect the wisdom to their specific situation

Respond in JSON format:
{{
  "passages": [
    {{
      "id": "unique-id",
      "tradition": "stoicism",
      "thinker": "Marcus Aurelius",
      "thinkerDates": "121-180 AD",
      "role": "Roman Emperor, Stoic philosopher",
      "text": "The quote here",
      "source": "Meditations, Book 4",
      "context": "Brief context about when/why this was written",
      "reflectionQuestion": "A question connecting this to their situation"
    }}
  ]
}}"""

INTENT_SYSTEM_PROMPT = """You are a text classifier for a spiritual reflection app.

Context: The system just asked the user "Would you like to hear more voices on this?"

Classify the user's response into ONE of these categories:
- "wants_more_voices": User wants to see more passages (e.g., "yes", "sure", "more please", "I'd like that", "absolutely", "why not")
- "continue_reflecting": User wants to continue their current reflection or is sharing more thoughts (e.g., "let me think", "not yet", "I'm still processing", or any substantive reflection text)

Respond in JSON format only:
{"intent": "wants_more_voices", "confidence": 0.95}"""

ACKNOWLEDGMENT_SYSTEM_TEMPLATE = """You are a thoughtful companion helping someone reflect on wisdom.

The user shared: "{user_input}"
They read this passage from {thinker}: "{passage_text}"
They reflected: "{reflection}"

Respond with a brief, warm acknowledgment (2-3 sentences) that:
- Honors their reflection
- Connects it to the wisdom they encountered
- Feels genuine, not formulaic

Then, in a SEPARATE paragraph (use \\n\\n), ask if they'd like to hear more voices on this.

Respond with JSON: {{ "acknowledgment": "your response with two paragraphs separated by \\n\\n" }}"""


def _require_text(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PromptBuildError(f"{name} must be non-empty string")
    return value


class PromptBuilder:
    """
    Build prompts for the four LLM collaborators.

    Pure: inputs -> PromptSpec. Stateless, safe to share.
    """

    def build_clarify_prompt(self, user_input: str) -> PromptSpec:
        _require_text(user_input, "user_input")
        return PromptSpec(
            system=CLARIFY_SYSTEM_PROMPT,
            user=f'The user shared: "{user_input}"',
        )

    def build_wisdom_prompt(
        self,
        user_input: str,
        clarification: str,
        conversation_context: Optional[str] = None,
        exclude_thinkers: Optional[Iterable[str]] = None
    ) -> PromptSpec:
        """
        Build the wisdom retrieval prompt.

        Args:
            user_input: Opening statement
            clarification: Latest clarification (may be empty after a
                restore of an early-stage conversation)
            conversation_context: Summary of the conversation so far, sent
                when fetching more voices
            exclude_thinkers: Thinkers already shown, never repeated

        Returns:
            PromptSpec
        """
        _require_text(user_input, "user_input")

        sections = [
            f'The user initially shared: "{user_input}"',
            f'When asked to clarify, they said: "{clarification or ""}"',
        ]

        extra = ""
        if conversation_context:
            extra += f"Additional context from the conversation:\n{conversation_context}\n"

        excluded = [t for t in (exclude_thinkers or []) if t]
        if excluded:
            extra += (
                "IMPORTANT: Do NOT include passages from these thinkers who were "
                f"already shown: {', '.join(excluded)}\n"
            )
        sections.append(extra)

        user = "\n\n".join(sections) + "\nPlease surface 4 NEW passages from different traditions that speak to this situation."

        logger.debug(f"Wisdom prompt built (context={'yes' if conversation_context else 'no'}, excluded={len(excluded)})")
        return PromptSpec(system=WISDOM_SYSTEM_PROMPT, user=user)

    def build_acknowledgment_prompt(self, user_input: str, selected_voice: Passage,
                                    reflection: str) -> PromptSpec:
        _require_text(reflection, "reflection")
        if not isinstance(selected_voice, Passage):
            raise PromptBuildError(f"selected_voice must be Passage, got {type(selected_voice).__name__}")

        system = ACKNOWLEDGMENT_SYSTEM_TEMPLATE.format(
            user_input=user_input or "",
            thinker=selected_voice.thinker,
            passage_text=selected_voice.text,
            reflection=reflection,
        )
        return PromptSpec(system=system, user=reflection)

    def build_intent_prompt(self, text: str) -> PromptSpec:
        _require_text(text, "text")
        return PromptSpec(system=INTENT_SYSTEM_PROMPT, user=text)
