"""
Prompt Formatter - Model-specific chat formatting

Responsibilities:
- Detect model family from model name
- Turn a (system, user) prompt pair into the model's chat format
- Use tokenizer chat template if available
- Fold the system prompt into the user turn for families without a
  system role

Design principles:
- Tokenizer template priority (most robust)
- Manual fallback for known families
- Generic passthrough for unknown models
- Stateless formatting (no side effects)
"""

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def merge_system_into_user(system: Optional[str], user: str) -> str:
    """Single user turn carrying the system instructions first"""
    if not system:
        return user
    return f"{system}\n\n{user}"


class PromptFormatter:
    """Format (system, user) prompts for specific model families"""

    # Families whose manual format has a separate system slot
    MANUAL_SYSTEM_FORMATS = {
        "llama-3": lambda system, user: (
            "<|begin_of_text|>"
            f"<|start_header_id|>system<|end_header_id|>\n\n{system}<|eot_id|>"
            f"<|start_header_id|>user<|end_header_id|>\n\n{user}<|eot_id|>"
            "<|start_header_id|>assistant<|end_header_id|>\n\n"
        ),
        "zephyr": lambda system, user: f"<|system|>\n{system}\n<|user|>\n{user}\n<|assistant|>\n",
        "phi": lambda system, user: f"<|system|>\n{system}<|end|>\n<|user|>\n{user}<|end|>\n<|assistant|>\n",
        "qwen": lambda system, user: (
            f"<|im_start|>system\n{system}<|im_end|>\n"
            f"<|im_start|>user\n{user}<|im_end|>\n"
            "<|im_start|>assistant\n"
        ),
    }

    # Families with a user turn only. System text is merged into it.
    MANUAL_USER_FORMATS = {
        "mistral": lambda user: f"[INST] {user} [/INST]",
        "mixtral": lambda user: f"[INST] {user} [/INST]",
        "llama-2": lambda user: f"[INST] {user} [/INST]",
        "llama": lambda user: f"[INST] {user} [/INST]",
    }

    def __init__(self, model_name: str, tokenizer=None):
        """
        Initialize formatter

        Args:
            model_name: HuggingFace model identifier
            tokenizer: Optional tokenizer with chat_template attribute
        """
        self.model_name = model_name
        self.tokenizer = tokenizer
        self.model_family = self._detect_model_family(model_name)

        self.has_chat_template = (
            tokenizer is not None and
            getattr(tokenizer, 'chat_template', None) is not None
        )

        if self.has_chat_template:
            logger.info(f"Using tokenizer chat template for {model_name}")
        elif self.model_family in self.MANUAL_SYSTEM_FORMATS or self.model_family in self.MANUAL_USER_FORMATS:
            logger.info(f"Using manual formatting for {self.model_family} family")
        else:
            logger.warning(
                f"No chat template or known format for {model_name}. "
                f"Using generic (no formatting)"
            )

    def _detect_model_family(self, model_name: str) -> str:
        """
        Detect model family from model name (most specific first)
        """
        name_lower = model_name.lower()

        if "llama-3" in name_lower or "llama3" in name_lower:
            return "llama-3"
        elif "llama-2" in name_lower or "llama2" in name_lower:
            return "llama-2"
        elif "llama" in name_lower:
            return "llama"
        elif "mixtral" in name_lower:
            return "mixtral"
        elif "mistral" in name_lower:
            return "mistral"
        elif "zephyr" in name_lower:
            return "zephyr"
        elif "qwen" in name_lower:
            return "qwen"
        elif "phi" in name_lower:
            return "phi"
        else:
            return "generic"

    def _apply_template(self, messages: List[Dict[str, str]]) -> str:
        return self.tokenizer.apply_chat_template(
            messages,
            tokenize=False,
            add_generation_prompt=True
        )

    def format_chat(self, user: str, system: Optional[str] = None) -> str:
        """
        Format a system + user prompt pair for the model

        Priority:
        1. Tokenizer chat template (system role, then merged user turn if
           the template rejects system messages)
        2. Manual formatting for known family
        3. Generic passthrough (system and user joined)

        Args:
            user: User turn text
            system: Optional system instructions

        Returns:
            str: Formatted prompt ready for model

        Examples:
            >>> formatter = PromptFormatter("mistralai/Mistral-7B-Instruct-v0.2")
            >>> formatter.format_chat("Hello", system="Be brief.")
            '[INST] Be brief.\\n\\nHello [/INST]'
        """
        if self.has_chat_template:
            if system:
                try:
                    return self._apply_template([
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ])
                except Exception as e:
                    # Some templates (Mistral, Gemma) raise on a system role
                    logger.debug(f"Chat template rejected system role: {e}")
            try:
                return self._apply_template([
                    {"role": "user", "content": merge_system_into_user(system, user)},
                ])
            except Exception as e:
                logger.warning(
                    f"Tokenizer chat template failed: {e}. "
                    f"Falling back to manual formatting"
                )

        if system and self.model_family in self.MANUAL_SYSTEM_FORMATS:
            return self.MANUAL_SYSTEM_FORMATS[self.model_family](system, user)

        if self.model_family in self.MANUAL_USER_FORMATS:
            return self.MANUAL_USER_FORMATS[self.model_family](merge_system_into_user(system, user))

        if self.model_family in self.MANUAL_SYSTEM_FORMATS:
            return self.MANUAL_SYSTEM_FORMATS[self.model_family]("", user)

        logger.debug("No formatting applied (generic model)")
        return merge_system_into_user(system, user)

    def format_instruction(self, prompt: str) -> str:
        """Single-turn formatting without system instructions"""
        return self.format_chat(prompt)

    def get_info(self) -> dict:
        return {
            "model_name": self.model_name,
            "model_family": self.model_family,
            "has_chat_template": self.has_chat_template,
            "formatting_method": (
                "tokenizer_template" if self.has_chat_template
                else "manual" if (self.model_family in self.MANUAL_SYSTEM_FORMATS
                                  or self.model_family in self.MANUAL_USER_FORMATS)
                else "none"
            )
        }
