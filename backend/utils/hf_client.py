"""
HuggingFace Client - Model loading and inference wrapper

Responsibilities:
- Load model with optional 4-bit quantization
- Generate chat completions from a system + user prompt pair
- Generate JSON-formatted completions with light cleanup
- Handle CUDA errors
- Optional diagnostics (token counts, latency)

Design principles:
- Dependency injection (no singleton): one client shared by all
  collaborators of a process
- Fail fast on critical errors (CUDA OOM, model not loaded)
- Malformed output is the caller's problem: the client only cleans up
  formatting noise, collaborators decide on fallbacks
"""

import logging
import time
from typing import Any, Dict, Optional, Union

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    BitsAndBytesConfig
)

from backend.utils.prompt_formatter import PromptFormatter, merge_system_into_user

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"
DEVICE_CPU = "cpu"
DEVICE_MAP_AUTO = "auto"


class HuggingFaceClient:
    """Wrapper for HuggingFace model inference"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        auto_format: bool = True
    ) -> None:
        """
        Initialize model and tokenizer

        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: Use 4-bit quantization (CUDA only)
            device: Device to use ("cuda" or "cpu")
            auto_format: Apply the model's chat format to prompts

        Raises:
            RuntimeError: If CUDA requested but not available
            Exception: If model loading fails
        """
        self.model_name = model_name
        self.device = device
        self.auto_format = auto_format
        self.formatter: Optional[PromptFormatter] = None

        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name} (4-bit={load_in_4bit}, device={device})")

        quantization_config = None
        if load_in_4bit and device == DEVICE_CUDA:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            if self.tokenizer.pad_token is None:
                if self.tokenizer.eos_token is not None:
                    self.tokenizer.pad_token = self.tokenizer.eos_token
                else:
                    self.tokenizer.add_special_tokens({'pad_token': '[PAD]'})
                    logger.warning("Added new [PAD] token as pad_token")
        except Exception as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

        if auto_format:
            self.formatter = PromptFormatter(model_name, self.tokenizer)
            logger.info(f"Prompt formatter initialized: {self.formatter.get_info()}")

        try:
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map=DEVICE_MAP_AUTO if device == DEVICE_CUDA else None,
                torch_dtype=torch.bfloat16 if device == DEVICE_CUDA else torch.float32
            )
        except torch.cuda.OutOfMemoryError:
            logger.error("CUDA Out of Memory during model loading")
            raise
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        self.model.eval()
        self._log_cuda_memory("after model load")
        logger.info("HuggingFace client initialized successfully")

    def _log_cuda_memory(self, stage: str) -> None:
        if self.device == DEVICE_CUDA and torch.cuda.is_available():
            allocated = torch.cuda.memory_allocated() / 1e9
            reserved = torch.cuda.memory_reserved() / 1e9
            logger.debug(f"GPU memory {stage}: {allocated:.2f}GB allocated, {reserved:.2f}GB reserved")

    def is_loaded(self) -> bool:
        return getattr(self, 'model', None) is not None and getattr(self, 'tokenizer', None) is not None

    def _format(self, prompt: str, system: Optional[str]) -> str:
        if self.formatter:
            return self.formatter.format_chat(prompt, system=system)
        return merge_system_into_user(system, prompt)

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.7,
        return_diagnostics: bool = False
    ) -> Union[str, Dict[str, Any]]:
        """
        Generate a completion for one user turn

        Args:
            prompt: User turn text
            system: Optional system instructions
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature (0.0 = greedy)
            return_diagnostics: Include token counts and timing

        Returns:
            str: Generated text (if return_diagnostics=False)
            dict: {'text': str, 'diagnostics': {...}} (if return_diagnostics=True)

        Raises:
            RuntimeError: If model not loaded
            torch.cuda.OutOfMemoryError: If GPU runs out of memory
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        start_time = time.time()
        formatted = self._format(prompt, system)

        inputs = self.tokenizer(formatted, return_tensors="pt")
        if self.device == DEVICE_CUDA:
            inputs = inputs.to(DEVICE_CUDA)
        prompt_tokens = inputs.input_ids.shape[1]

        try:
            with torch.no_grad():
                outputs = self.model.generate(
                    inputs.input_ids,
                    attention_mask=inputs.attention_mask,
                    max_new_tokens=max_tokens,
                    temperature=temperature if temperature > 0 else None,
                    do_sample=temperature > 0,
                    pad_token_id=self.tokenizer.pad_token_id
                )
        except torch.cuda.OutOfMemoryError:
            logger.error(f"CUDA OOM during generation (prompt tokens: {prompt_tokens}, max new: {max_tokens})")
            raise

        generated_ids = outputs[0][prompt_tokens:]
        generated_text = self.tokenizer.decode(generated_ids, skip_special_tokens=True)
        elapsed_ms = (time.time() - start_time) * 1000

        logger.debug(f"Generated {len(generated_ids)} tokens in {elapsed_ms:.0f}ms")

        if return_diagnostics:
            return {
                "text": generated_text,
                "diagnostics": {
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": len(generated_ids),
                    "latency_ms": elapsed_ms,
                }
            }
        return generated_text

    def generate_json(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.7
    ) -> str:
        """
        Generate a completion expected to hold one JSON object

        Strips markdown fences and any prose around the outermost
        braces. Does not validate the JSON.

        Returns:
            str: Candidate JSON string. Caller must json.loads().
        """
        text = self.generate(
            prompt=prompt,
            system=system,
            max_tokens=max_tokens,
            temperature=temperature
        )
        return extract_json_object(text)

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            "model_name": self.model_name,
            "device": self.device,
            "is_loaded": self.is_loaded(),
            "auto_format": self.auto_format
        }
        if self.formatter:
            info["formatter"] = self.formatter.get_info()
        return info


def extract_json_object(text: str) -> str:
    """
    Cut the outermost {...} out of raw model output

    Examples:
        >>> extract_json_object('```json\\n{"a": 1}\\n```')
        '{"a": 1}'
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    first_brace = text.find('{')
    last_brace = text.rfind('}')
    if first_brace == -1 or last_brace < first_brace:
        logger.warning("No JSON object found in model output")
        return text

    return text[first_brace:last_brace + 1]
