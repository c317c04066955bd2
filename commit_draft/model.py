"""
Loaded model handle exposing a position-aware forward pass
"""
import gc
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import torch
from transformers import DynamicCache

from commit_draft.artifacts import CheckpointFormat

logger = logging.getLogger(__name__)

SUPPORTED_FAMILIES = ("qwen2", "qwen3")
DEFAULT_WINDOW_SIZE = 512


class DecodeStrategy(Enum):
    """
    How context is fed to the model on each decode step

    INCREMENTAL keeps a key/value cache and submits only tokens the cache
    has not seen. WINDOWED keeps no state and resubmits the trailing window
    of the context every step.
    """

    INCREMENTAL = "incremental"
    WINDOWED = "windowed"


def strategy_for_family(model_type: str, use_cache: bool = True) -> DecodeStrategy:
    if model_type in SUPPORTED_FAMILIES and use_cache:
        return DecodeStrategy.INCREMENTAL
    return DecodeStrategy.WINDOWED


@dataclass(frozen=True)
class ArchitectureConfig:
    """Architecture summary used for logging and sanity checks"""

    model_type: str
    hidden_size: int
    num_layers: int
    num_heads: int
    num_kv_heads: int
    vocab_size: int
    max_positions: Optional[int] = None
    use_cache: bool = True

    @classmethod
    def from_pretrained_config(cls, config) -> "ArchitectureConfig":
        num_heads = config.num_attention_heads
        return cls(
            model_type=config.model_type,
            hidden_size=config.hidden_size,
            num_layers=config.num_hidden_layers,
            num_heads=num_heads,
            num_kv_heads=getattr(config, "num_key_value_heads", None) or num_heads,
            vocab_size=config.vocab_size,
            max_positions=getattr(config, "max_position_embeddings", None),
            use_cache=getattr(config, "use_cache", True),
        )

    def describe(self) -> str:
        return (
            f"{self.model_type}: hidden={self.hidden_size} layers={self.num_layers} "
            f"heads={self.num_heads} kv_heads={self.num_kv_heads} vocab={self.vocab_size}"
        )


class ModelHandle:
    """
    Owns a causal LM module for the duration of one generation call

    ``forward(tokens, position)`` returns raw logits. In incremental mode
    ``position`` must equal the number of tokens already in the cache; in
    windowed mode it is the absolute index of the first submitted token.
    """

    def __init__(
        self,
        module: torch.nn.Module,
        config: ArchitectureConfig,
        checkpoint_format: CheckpointFormat,
        strategy: Optional[DecodeStrategy] = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
    ):
        self.module = module
        self.config = config
        self.format = checkpoint_format
        self.strategy = strategy or strategy_for_family(config.model_type, config.use_cache)
        self.window_size = window_size
        self._cache = None

    @property
    def parameter_count(self) -> int:
        if self.module is None:
            return 0
        return sum(p.numel() for p in self.module.parameters())

    @property
    def cached_tokens(self) -> int:
        if self._cache is None:
            return 0
        return self._cache.get_seq_length()

    def reset(self):
        """Drop any incremental state"""
        self._cache = DynamicCache() if self.strategy is DecodeStrategy.INCREMENTAL else None

    def forward(self, tokens: Sequence[int], position: int) -> torch.Tensor:
        if self.module is None:
            raise RuntimeError("model handle is closed")
        if not tokens:
            raise ValueError("forward needs at least one token")

        input_ids = torch.tensor([list(tokens)], dtype=torch.long)
        cache_position = torch.arange(position, position + len(tokens), dtype=torch.long)

        with torch.inference_mode():
            if self.strategy is DecodeStrategy.WINDOWED:
                outputs = self.module(
                    input_ids=input_ids,
                    position_ids=cache_position.unsqueeze(0),
                    use_cache=False,
                )
                return outputs.logits

            if position == 0 or self._cache is None:
                self.reset()
            if self.cached_tokens != position:
                raise ValueError(
                    f"position {position} does not match {self.cached_tokens} cached tokens"
                )
            outputs = self.module(
                input_ids=input_ids,
                position_ids=cache_position.unsqueeze(0),
                cache_position=cache_position,
                past_key_values=self._cache,
                use_cache=True,
            )
            if outputs.past_key_values is not None:
                self._cache = outputs.past_key_values
            return outputs.logits

    def close(self):
        """Release weights and cache"""
        self._cache = None
        if self.module is not None:
            self.module = None
            gc.collect()
            logger.debug("Released model weights")
