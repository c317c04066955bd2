"""
Autoregressive decode loop
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

import torch

from commit_draft.errors import EmptyGenerationError, InferenceError
from commit_draft.model import DecodeStrategy
from commit_draft.sampling import RepetitionGuard, Sampler

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 5


class StopReason(Enum):
    END_OF_SEQUENCE = "end_of_sequence"
    MAX_TOKENS = "max_tokens"
    REPETITION = "repetition"


@dataclass
class GenerationResult:
    tokens: List[int]
    stop_reason: StopReason
    prompt_length: int


def last_logits(logits: torch.Tensor) -> torch.Tensor:
    """
    Reduce a forward-pass output to one vocabulary-sized float32 row

    Accepts ``[batch, seq, vocab]``, ``[batch, vocab]`` or ``[vocab]``.
    """
    if logits.dim() > 1:
        logits = logits.squeeze(0)
    if logits.dim() == 2:
        logits = logits[-1]
    return logits.to(torch.float32)


class GenerationEngine:
    """
    Drive a model handle from a prompt to a list of generated tokens

    The first forward pass submits the whole prompt at position 0. Every
    later step submits only what the model has not incorporated yet: the
    last sampled token for incremental models, or the trailing window of the
    context for windowed ones.
    """

    def __init__(self, model, tokenizer, sampler: Sampler, guard: RepetitionGuard):
        self.model = model
        self.tokenizer = tokenizer
        self.sampler = sampler
        self.guard = guard

    @property
    def strategy(self) -> DecodeStrategy:
        return self.model.strategy

    def _input_start(self, context: Sequence[int], incorporated: int) -> int:
        if self.strategy is DecodeStrategy.INCREMENTAL:
            return incorporated
        return max(0, len(context) - self.model.window_size)

    def run(self, prompt_tokens: Sequence[int], max_tokens: int) -> GenerationResult:
        """
        Generate up to ``max_tokens`` tokens after ``prompt_tokens``

        Raises:
            InferenceError: a forward pass failed
            EmptyGenerationError: nothing was generated
        """
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be at least 1, got {max_tokens}")
        if not prompt_tokens:
            raise ValueError("prompt must contain at least one token")

        eos_ids = self.tokenizer.end_of_sequence_ids()
        context = list(prompt_tokens)
        generated: List[int] = []
        incorporated = 0
        stop_reason = StopReason.MAX_TOKENS

        self.sampler.reset()
        logger.info("Prompt length: %d tokens, generating up to %d", len(context), max_tokens)

        while len(generated) < max_tokens:
            step = len(generated)
            start = self._input_start(context, incorporated)
            try:
                logits = self.model.forward(context[start:], start)
            except Exception as e:
                raise InferenceError(step, start, str(e)) from e

            if self.strategy is DecodeStrategy.INCREMENTAL:
                incorporated = len(context)

            scores = self.guard.apply(last_logits(logits), context)
            token = self.sampler.sample(scores)
            context.append(token)
            generated.append(token)

            if token in eos_ids:
                stop_reason = StopReason.END_OF_SEQUENCE
                break
            if self.guard.is_cycling(generated):
                logger.info("Repeating pattern detected, stopping early")
                stop_reason = StopReason.REPETITION
                break

            if step % PROGRESS_EVERY == 0 and logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Generated %d tokens (last: %s): %r",
                    len(generated), generated[-5:],
                    self.tokenizer.decode(generated)[:100],
                )

        if not generated:
            raise EmptyGenerationError()

        logger.info("Generated %d tokens (%s)", len(generated), stop_reason.value)
        return GenerationResult(generated, stop_reason, len(prompt_tokens))
