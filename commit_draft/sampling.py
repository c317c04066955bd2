"""
Token sampling and repetition control
"""
from typing import Sequence

import torch
from transformers import RepetitionPenaltyLogitsProcessor, TemperatureLogitsWarper

DEFAULT_SEED = 299792458
DEFAULT_TEMPERATURE = 0.8
DEFAULT_REPEAT_PENALTY = 1.1
DEFAULT_REPEAT_LAST_N = 64
DEFAULT_CYCLE_LENGTH = 10


class Sampler:
    """
    Seeded temperature sampling over a single row of logits

    A temperature of 0 (or below) selects the arg-max token. The same seed
    and the same logits always give the same token sequence.
    """

    def __init__(self, seed: int = DEFAULT_SEED, temperature: float = DEFAULT_TEMPERATURE):
        self.seed = seed
        self.temperature = temperature
        self._generator = torch.Generator(device="cpu")
        self._generator.manual_seed(seed)
        self._warper = TemperatureLogitsWarper(temperature) if temperature > 0 else None

    def reset(self):
        """Rewind the random stream to the seed"""
        self._generator.manual_seed(self.seed)

    def sample(self, logits: torch.Tensor) -> int:
        if self._warper is None:
            return int(torch.argmax(logits).item())

        no_context = torch.empty((1, 0), dtype=torch.long)
        scores = self._warper(no_context, logits.unsqueeze(0))
        probs = torch.softmax(scores, dim=-1)
        token = torch.multinomial(probs, num_samples=1, generator=self._generator)
        return int(token.item())


class RepetitionGuard:
    """Penalize recently used tokens and detect cyclic output"""

    def __init__(
        self,
        penalty: float = DEFAULT_REPEAT_PENALTY,
        window: int = DEFAULT_REPEAT_LAST_N,
        cycle_length: int = DEFAULT_CYCLE_LENGTH,
    ):
        self.penalty = penalty
        self.window = window
        self.cycle_length = cycle_length
        self._processor = RepetitionPenaltyLogitsProcessor(penalty=penalty)

    def apply(self, logits: torch.Tensor, context: Sequence[int]) -> torch.Tensor:
        """
        Rescale scores of tokens seen in the trailing window of ``context``

        Positive scores are divided by the penalty and negative ones
        multiplied, so a penalized token always becomes less likely.
        Nothing happens until the context is longer than the window.
        """
        if self.penalty == 1.0 or len(context) <= self.window:
            return logits

        recent = torch.tensor([list(context[-self.window:])], dtype=torch.long)
        return self._processor(recent, logits.unsqueeze(0)).squeeze(0)

    def is_cycling(self, generated: Sequence[int]) -> bool:
        """True when the last ``cycle_length`` tokens repeat the ones before them"""
        n = self.cycle_length
        if len(generated) < 2 * n:
            return False
        return list(generated[-n:]) == list(generated[-2 * n:-n])
