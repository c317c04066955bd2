"""
Model loading and commit message generation
"""
import logging
from pathlib import Path
from typing import Optional

from commit_draft.artifacts import locate_artifacts, resolve_model_path
from commit_draft.config import Config
from commit_draft.engine import GenerationEngine
from commit_draft.loader import load_checkpoint
from commit_draft.model import DEFAULT_WINDOW_SIZE, DecodeStrategy
from commit_draft.runtime import configure_threads
from commit_draft.sampling import (
    DEFAULT_REPEAT_LAST_N,
    DEFAULT_REPEAT_PENALTY,
    DEFAULT_SEED,
    DEFAULT_TEMPERATURE,
    RepetitionGuard,
    Sampler,
)
from commit_draft.sanitize import render_output

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful assistant that generates commit messages based on code "
    "changes. Follow Conventional Commits format."
)

PROMPT_TEMPLATE = (
    "<|im_start|>system\n" + SYSTEM_PROMPT + "<|im_end|>\n"
    "<|im_start|>user\n{prompt}\n<|im_end|>\n"
    "<|im_start|>assistant\n"
)

DEFAULT_MAX_TOKENS = 200


def format_prompt(prompt: str) -> str:
    """Wrap a user prompt in the chat template the models were tuned on"""
    return PROMPT_TEMPLATE.format(prompt=prompt)


class CommitMessageGenerator:
    """Generate commit messages using a local model checkpoint"""

    def __init__(
        self,
        model_path,
        temperature: float = DEFAULT_TEMPERATURE,
        seed: int = DEFAULT_SEED,
        repeat_penalty: float = DEFAULT_REPEAT_PENALTY,
        repeat_last_n: int = DEFAULT_REPEAT_LAST_N,
        strategy: Optional[DecodeStrategy] = None,
        window_size: int = DEFAULT_WINDOW_SIZE,
        num_threads: Optional[int] = None,
    ):
        """
        Initialize the generator

        Args:
            model_path: Checkpoint directory or single weight file
            temperature: Sampling temperature (0 = greedy)
            seed: Seed for the sampler, fixed so runs are reproducible
            repeat_penalty: Penalty for tokens seen in the last ``repeat_last_n``
            repeat_last_n: Size of the repetition window
            strategy: Override the per-family decode strategy
            window_size: Trailing window for the windowed strategy
            num_threads: CPU threads for inference (default: all cores)
        """
        self.model_path = Path(model_path).expanduser()
        self.temperature = temperature
        self.seed = seed
        self.repeat_penalty = repeat_penalty
        self.repeat_last_n = repeat_last_n
        self.strategy = strategy
        self.window_size = window_size
        self.num_threads = num_threads

    @classmethod
    def from_config(cls, config: Config, model_path=None, model_name=None) -> "CommitMessageGenerator":
        """Build a generator from user configuration"""
        if model_path is None:
            model_path = resolve_model_path(config.models_dir, model_name or config.get("model"))
        return cls(
            model_path,
            temperature=config.get("temperature", DEFAULT_TEMPERATURE),
            seed=config.get("seed", DEFAULT_SEED),
            repeat_penalty=config.get("repeat_penalty", DEFAULT_REPEAT_PENALTY),
            repeat_last_n=config.get("repeat_last_n", DEFAULT_REPEAT_LAST_N),
            num_threads=config.get("num_threads"),
        )

    def load(self):
        """Locate and load the checkpoint; returns ``(model, tokenizer)``"""
        configure_threads(self.num_threads)
        logger.info("Loading model from %s", self.model_path)
        artifacts = locate_artifacts(self.model_path)
        logger.info(
            "Found %s checkpoint: %s",
            artifacts.format.value, ", ".join(p.name for p in artifacts.weight_files),
        )
        return load_checkpoint(artifacts, self.strategy, self.window_size)

    def generate(self, prompt: str, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
        """
        Generate a commit message for the given prompt

        The model is loaded for this call only and released afterwards.

        Args:
            prompt: Description of the changes
            max_tokens: Upper bound on generated tokens

        Returns:
            Generated commit message, never empty

        Raises:
            CommitDraftError: any fatal locate, load or inference failure
        """
        model, tokenizer = self.load()
        try:
            prompt_tokens = tokenizer.encode(format_prompt(prompt))
            engine = GenerationEngine(
                model,
                tokenizer,
                Sampler(seed=self.seed, temperature=self.temperature),
                RepetitionGuard(penalty=self.repeat_penalty, window=self.repeat_last_n),
            )
            result = engine.run(prompt_tokens, max_tokens)
            return render_output(tokenizer, result.tokens)
        finally:
            model.close()


def generate(prompt: str, max_tokens: int = DEFAULT_MAX_TOKENS, model_path=None) -> str:
    """Generate a commit message with the configured default model"""
    generator = CommitMessageGenerator.from_config(Config(), model_path=model_path)
    return generator.generate(prompt, max_tokens)
