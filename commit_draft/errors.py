"""
Error types raised while locating, loading and running a local model
"""
from pathlib import Path
from typing import Iterable, List, Tuple


class CommitDraftError(Exception):
    """Base class for every fatal commit-draft error"""


class ArtifactNotFound(CommitDraftError):
    """No discovery strategy matched a usable checkpoint"""

    def __init__(self, message: str, checked_paths: Iterable[Path] = ()):
        self.checked_paths: List[Path] = [Path(p) for p in checked_paths]
        if self.checked_paths:
            listing = "\n".join(f"  - {p}" for p in self.checked_paths)
            message = f"{message}\nChecked:\n{listing}"
        super().__init__(message)


class ConfigParseError(CommitDraftError):
    """The architecture configuration file could not be parsed"""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        super().__init__(f"Invalid model config {self.path}: {reason}")


class TokenizerLoadError(CommitDraftError):
    """The tokenizer definition could not be read or built"""

    def __init__(self, path, reason: str):
        self.path = Path(path) if path is not None else None
        source = self.path if self.path is not None else "checkpoint metadata"
        super().__init__(f"Cannot load tokenizer from {source}: {reason}")


class TokenizationError(CommitDraftError):
    """Prompt text could not be encoded"""


class WeightLoadError(CommitDraftError):
    """Weight files could not be mapped or did not match the architecture"""

    def __init__(self, reason: str, candidates: Iterable[Path] = ()):
        self.candidates: List[Tuple[Path, bool]] = [
            (Path(p), Path(p).exists()) for p in candidates
        ]
        lines = [f"Failed to load weights: {reason}"]
        for path, exists in self.candidates:
            lines.append(f"  - {path} (exists: {exists})")
        super().__init__("\n".join(lines))


class InferenceError(CommitDraftError):
    """A forward pass failed during decoding"""

    def __init__(self, step: int, position: int, reason: str):
        self.step = step
        self.position = position
        super().__init__(
            f"Forward pass failed at step {step} (position {position}): {reason}"
        )


class EmptyGenerationError(CommitDraftError):
    """The decode loop stopped without producing a single token"""

    def __init__(self):
        super().__init__("No tokens produced by the model")
