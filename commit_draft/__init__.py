"""
Offline commit message drafting with a local language model
"""
from commit_draft.generator import CommitMessageGenerator, generate

__version__ = "0.1.0"

__all__ = ["CommitMessageGenerator", "generate"]
