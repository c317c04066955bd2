"""
Turn generated tokens into a clean, never-empty string
"""
from typing import Sequence

from commit_draft.tokenizer import DECODE_PLACEHOLDER

BOUNDARY_MARKERS = ("<|im_start|>", "<|im_end|>", "<|endoftext|>")


def strip_markers(text: str) -> str:
    for marker in BOUNDARY_MARKERS:
        text = text.replace(marker, "")
    return text


def sanitize(text: str) -> str:
    """
    Remove turn markers and surrounding whitespace

    Falls back, in order, to the trimmed raw text, the raw text with only
    the markers removed, and finally a placeholder.
    """
    cleaned = strip_markers(text.strip()).strip()
    if cleaned:
        return cleaned

    cleaned = text.strip()
    if cleaned:
        return cleaned

    cleaned = strip_markers(text)
    if cleaned:
        return cleaned

    return DECODE_PLACEHOLDER


def render_output(tokenizer, tokens: Sequence[int]) -> str:
    """Decode ``tokens`` with ``tokenizer`` and sanitize the result"""
    return sanitize(tokenizer.decode(tokens, skip_special_tokens=True))
