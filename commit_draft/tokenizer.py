"""
Thin wrapper around the fast tokenizer engine
"""
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from tokenizers import Tokenizer
from transformers import PreTrainedTokenizerFast

from commit_draft.errors import TokenizationError, TokenizerLoadError

logger = logging.getLogger(__name__)

# Chat markers that also end a turn; either may be emitted as end of sequence
END_MARKERS = ("<|im_end|>", "<|endoftext|>")

# Qwen ids for <|endoftext|> and <|im_end|>, used when nothing else resolves
FALLBACK_EOS_IDS = (151643, 151645)

DECODE_PLACEHOLDER = "..."


class TokenizerAdapter:
    """Encode prompts, decode generations and answer end-of-sequence queries"""

    def __init__(self, tokenizer: PreTrainedTokenizerFast, eos_token_ids: Iterable[int] = ()):
        self._tokenizer = tokenizer
        self._eos_ids = self._resolve_eos_ids(eos_token_ids)

    @classmethod
    def from_file(cls, path, eos_token_ids: Iterable[int] = ()) -> "TokenizerAdapter":
        """Load a ``tokenizer.json`` definition"""
        path = Path(path)
        try:
            engine = Tokenizer.from_file(str(path))
        except Exception as e:
            raise TokenizerLoadError(path, str(e)) from e
        return cls(PreTrainedTokenizerFast(tokenizer_object=engine), eos_token_ids)

    @classmethod
    def from_definition(cls, definition: dict, eos_token_ids: Iterable[int] = ()) -> "TokenizerAdapter":
        """Build a tokenizer from an in-memory ``tokenizer.json`` style dict"""
        try:
            engine = Tokenizer.from_str(json.dumps(definition))
        except Exception as e:
            raise TokenizerLoadError(None, str(e)) from e
        return cls(PreTrainedTokenizerFast(tokenizer_object=engine), eos_token_ids)

    def _resolve_eos_ids(self, eos_token_ids: Iterable[int]) -> frozenset:
        ids = {int(i) for i in eos_token_ids if i is not None}
        for marker in END_MARKERS:
            token_id = self.token_to_id(marker)
            if token_id is not None:
                ids.add(token_id)
        if not ids:
            logger.warning("No end-of-sequence token found, using %s", FALLBACK_EOS_IDS)
            ids.update(FALLBACK_EOS_IDS)
        return frozenset(ids)

    @property
    def vocab_size(self) -> int:
        return len(self._tokenizer)

    def token_to_id(self, token: str) -> Optional[int]:
        return self._tokenizer.get_vocab().get(token)

    def end_of_sequence_ids(self) -> frozenset:
        return self._eos_ids

    def encode(self, text: str) -> List[int]:
        """
        Encode text, honouring special tokens embedded in it

        Raises:
            TokenizationError: the engine rejected the input
        """
        try:
            return list(self._tokenizer.encode(text, add_special_tokens=True))
        except Exception as e:
            raise TokenizationError(f"Failed to encode prompt: {e}") from e

    def decode(self, tokens: Sequence[int], skip_special_tokens: bool = True) -> str:
        """Decode tokens; returns a placeholder instead of raising"""
        try:
            return self._tokenizer.decode(list(tokens), skip_special_tokens=skip_special_tokens)
        except Exception as e:
            logger.warning("Token decoding failed: %s", e)
            return DECODE_PLACEHOLDER
