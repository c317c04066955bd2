import pytest
import torch

from commit_draft.model import DecodeStrategy
from commit_draft.tokenizer import TokenizerAdapter

SPECIAL_TOKENS = ["<unk>", "<|im_start|>", "<|im_end|>", "<|endoftext|>"]
WORDS = ["fix", "add", "retry", "logic", "to", "the", "uploader", "docs", "feat:", "bug"]

IM_END = 2
ENDOFTEXT = 3


def word_vocab(size=32):
    vocab = {token: i for i, token in enumerate(SPECIAL_TOKENS + WORDS)}
    while len(vocab) < size:
        vocab[f"w{len(vocab)}"] = len(vocab)
    return vocab


def word_tokenizer_definition(vocab=None, markers=True):
    vocab = vocab or word_vocab()
    added = []
    if markers:
        for content in SPECIAL_TOKENS[1:]:
            added.append({
                "id": vocab[content],
                "content": content,
                "single_word": False,
                "lstrip": False,
                "rstrip": False,
                "normalized": False,
                "special": True,
            })
    return {
        "version": "1.0",
        "truncation": None,
        "padding": None,
        "added_tokens": added,
        "normalizer": None,
        "pre_tokenizer": {"type": "Whitespace"},
        "post_processor": None,
        "decoder": None,
        "model": {"type": "WordLevel", "vocab": vocab, "unk_token": "<unk>"},
    }


@pytest.fixture
def tokenizer():
    return TokenizerAdapter.from_definition(word_tokenizer_definition())


class ScriptedModel:
    """
    Stands in for a model handle: every forward pass puts all the mass on
    the next scripted token and records what it was given
    """

    def __init__(self, script, vocab_size=32, strategy=DecodeStrategy.INCREMENTAL,
                 window_size=512, fail_at_call=None, rank=3):
        self.script = list(script)
        self.vocab_size = vocab_size
        self.strategy = strategy
        self.window_size = window_size
        self.fail_at_call = fail_at_call
        self.rank = rank
        self.calls = []
        self.closed = False

    def forward(self, tokens, position):
        call = len(self.calls)
        self.calls.append((list(tokens), position))
        if self.fail_at_call is not None and call == self.fail_at_call:
            raise RuntimeError("kernel exploded")

        target = self.script[call % len(self.script)]
        row = torch.zeros(self.vocab_size)
        row[target] = 50.0
        if self.rank == 3:
            logits = torch.zeros(1, len(tokens), self.vocab_size)
            logits[0, -1] = row
            return logits
        return row.unsqueeze(0)

    def close(self):
        self.closed = True


@pytest.fixture
def scripted_model():
    return ScriptedModel
