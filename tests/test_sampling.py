import pytest
import torch

from commit_draft.sampling import RepetitionGuard, Sampler


@pytest.fixture
def logits():
    torch.manual_seed(42)
    return torch.randn(100)


class TestSampler:
    def test_same_seed_same_sequence(self, logits):
        first = Sampler(seed=7, temperature=0.8)
        second = Sampler(seed=7, temperature=0.8)
        assert [first.sample(logits) for _ in range(20)] == [second.sample(logits) for _ in range(20)]

    def test_reset_rewinds_stream(self, logits):
        sampler = Sampler(seed=7)
        before = [sampler.sample(logits) for _ in range(10)]
        sampler.reset()
        assert [sampler.sample(logits) for _ in range(10)] == before

    def test_zero_temperature_is_greedy(self, logits):
        sampler = Sampler(temperature=0.0)
        assert sampler.sample(logits) == int(torch.argmax(logits))

    def test_dominant_token_is_sampled(self):
        row = torch.zeros(10)
        row[6] = 100.0
        assert Sampler().sample(row) == 6


class TestRepetitionGuard:
    def test_skipped_while_context_shorter_than_window(self):
        guard = RepetitionGuard(penalty=2.0, window=8)
        row = torch.ones(10)
        assert torch.equal(guard.apply(row, [1, 2, 3]), row)

    def test_penalizes_tokens_in_trailing_window(self):
        guard = RepetitionGuard(penalty=2.0, window=4)
        row = torch.tensor([4.0, -4.0, 4.0, 4.0, 4.0, 4.0])
        # token 2 is outside the trailing window of four
        penalized = guard.apply(row, [2, 0, 1, 0, 5])

        assert penalized.tolist() == [2.0, -8.0, 4.0, 4.0, 4.0, 2.0]

    def test_skipped_when_context_exactly_fills_window(self):
        guard = RepetitionGuard(penalty=2.0, window=4)
        row = torch.full((5,), 4.0)
        assert torch.equal(guard.apply(row, [0, 1, 2, 3]), row)

    def test_applies_once_context_exceeds_window(self):
        guard = RepetitionGuard(penalty=2.0, window=4)
        row = torch.full((5,), 4.0)
        assert guard.apply(row, [0, 0, 1, 2, 3]).tolist() == [2.0, 2.0, 2.0, 2.0, 4.0]

    def test_penalty_of_one_is_a_no_op(self):
        guard = RepetitionGuard(penalty=1.0, window=2)
        row = torch.tensor([1.0, 2.0, 3.0])
        assert torch.equal(guard.apply(row, [0, 1, 2]), row)

    def test_detects_cycle(self):
        guard = RepetitionGuard()
        cycle = list("abcdefghij")
        assert guard.is_cycling(cycle + cycle)
        assert guard.is_cycling(["x", "y"] + cycle + cycle)

    def test_needs_twenty_tokens(self):
        guard = RepetitionGuard()
        assert not guard.is_cycling(list("abcdefghij") + list("abcdefghi"))

    def test_broken_cycle(self):
        guard = RepetitionGuard()
        assert not guard.is_cycling(list("abcdefghij") + list("abcdefghiz"))
