import numpy as np
import pytest

from fastvlm.sampler import TopKSampler


def fixed(value):
    return lambda: value


def test_zero_draw_picks_top_logit():
    logits = np.array([5.0, 1.0, 0.0] + [0.0] * 20, dtype=np.float32)
    assert TopKSampler(random_source=fixed(0.0)).sample(logits, temperature=1.0) == 0


def test_draw_walks_cumulative_distribution():
    # Two candidates with equal mass: 0.5 / 0.5
    logits = np.array([-50.0, 3.0, -50.0, 3.0])
    sampler = TopKSampler(top_k=2, random_source=fixed(0.75))
    # Stable ranking puts id 1 before id 3
    assert sampler.sample(logits, temperature=1.0) == 3
    sampler.random_source = fixed(0.5)
    assert sampler.sample(logits, temperature=1.0) == 1


def test_distribution_restricted_to_top_k():
    rng = np.random.default_rng(0)
    logits = rng.normal(size=1000)
    sampler = TopKSampler(top_k=50)
    ids, probs = sampler.distribution(logits, temperature=0.7)
    assert len(ids) == 50
    assert set(ids) == set(np.argsort(logits)[-50:])
    assert probs.sum() == pytest.approx(1.0)
    assert np.all(np.diff(probs) <= 1e-12)


def test_sampled_id_always_in_top_k():
    rng = np.random.default_rng(1)
    logits = rng.normal(size=500)
    top = set(np.argsort(logits)[-5:])
    sampler = TopKSampler(top_k=5, seed=42)
    for _ in range(200):
        assert sampler.sample(logits, temperature=1.5) in top


def test_draw_past_total_mass_falls_back_to_top():
    logits = np.array([1.0, 2.0, 3.0])
    assert TopKSampler(random_source=fixed(1.5)).sample(logits) == 2


def test_zero_temperature_is_greedy():
    logits = np.array([0.1, 0.9, 0.5])
    assert TopKSampler(random_source=fixed(0.99)).sample(logits, temperature=0.0) == 1


def test_vocab_smaller_than_k():
    ids, probs = TopKSampler(top_k=50).distribution(np.array([0.0, 1.0]), temperature=1.0)
    assert list(ids) == [1, 0]
    assert probs.sum() == pytest.approx(1.0)


def test_seeded_samplers_agree():
    logits = np.linspace(0, 1, 100)
    a = TopKSampler(seed=7)
    b = TopKSampler(seed=7)
    assert [a.sample(logits) for _ in range(20)] == [b.sample(logits) for _ in range(20)]


def test_empty_logits_rejected():
    with pytest.raises(ValueError):
        TopKSampler().sample(np.array([]))
