import pytest

import config
from models import LIFESTYLE_DIM
from training_data import (
    BUDGET_ARCHETYPES,
    INCOME_BRACKETS,
    SEED_CATEGORIES,
    SEED_TRANSACTIONS,
    is_holiday_month,
    make_budget_dataset,
    make_lifestyle_dataset,
    normalize_ratios,
)


def test_lifestyle_dataset_shapes_and_one_hot_groups():
    texts, labels = make_lifestyle_dataset(50, seed=1)
    assert len(texts) == len(labels) == 50
    for label in labels:
        assert len(label) == LIFESTYLE_DIM
        for start in (4, 7, 10, 13):
            assert sum(label[start:start + 3]) == 1.0


def test_lifestyle_dataset_is_reproducible():
    assert make_lifestyle_dataset(20, seed=4) == make_lifestyle_dataset(20, seed=4)


def test_lifestyle_text_mentions_rent_when_labelled():
    texts, labels = make_lifestyle_dataset(100, seed=2)
    for text, label in zip(texts, labels):
        if label[0] == 1.0:
            assert any(p in text for p in ("thuê", "chung cư", "căn hộ"))


def test_budget_dataset_size_and_simplex():
    data = make_budget_dataset(seed=0)
    base = len(INCOME_BRACKETS) * len(BUDGET_ARCHETYPES) * 12
    assert len(data) == 2 * base
    for sample in data:
        assert sum(sample.target_ratios) == pytest.approx(1.0)
        assert len(sample.lifestyle_signals) == LIFESTYLE_DIM
        assert sample.is_holiday_season == is_holiday_month(sample.month)


def test_low_income_gets_higher_needs():
    data = make_budget_dataset(seed=0)
    base = data[: len(data) // 2]
    low = next(s for s in base if s.income == 5_000_000 and s.month == 6)
    mid = next(s for s in base if s.income == 10_000_000 and s.month == 6)
    assert low.target_ratios[0] > mid.target_ratios[0]


def test_holiday_months():
    assert [m for m in range(1, 13) if is_holiday_month(m)] == list(config.HOLIDAY_MONTHS)


def test_normalize_ratios():
    assert normalize_ratios([2, 1, 1]) == [0.5, 0.25, 0.25]
    with pytest.raises(ValueError):
        normalize_ratios([0, 0, 0])


def test_seed_corpus_uses_known_categories():
    ids = {c[0] for c in SEED_CATEGORIES}
    assert all(category_id in ids for _, category_id, _ in SEED_TRANSACTIONS)
