import json

import pytest

import config
from lifestyle_model import LifestyleSignalModel, decode_signals, rent_estimate
from models import LEVELS, LOCATIONS, LifestyleSignals
from storage import MemoryStore


def small_model(store, **kwargs):
    kwargs.setdefault("train_delay", 60)
    return LifestyleSignalModel(store, epochs=1, synthetic_samples=60, seed=3, **kwargs)


def test_decode_thresholds_and_ties():
    probs = [0.5, 0.49, 0.9, 0.1] + [0.3, 0.3, 0.3] + [0.1, 0.2, 0.7] + [0.2, 0.6, 0.2] + [0.4, 0.4, 0.2]
    signals = decode_signals(probs)
    assert signals.has_rent is True
    assert signals.has_debt is False
    assert signals.has_savings_goal is True
    assert signals.minimal_living is False
    # earliest index wins a tie
    assert signals.food_out_frequency == "low"
    assert signals.social_spending == "high"
    assert signals.luxury_interest == "medium"
    assert signals.location == "hanoi"
    assert signals.rent_estimate == config.RENT_ESTIMATES["hanoi"]


def test_decode_rejects_wrong_length():
    with pytest.raises(ValueError):
        decode_signals([0.5] * 15)


def test_rent_only_when_renting():
    assert rent_estimate(False, "hcm") == 0
    assert rent_estimate(True, "hcm") == 4_000_000
    assert rent_estimate(True, "other") == 3_500_000


async def test_blank_description_returns_fallback(store):
    model = small_model(store)
    assert await model.infer("") == LifestyleSignals()
    assert await model.infer("   ") == LifestyleSignals()
    model._training_task.cancel()


async def test_infer_before_training_returns_fallback(store):
    model = small_model(store)
    signals = await model.infer("thuê trọ ở hà nội, hay cafe")
    assert signals == LifestyleSignals()
    assert not model.is_ready
    model._training_task.cancel()


async def test_train_then_infer_and_reload(store):
    model = small_model(store)
    await model.ensure_trained()
    assert model.is_ready
    assert not model.is_training

    signals = await model.infer("thuê trọ ở sài gòn, ăn ngoài nhiều, hay cafe")
    assert signals.food_out_frequency in LEVELS
    assert signals.location in LOCATIONS
    assert signals.rent_estimate == (config.RENT_ESTIMATES[signals.location] if signals.has_rent else 0)

    await model.flush()
    state = json.loads(store.data[config.LIFESTYLE_MODEL_KEY])
    assert state["vocabulary"][:2] == [["<pad>", 0], ["<unk>", 1]]
    assert state["maxSequenceLength"] == config.LIFESTYLE_SEQUENCE_LENGTH

    restored = small_model(store)
    await restored.initialize()
    assert restored.is_ready
    assert await restored.infer("thuê trọ ở sài gòn, ăn ngoài nhiều, hay cafe") == signals


async def test_background_training_after_delay():
    store = MemoryStore()
    model = small_model(store, train_delay=0)
    await model.initialize()
    await model._training_task
    assert model.is_ready


async def test_corrupted_weights_trigger_retraining():
    store = MemoryStore({
        config.LIFESTYLE_MODEL_KEY: json.dumps({
            "vocabulary": [["<pad>", 0], ["<unk>", 1], ["cafe", 2]],
            "weights": [{"shape": [1], "dtype": "float32", "data": [0]}],
        }),
    })
    model = small_model(store)
    await model.initialize()
    assert not model.is_ready
    await model.ensure_trained()
    assert model.is_ready
