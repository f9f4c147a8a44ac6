import asyncio
import json
import math

import numpy as np
import pytest

import config
from classifier import TransactionClassifier, boosted_score, build_category_profiles, merge_samples
from models import Category, TrainingSample
from storage import MemoryStore
from text_processing import Vocabulary, normalize_vector, text_to_vector


async def test_scenario_predicts_food_for_coffee(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    result = await classifier.train_model()
    assert result.success
    assert result.samples == 3

    prediction = await classifier.predict_category("cà phê trưa")
    assert prediction is not None
    assert prediction.category_id == "cat_food"
    assert prediction.confidence > config.MIN_CONFIDENCE
    assert prediction.category_name == "Ăn uống"
    assert prediction.category_icon == "🍜"


async def test_predict_trains_lazily(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    prediction = await classifier.predict_category("lương tháng 10")
    assert prediction.category_id == "cat_salary"
    assert classifier.get_status().is_ready


async def test_unrelated_text_returns_none(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    assert await classifier.predict_category("xyz abc") is None


async def test_empty_corpus_fails_without_raising(make_corpus, store):
    classifier = TransactionClassifier(make_corpus(), store)
    result = await classifier.train_model()
    assert not result.success
    assert classifier.get_status().is_training is False
    assert await classifier.predict_category("cà phê") is None


async def test_prediction_is_idempotent(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    first = await classifier.predict_category("grab đi ăn trưa")
    second = await classifier.predict_category("grab đi ăn trưa")
    assert first == second


async def test_is_training_cleared_after_failure(scenario_corpus, store):
    class BrokenCorpus(type(scenario_corpus)):
        def fetch_transactions(self, limit):
            raise RuntimeError("database is locked")

    classifier = TransactionClassifier(BrokenCorpus(), store)
    result = await classifier.train_model()
    assert not result.success
    assert "database is locked" in result.message
    assert classifier.get_status().is_training is False


async def test_concurrent_train_is_rejected(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    first, second = await asyncio.gather(
        classifier.train_model(force_retrain=True),
        classifier.train_model(force_retrain=True),
    )
    assert first.success
    assert not second.success
    assert second.message == "Model is already training"
    assert classifier.get_status().is_training is False


async def test_not_forced_retrain_is_noop_when_ready(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    calls = scenario_corpus.fetch_calls
    result = await classifier.train_model()
    assert result.success
    assert scenario_corpus.fetch_calls == calls


async def test_correction_retrains_and_takes_effect(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()

    scenario_corpus.add_correction("vé xe bus", "cat_transport")
    result = await classifier.learn_from_correction("vé xe bus", "cat_transport")
    assert result.success
    prediction = await classifier.predict_category("vé xe bus")
    assert prediction.category_id == "cat_transport"
    assert classifier.get_status().num_categories == 3


async def test_new_transaction_replaces_vocabulary(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    before = classifier.get_status().vocabulary_size

    scenario_corpus.add_transaction("đổ xăng xe máy", "cat_transport")
    await classifier.learn_from_new_transaction("đổ xăng xe máy", "cat_transport")
    assert classifier.get_status().vocabulary_size > before


async def test_alternatives_are_ranked_percentages(make_corpus, store):
    corpus = make_corpus(transactions=[
        ("cà phê sáng", "cat_food"),
        ("cà phê grab", "cat_transport"),
        ("grab đi làm", "cat_transport"),
        ("lương tháng", "cat_salary"),
    ])
    classifier = TransactionClassifier(corpus, store)
    ranked = await classifier.predict_category_with_alternatives("cà phê")

    assert ranked.primary.category_id == "cat_food"
    assert 0 < ranked.primary.confidence <= 100
    assert isinstance(ranked.primary.confidence, int)
    assert len(ranked.alternatives) <= config.MAX_ALTERNATIVES - 1
    scores = [ranked.primary.confidence] + [a.confidence for a in ranked.alternatives]
    assert scores == sorted(scores, reverse=True)


async def test_alternatives_empty_below_floor(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    ranked = await classifier.predict_category_with_alternatives("xyz")
    assert ranked.primary.category_id == ""
    assert ranked.primary.confidence == 0
    assert ranked.alternatives == []


async def test_persistence_round_trip(scenario_corpus):
    store = MemoryStore()
    trained = TransactionClassifier(scenario_corpus, store, persist_delay=60)
    await trained.train_model()
    assert config.CLASSIFIER_MODEL_KEY not in store.data
    await trained.flush()

    blob = json.loads(store.data[config.CLASSIFIER_MODEL_KEY])
    assert set(blob) == {"generation", "terms", "profiles"}
    assert all(len(p["centroid"]) == len(blob["terms"]) for p in blob["profiles"])

    restored = TransactionClassifier(scenario_corpus, store)
    prediction = await restored.predict_category("cà phê trưa")
    assert prediction.category_id == "cat_food"
    # loaded from the store, not retrained
    assert scenario_corpus.fetch_calls == 1


async def test_centroids_not_matching_vocabulary_are_ignored(scenario_corpus):
    store = MemoryStore()
    trained = TransactionClassifier(scenario_corpus, store)
    await trained.train_model()
    await trained.flush()

    blob = json.loads(store.data[config.CLASSIFIER_MODEL_KEY])
    blob["terms"] = blob["terms"][:-1]
    store.data[config.CLASSIFIER_MODEL_KEY] = json.dumps(blob)

    restored = TransactionClassifier(scenario_corpus, store)
    await restored.predict_category("cà phê")
    # retrained from the corpus
    assert scenario_corpus.fetch_calls == 2
    assert restored.get_status().is_ready


async def test_failed_save_keeps_previous_model(scenario_corpus):
    class FlakyStore(MemoryStore):
        failing = False

        def set(self, key, value):
            if self.failing:
                raise OSError("disk full")
            super().set(key, value)

    store = FlakyStore()
    trained = TransactionClassifier(scenario_corpus, store)
    await trained.train_model()
    await trained.flush()
    saved = store.data[config.CLASSIFIER_MODEL_KEY]

    store.failing = True
    scenario_corpus.add_transaction("đổ xăng xe máy", "cat_transport")
    assert (await trained.train_model(force_retrain=True)).success
    await trained.flush()
    assert store.data[config.CLASSIFIER_MODEL_KEY] == saved

    calls = scenario_corpus.fetch_calls
    restored = TransactionClassifier(scenario_corpus, store)
    prediction = await restored.predict_category("cà phê trưa")
    assert prediction.category_id == "cat_food"
    assert restored.get_status().is_ready
    assert scenario_corpus.fetch_calls == calls


async def test_clear_model_removes_state(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    await classifier.flush()
    await classifier.clear_model()

    status = classifier.get_status()
    assert not status.is_ready
    assert status.vocabulary_size == 0
    assert config.CLASSIFIER_MODEL_KEY not in store.data


async def test_clear_during_training_is_not_undone(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    await classifier.flush()

    task = asyncio.ensure_future(classifier.train_model(force_retrain=True))
    await asyncio.sleep(0)
    await classifier.clear_model()
    result = await task
    await classifier.flush()

    assert not result.success
    assert result.message == "Model was cleared during training"
    status = classifier.get_status()
    assert not status.is_ready
    assert not status.is_training
    assert config.CLASSIFIER_MODEL_KEY not in store.data


async def test_retraining_unchanged_corpus_gives_identical_centroids(scenario_corpus, store):
    classifier = TransactionClassifier(scenario_corpus, store)
    await classifier.train_model()
    await classifier.flush()
    first = json.loads(store.data[config.CLASSIFIER_MODEL_KEY])

    await classifier.train_model(force_retrain=True)
    await classifier.flush()
    second = json.loads(store.data[config.CLASSIFIER_MODEL_KEY])

    assert first["generation"] != second["generation"]
    assert first["terms"] == second["terms"]
    assert first["profiles"] == second["profiles"]


async def test_one_correction_outweighs_similar_transactions(make_corpus, store):
    corpus = make_corpus(
        transactions=[
            ("cà phê highlands", "cat_food"),
            ("cà phê highlands sáng", "cat_food"),
            ("cà phê highlands trưa", "cat_food"),
        ],
        corrections=[("cà phê highlands", "cat_entertainment")],
        categories=[Category("cat_food", "Ăn uống"), Category("cat_entertainment", "Giải trí")],
    )
    classifier = TransactionClassifier(corpus, store)
    assert (await classifier.train_model()).success

    prediction = await classifier.predict_category("cà phê highlands")
    assert prediction.category_id == "cat_entertainment"
    assert prediction.category_name == "Giải trí"
    ranked = await classifier.predict_category_with_alternatives("cà phê highlands")
    assert [a.category_id for a in ranked.alternatives] == ["cat_food"]


def test_merge_samples_prefers_corrections():
    merged = merge_samples(
        [TrainingSample("grab", "cat_transport", "correction")],
        [TrainingSample(" grab ", "cat_transport"), TrainingSample("", "cat_food")],
    )
    assert len(merged) == 1
    assert merged[0].source == "correction"


def test_centroid_uses_weighted_average():
    samples = [
        TrainingSample("cà phê", "cat_food", "correction"),
        TrainingSample("bún chả", "cat_food", "transaction"),
    ]
    vocab = Vocabulary.build(s.text for s in samples)
    [profile] = build_category_profiles(samples, vocab)

    a = normalize_vector(text_to_vector("cà phê", vocab))
    b = normalize_vector(text_to_vector("bún chả", vocab))
    expected = normalize_vector((3.0 * a + 1.0 * b) / 4.0)
    np.testing.assert_allclose(profile.centroid, expected)
    assert np.linalg.norm(profile.centroid) == pytest.approx(1.0)
    assert profile.sample_count == 2


def test_profiles_skip_unknown_categories():
    samples = [TrainingSample("cà phê", "cat_food"), TrainingSample("xyz", "cat_deleted")]
    vocab = Vocabulary.build(s.text for s in samples)
    profiles = build_category_profiles(samples, vocab, {"cat_food": Category("cat_food", "Ăn uống")})
    assert [p.category_id for p in profiles] == ["cat_food"]
    assert profiles[0].category_name == "Ăn uống"


def test_boost_only_above_threshold():
    assert boosted_score(0.4, 100) == 0.4
    assert boosted_score(0.6, 9) == pytest.approx(0.6 + math.log(10) * 0.01)
    assert boosted_score(0.6, 10**9) == pytest.approx(0.7)
    assert boosted_score(0.99, 10**9) == 1.0
