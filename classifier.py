"""
classifier.py
-------------

Nearest-centroid classifier that suggests a spending category for a free-text
transaction note.

Each category is represented by the weighted average of the bag-of-words
vectors of every note filed under it (user corrections count three times as
much as plain transaction history).  A new note is vectorized against the
same vocabulary and assigned to the centroid with the highest cosine
similarity, provided it clears a small confidence floor.

The model is always rebuilt from the full corpus: every saved or edited
transaction and every user correction triggers a fresh vocabulary and a
fresh set of centroids.  Vocabulary and centroids are persisted together as one blob through a
``KeyValueStore`` and lazily restored on first use.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import uuid
from dataclasses import asdict
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics.pairwise import cosine_similarity
from sklearn.preprocessing import normalize

import config
from models import (
    Category,
    CategoryPrediction,
    CategoryProfile,
    ModelStatus,
    PredictionResult,
    RankedPrediction,
    TrainResult,
    TrainingSample,
)
from storage import DebouncedWriter, KeyValueStore
from text_processing import Vocabulary, normalize_vector

LOG = logging.getLogger(__name__)

SOURCE_WEIGHTS = {
    "correction": config.CORRECTION_WEIGHT,
    "transaction": config.TRANSACTION_WEIGHT,
}


class CorpusProvider(Protocol):
    def fetch_corrections(self, limit: int) -> List[TrainingSample]: ...

    def fetch_transactions(self, limit: int) -> List[TrainingSample]: ...

    def fetch_categories(self) -> List[Category]: ...


def merge_samples(
    corrections: Sequence[TrainingSample],
    transactions: Sequence[TrainingSample],
) -> List[TrainingSample]:
    """Combine both sources, dropping duplicate (text, category) pairs.

    Corrections come first so they win over transaction-derived duplicates.
    """
    rows = [asdict(s) for s in corrections] + [asdict(s) for s in transactions]
    if not rows:
        return []
    df = pd.DataFrame(rows, columns=["text", "category_id", "source"])
    df["text"] = df["text"].astype(str).str.strip()
    df = df[(df["text"] != "") & df["category_id"].notna()]
    df = df.drop_duplicates(subset=["text", "category_id"], keep="first")
    return [
        TrainingSample(text=row.text, category_id=str(row.category_id), source=row.source)
        for row in df.itertuples(index=False)
    ]


def build_category_profiles(
    samples: Sequence[TrainingSample],
    vocabulary: Vocabulary,
    categories: Optional[Dict[str, Category]] = None,
) -> List[CategoryProfile]:
    """Weighted centroid per category.

    centroid = normalize(sum(w_i * normalize(v_i)) / sum(w_i))
    """
    kept = [s for s in samples if not categories or s.category_id in categories]
    if not kept:
        return []

    vectors = normalize(vocabulary.transform(s.text for s in kept))
    weights = np.array([SOURCE_WEIGHTS.get(s.source, config.TRANSACTION_WEIGHT) for s in kept])
    labels = [s.category_id for s in kept]

    profiles = []
    for category_id in dict.fromkeys(labels):
        rows = np.array([label == category_id for label in labels])
        row_weights = weights[rows]
        total = np.asarray(vectors[rows].multiply(row_weights[:, None]).sum(axis=0)).ravel()
        average = total / row_weights.sum()
        name = categories[category_id].name if categories and category_id in categories else category_id
        profiles.append(
            CategoryProfile(
                category_id=category_id,
                category_name=name,
                centroid=normalize_vector(average).tolist(),
                sample_count=int(rows.sum()),
            )
        )
    return profiles


def boosted_score(similarity: float, sample_count: int) -> float:
    """Small volume bonus, only for already-strong matches."""
    if similarity <= config.BOOST_THRESHOLD:
        return similarity
    bonus = min(config.BOOST_CAP, math.log(sample_count + 1) * config.BOOST_SLOPE)
    return min(1.0, similarity + bonus)


class TransactionClassifier:
    """Category suggestion engine with full-corpus retraining."""

    def __init__(
        self,
        corpus: CorpusProvider,
        store: KeyValueStore,
        persist_delay: float = config.PERSIST_DEBOUNCE_SECONDS,
    ):
        self.corpus = corpus
        self.store = store
        self._writer = DebouncedWriter(store, persist_delay)

        self._vocabulary: Optional[Vocabulary] = None
        self._profiles: List[CategoryProfile] = []
        self._matrix: Optional[np.ndarray] = None
        self._categories: Dict[str, Category] = {}
        self._generation: Optional[str] = None
        self._clear_count = 0

        self._loaded = False
        self._is_ready = False
        self._is_training = False

    # --- persistence ---

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._load_model()

    def _load_model(self) -> None:
        try:
            saved = self.store.get(config.CLASSIFIER_MODEL_KEY)
            if not saved:
                LOG.info("No saved classifier found. Will train on first use.")
                return

            state = json.loads(saved)
            vocabulary = Vocabulary.from_list(state["terms"])
            profiles = [CategoryProfile.from_dict(p) for p in state["profiles"]]
            if not profiles or any(len(p.centroid) != len(vocabulary) for p in profiles):
                LOG.warning("Saved profiles do not match the saved vocabulary; ignoring them")
                return

            self._install(vocabulary, profiles, state.get("generation"))
            LOG.info("Classifier loaded: %d terms, %d categories", len(vocabulary), len(profiles))
        except Exception as exc:
            LOG.error("Error loading classifier: %s", exc)
            self._reset_state()

    def _persist(self) -> None:
        # one key, so a failed write leaves the previous generation intact
        blob = json.dumps(
            {
                "generation": self._generation,
                "terms": self._vocabulary.to_list(),
                "profiles": [p.to_dict() for p in self._profiles],
            },
            ensure_ascii=False,
        )
        self._writer.schedule({config.CLASSIFIER_MODEL_KEY: blob})

    async def flush(self) -> None:
        """Write any debounced state now."""
        await self._writer.flush()

    # --- state ---

    def _install(self, vocabulary: Vocabulary, profiles: List[CategoryProfile], generation: Optional[str]) -> None:
        self._vocabulary = vocabulary
        self._profiles = profiles
        self._matrix = np.array([p.centroid for p in profiles], dtype=np.float64)
        self._generation = generation
        self._is_ready = True

    def _reset_state(self) -> None:
        self._vocabulary = None
        self._profiles = []
        self._matrix = None
        self._generation = None
        self._is_ready = False

    def _fetch_corpus(self) -> Tuple[List[TrainingSample], Dict[str, Category]]:
        corrections = self.corpus.fetch_corrections(config.CORRECTIONS_LIMIT)
        transactions = self.corpus.fetch_transactions(config.TRANSACTIONS_LIMIT)
        categories = {c.id: c for c in self.corpus.fetch_categories()}
        return merge_samples(corrections, transactions), categories

    # --- scoring ---

    def _rank(self, text: str) -> List[Tuple[CategoryProfile, float]]:
        if self._vocabulary is None or self._matrix is None or not self._profiles:
            return []
        vector = self._vocabulary.transform([text])
        similarities = cosine_similarity(self._matrix, vector).ravel()
        scored = [
            (profile, boosted_score(float(sim), profile.sample_count))
            for profile, sim in zip(self._profiles, similarities)
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored

    def _category_details(self, profile: CategoryProfile) -> Tuple[str, Optional[str]]:
        category = self._categories.get(profile.category_id)
        if category is None:
            return profile.category_name, None
        return category.name or profile.category_name, category.icon

    def _estimate_accuracy(self, samples: Sequence[TrainingSample]) -> float:
        test_samples = samples[: config.ACCURACY_SAMPLE_SIZE]
        if not test_samples:
            return 0.0
        correct = 0
        for sample in test_samples:
            ranked = self._rank(sample.text)
            if ranked and ranked[0][1] >= config.MIN_CONFIDENCE and ranked[0][0].category_id == sample.category_id:
                correct += 1
        return correct / len(test_samples)

    # --- public API ---

    async def train_model(self, force_retrain: bool = False) -> TrainResult:
        """Rebuild vocabulary and centroids from the full corpus."""
        if self._is_training:
            return TrainResult(success=False, message="Model is already training")

        self._ensure_loaded()
        if self._is_ready and not force_retrain:
            return TrainResult(success=True, message="Model is already trained")

        self._is_training = True
        clear_count = self._clear_count
        try:
            samples, categories = await asyncio.to_thread(self._fetch_corpus)
            if not samples:
                return TrainResult(
                    success=False,
                    samples=0,
                    message="Need at least one transaction note or correction to train.",
                )

            LOG.info("Training with %d samples from %d categories", len(samples), len(categories))
            vocabulary = Vocabulary.build(
                (s.text for s in samples),
                min_frequency=1,
                max_size=config.MAX_VOCABULARY_SIZE,
            )
            profiles = await asyncio.to_thread(build_category_profiles, samples, vocabulary, categories)
            if not profiles:
                return TrainResult(
                    success=False,
                    samples=len(samples),
                    message="No training sample belongs to a known category.",
                )

            if clear_count != self._clear_count:
                LOG.info("Model was cleared while training; discarding the result")
                return TrainResult(success=False, samples=len(samples), message="Model was cleared during training")

            self._categories = categories
            self._install(vocabulary, profiles, uuid.uuid4().hex)
            self._persist()
            LOG.info("Vocabulary size: %d, built %d category profiles", len(vocabulary), len(profiles))

            accuracy = self._estimate_accuracy(samples)
            return TrainResult(
                success=True,
                accuracy=accuracy,
                samples=len(samples),
                message=f"Model trained successfully with {accuracy * 100:.1f}% accuracy",
            )
        except Exception as exc:
            LOG.error("Error training model: %s", exc)
            return TrainResult(success=False, message=f"Training failed: {exc}")
        finally:
            self._is_training = False

    async def _ensure_ready(self) -> bool:
        self._ensure_loaded()
        if self._is_ready:
            if not self._categories:
                try:
                    self._categories = {c.id: c for c in self.corpus.fetch_categories()}
                except Exception as exc:
                    LOG.warning("Could not refresh categories: %s", exc)
            return True
        LOG.info("Model not ready. Training...")
        result = await self.train_model()
        return result.success

    async def predict_category(self, text: str) -> Optional[PredictionResult]:
        """Best category for ``text`` or None below the confidence floor."""
        if not await self._ensure_ready():
            return None
        try:
            ranked = self._rank(text)
            if not ranked or ranked[0][1] < config.MIN_CONFIDENCE:
                LOG.debug("No confident prediction for %r", text)
                return None
            profile, score = ranked[0]
            name, icon = self._category_details(profile)
            return PredictionResult(
                category_id=profile.category_id,
                confidence=max(0.0, min(1.0, score)),
                category_name=name,
                category_icon=icon,
            )
        except Exception as exc:
            LOG.error("Error predicting category: %s", exc)
            return None

    async def predict_category_with_alternatives(self, text: str) -> RankedPrediction:
        """Top categories above the floor, confidences as integer percentages."""
        empty = RankedPrediction(primary=CategoryPrediction(category_id="", category_name="", confidence=0))
        if not await self._ensure_ready():
            return empty
        try:
            qualified = [
                (profile, score)
                for profile, score in self._rank(text)
                if score >= config.MIN_CONFIDENCE
            ][: config.MAX_ALTERNATIVES]
        except Exception as exc:
            LOG.error("Error ranking categories: %s", exc)
            return empty
        if not qualified:
            return empty

        predictions = []
        for profile, score in qualified:
            name, _ = self._category_details(profile)
            predictions.append(
                CategoryPrediction(
                    category_id=profile.category_id,
                    category_name=name,
                    confidence=int(round(max(0.0, min(1.0, score)) * 100)),
                )
            )
        return RankedPrediction(primary=predictions[0], alternatives=predictions[1:])

    async def learn_from_new_transaction(self, text: str, category_id: str) -> TrainResult:
        LOG.info("New transaction %r -> %s, retraining", text, category_id)
        return await self.train_model(force_retrain=True)

    async def learn_from_correction(self, text: str, category_id: str) -> TrainResult:
        LOG.info("User corrected %r -> %s, retraining", text, category_id)
        result = await self.train_model(force_retrain=True)
        if not result.success:
            LOG.error("Retrain after correction failed: %s", result.message)
        return result

    async def clear_model(self) -> None:
        self._clear_count += 1
        self._reset_state()
        self._categories = {}
        self._loaded = True
        self._writer.discard([config.CLASSIFIER_MODEL_KEY])
        try:
            self.store.delete(config.CLASSIFIER_MODEL_KEY)
        except Exception as exc:
            LOG.error("Failed to delete %s: %s", config.CLASSIFIER_MODEL_KEY, exc)
        LOG.info("Model cleared")

    def get_status(self) -> ModelStatus:
        return ModelStatus(
            is_ready=self._is_ready,
            is_training=self._is_training,
            vocabulary_size=len(self._vocabulary) if self._vocabulary else 0,
            num_categories=len(self._profiles),
        )
