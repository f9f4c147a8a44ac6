"""
budget_model.py
---------------

Predicts a needs / wants / savings split from income, lifestyle signals and
the calendar month.

Network: dense(64, relu, He) -> batch-norm -> dropout(0.3) -> dense(32, relu,
He) -> batch-norm -> dropout(0.2) -> dense(3, softmax).  The 19 inputs are the
log-normalized income, the 16 lifestyle signals, month / 12 and a holiday flag.

On a cold start the network is trained on the synthetic archetype dataset
and the weights are persisted.  User adjustments are folded back in with a
few low learning-rate epochs on the single corrected example.
"""

import asyncio
import copy
import datetime
import json
import logging
import math
import time
from typing import Dict, List, Optional, Sequence

import numpy as np

import config
from models import LIFESTYLE_DIM, BudgetPrediction, TrainingData
from storage import DebouncedWriter, KeyValueStore
from tensor_runtime import TensorRuntime
from training_data import make_budget_dataset, normalize_ratios

LOG = logging.getLogger(__name__)

_MIN_LOG = math.log10(config.INCOME_FLOOR)
_MAX_LOG = math.log10(config.INCOME_CEILING)

BUDGET_LAYERS = [
    ("dense", {"in_features": config.BUDGET_INPUT_DIM, "units": 64, "activation": "relu",
               "kernel_initializer": "he_normal"}),
    ("batch_norm", {"num_features": 64}),
    ("dropout", {"rate": 0.3}),
    ("dense", {"in_features": 64, "units": 32, "activation": "relu",
               "kernel_initializer": "he_normal"}),
    ("batch_norm", {"num_features": 32}),
    ("dropout", {"rate": 0.2}),
    ("dense", {"in_features": 32, "units": 3, "activation": "softmax"}),
]


def normalize_income(income: float) -> float:
    """log10 scale: 1M VND -> 0.0, 100M VND -> 1.0, clamped."""
    log_income = math.log10(max(income, config.INCOME_FLOOR))
    return min(max((log_income - _MIN_LOG) / (_MAX_LOG - _MIN_LOG), 0.0), 1.0)


def build_features(
    income: float,
    lifestyle_signals: Sequence[float],
    month: int,
    is_holiday_season: bool = False,
) -> List[float]:
    if len(lifestyle_signals) != LIFESTYLE_DIM:
        raise ValueError(f"lifestyle_signals must have {LIFESTYLE_DIM} values, got {len(lifestyle_signals)}")
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    return [
        normalize_income(income),
        *[float(s) for s in lifestyle_signals],
        month / 12,
        1.0 if is_holiday_season else 0.0,
    ]


def entropy_confidence(probabilities: Sequence[float]) -> float:
    """1 - H(p)/ln(3): 0 for a uniform split, 1 for a one-hot one."""
    entropy = -sum(p * math.log(p) for p in probabilities if p > 0)
    return min(max(1 - entropy / math.log(3), 0.0), 1.0)


def rule_based_predict(
    income: float,
    lifestyle_signals: Sequence[float],
    is_holiday_season: bool = False,
) -> BudgetPrediction:
    """50/30/20 adjusted by income band, lifestyle and holidays."""
    start = time.perf_counter()
    (has_rent, has_debt, has_savings_goal, minimal_living,
     food_low, _, food_high,
     social_low, _, social_high,
     luxury_low, _, luxury_high) = [float(s) for s in lifestyle_signals[:13]]

    needs, wants, savings = 0.5, 0.3, 0.2
    if income < 8_000_000:
        needs, wants, savings = 0.6, 0.25, 0.15
    elif income > 25_000_000:
        needs, wants, savings = 0.45, 0.35, 0.2

    if has_rent == 1:
        needs += 0.05
    if has_debt == 1:
        needs += 0.1
        savings = max(0.1, savings - 0.05)
    if has_savings_goal == 1:
        savings += 0.1
        wants -= 0.05
    if minimal_living == 1:
        needs += 0.05
        wants -= 0.05

    if food_high == 1 or social_high == 1:
        wants += 0.05
    if luxury_high == 1:
        wants += 0.05
    if food_low == 1 and social_low == 1 and luxury_low == 1:
        wants -= 0.05
        savings += 0.05

    if is_holiday_season:
        wants += 0.05
        savings -= 0.05

    # Clamp to the usual bands first so the final split stays on the simplex
    needs = max(0.3, min(0.7, needs))
    wants = max(0.1, min(0.5, wants))
    savings = max(0.1, min(0.4, savings))
    needs, wants, savings = normalize_ratios([needs, wants, savings])

    return BudgetPrediction(
        needs_ratio=needs,
        wants_ratio=wants,
        savings_ratio=savings,
        confidence=0.6,
        model_version=config.BUDGET_RULE_BASED_VERSION,
        inference_time_ms=(time.perf_counter() - start) * 1000,
    )


class BudgetPredictionModel:
    def __init__(
        self,
        store: KeyValueStore,
        runtime: Optional[TensorRuntime] = None,
        epochs: int = config.BUDGET_EPOCHS,
        seed: Optional[int] = None,
        persist_delay: float = config.PERSIST_DEBOUNCE_SECONDS,
    ):
        self.store = store
        self.runtime = runtime or TensorRuntime(seed=seed)
        self.epochs = epochs
        self.seed = seed
        self._writer = DebouncedWriter(store, persist_delay)

        self._model = None
        self._initialized = False
        # held by initialize, learn_from_correction and reset
        self._lock = asyncio.Lock()
        self._is_training = False
        self._training_history: List[Dict] = []

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def is_training(self) -> bool:
        return self._is_training

    # --- lifecycle ---

    async def initialize(self) -> None:
        """Load persisted weights, or build and train from synthetic data."""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            loaded = False
            try:
                loaded = self._load_weights()
                if not loaded:
                    LOG.info("Creating new budget model...")
                    await self._train_with_synthetic_data()
            except Exception as exc:
                LOG.error("Budget model init failed: %s", exc)
                try:
                    await self._train_with_synthetic_data()
                except Exception as retrain_exc:
                    LOG.error("Budget model rebuild failed, using rules: %s", retrain_exc)
                    self._model = None
            if loaded:
                self._load_history()
            self._initialized = True

    def _load_weights(self) -> bool:
        try:
            saved = self.store.get(config.BUDGET_WEIGHTS_KEY)
        except Exception as exc:
            LOG.warning("Could not read budget weights: %s", exc)
            return False
        if not saved:
            return False
        LOG.info("Loading saved budget weights...")
        model = self.runtime.build_sequential(BUDGET_LAYERS)
        self.runtime.set_weights(model, json.loads(saved))
        self._model = model
        return True

    def _load_history(self) -> None:
        try:
            saved = self.store.get(config.BUDGET_HISTORY_KEY)
        except Exception as exc:
            LOG.warning("Could not read budget training history: %s", exc)
            return
        if not saved:
            return
        try:
            history = json.loads(saved)
        except ValueError as exc:
            LOG.warning("Ignoring unreadable budget training history: %s", exc)
            return
        if isinstance(history, list):
            self._training_history = history
        else:
            LOG.warning("Ignoring budget training history that is not a list")

    def _fit_synthetic(self):
        samples = make_budget_dataset(seed=self.seed)
        LOG.info("Generated %d budget training samples", len(samples))
        xs = np.array(
            [build_features(s.income, s.lifestyle_signals, s.month or 6, s.is_holiday_season) for s in samples],
            dtype=np.float32,
        )
        ys = np.array([s.target_ratios for s in samples], dtype=np.float32)

        model = self.runtime.build_sequential(BUDGET_LAYERS)
        history = self.runtime.fit(
            model,
            xs,
            ys,
            loss="categorical_crossentropy",
            epochs=self.epochs,
            batch_size=config.BUDGET_BATCH_SIZE,
            learning_rate=config.BUDGET_LEARNING_RATE,
            validation_split=config.BUDGET_VALIDATION_SPLIT,
            shuffle=True,
        )
        return model, history

    async def _train_with_synthetic_data(self) -> None:
        self._is_training = True
        try:
            model, history = await asyncio.to_thread(self._fit_synthetic)
        finally:
            self._is_training = False
        for logs in history:
            LOG.info("Budget epoch %d: loss=%.4f, acc=%.4f", logs["epoch"], logs["loss"], logs["accuracy"])
            self._training_history.append(
                {"epoch": logs["epoch"], "loss": logs["loss"], "accuracy": logs["accuracy"]}
            )
        self._model = model
        self._persist()
        LOG.info("Budget model training completed")

    def _persist(self) -> None:
        self._writer.schedule({
            config.BUDGET_WEIGHTS_KEY: json.dumps(self.runtime.get_weights(self._model)),
            config.BUDGET_HISTORY_KEY: json.dumps(self._training_history),
        })

    async def flush(self) -> None:
        await self._writer.flush()

    # --- public API ---

    async def predict(
        self,
        income: float,
        lifestyle_signals: Sequence[float],
        month: Optional[int] = None,
        is_holiday_season: bool = False,
    ) -> BudgetPrediction:
        """Needs/wants/savings split for one user."""
        month = month or datetime.date.today().month
        features = build_features(income, lifestyle_signals, month, is_holiday_season)

        await self.initialize()
        if self._model is None:
            return rule_based_predict(income, lifestyle_signals, is_holiday_season)

        start = time.perf_counter()
        try:
            probabilities = self.runtime.predict(self._model, np.array([features], dtype=np.float32))[0]
        except Exception as exc:
            LOG.error("Budget inference failed, using rules: %s", exc)
            return rule_based_predict(income, lifestyle_signals, is_holiday_season)

        probabilities = np.clip(probabilities, 0.0, None)
        probabilities = probabilities / probabilities.sum()
        needs, wants, savings = (float(p) for p in probabilities)

        return BudgetPrediction(
            needs_ratio=needs,
            wants_ratio=wants,
            savings_ratio=savings,
            confidence=entropy_confidence([needs, wants, savings]),
            model_version=config.BUDGET_MODEL_VERSION,
            inference_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def learn_from_correction(self, data: TrainingData) -> None:
        """Nudge the network toward the user's final ratios."""
        features = build_features(data.income, data.lifestyle_signals, data.month or 6, data.is_holiday_season)
        targets = normalize_ratios(data.target_ratios)

        await self.initialize()
        async with self._lock:
            if self._model is None:
                return

            LOG.info("Learning from user budget correction...")
            # predict keeps using the current network until the tuned copy is swapped in
            candidate = copy.deepcopy(self._model)
            self._is_training = True
            try:
                await asyncio.to_thread(
                    self.runtime.fit,
                    candidate,
                    np.array([features], dtype=np.float32),
                    np.array([targets], dtype=np.float32),
                    loss="categorical_crossentropy",
                    epochs=config.BUDGET_FINE_TUNE_EPOCHS,
                    batch_size=1,
                    learning_rate=config.BUDGET_FINE_TUNE_LEARNING_RATE,
                    shuffle=False,
                )
            finally:
                self._is_training = False
            self._model = candidate
            self._persist()

    def get_training_history(self) -> List[Dict]:
        return list(self._training_history)

    async def reset(self) -> None:
        """Forget weights and history; the next call retrains from scratch.

        Waits for an in-flight training run or fine-tune to finish first.
        """
        async with self._lock:
            self._initialized = False
            self._model = None
            self._training_history = []
            keys = [config.BUDGET_WEIGHTS_KEY, config.BUDGET_HISTORY_KEY]
            self._writer.discard(keys)
            for key in keys:
                try:
                    self.store.delete(key)
                except Exception as exc:
                    LOG.error("Failed to delete %s: %s", key, exc)
