"""
lifestyle_model.py
------------------

Turns a free-text lifestyle description ("thuê trọ ở hà nội, hay cafe,
đang trả góp") into structured ``LifestyleSignals``.

The network is small: embedding -> global average pooling -> dense(64, relu)
-> dropout -> dense(16, sigmoid).  Its 16 outputs are four independent flags
followed by four 3-way groups (eating out, going out, luxury, city), see
``models.LIFESTYLE_DIM``.  The rent amount is never predicted; it is looked
up from the decoded city.

There is no real dataset, so on a cold start the model is trained on
synthetic descriptions from ``training_data``.  That run is scheduled a few
seconds after first use and happens off the event loop; until it finishes
``infer`` answers with the all-low fallback.
"""

import asyncio
import json
import logging
from typing import List, Optional, Sequence

import numpy as np

import config
from models import LEVELS, LIFESTYLE_DIM, LOCATIONS, LifestyleSignals
from storage import DebouncedWriter, KeyValueStore
from tensor_runtime import TensorRuntime
from text_processing import Vocabulary, text_to_sequence, tokenize_words
from training_data import make_lifestyle_dataset

LOG = logging.getLogger(__name__)


def _pick3(probs: Sequence[float], start: int) -> int:
    # np.argmax returns the earliest index on ties
    return int(np.argmax(probs[start:start + 3]))


def rent_estimate(has_rent: bool, location: str) -> int:
    if not has_rent:
        return 0
    return config.RENT_ESTIMATES.get(location, config.RENT_ESTIMATES["other"])


def decode_signals(probs: Sequence[float]) -> LifestyleSignals:
    """Threshold the flags at 0.5 and arg-max each 3-way group."""
    probs = list(probs)
    if len(probs) != LIFESTYLE_DIM:
        raise ValueError(f"Expected {LIFESTYLE_DIM} probabilities, got {len(probs)}")

    has_rent = probs[0] >= 0.5
    location = LOCATIONS[_pick3(probs, 13)]
    return LifestyleSignals(
        has_rent=has_rent,
        has_debt=probs[1] >= 0.5,
        has_savings_goal=probs[2] >= 0.5,
        minimal_living=probs[3] >= 0.5,
        food_out_frequency=LEVELS[_pick3(probs, 4)],
        social_spending=LEVELS[_pick3(probs, 7)],
        luxury_interest=LEVELS[_pick3(probs, 10)],
        location=location,
        rent_estimate=rent_estimate(has_rent, location),
    )


def lifestyle_layers(vocab_size: int, embedding_dim: int = config.LIFESTYLE_EMBEDDING_DIM) -> List:
    return [
        ("embedding", {"input_dim": max(2, vocab_size), "output_dim": embedding_dim}),
        ("global_average_pooling_1d", {}),
        ("dense", {"in_features": embedding_dim, "units": 64, "activation": "relu"}),
        ("dropout", {"rate": 0.2}),
        ("dense", {"in_features": 64, "units": LIFESTYLE_DIM, "activation": "sigmoid"}),
    ]


class LifestyleSignalModel:
    def __init__(
        self,
        store: KeyValueStore,
        runtime: Optional[TensorRuntime] = None,
        train_delay: float = config.LIFESTYLE_TRAIN_DELAY_SECONDS,
        epochs: int = config.LIFESTYLE_EPOCHS,
        synthetic_samples: int = config.LIFESTYLE_SYNTHETIC_SAMPLES,
        seed: Optional[int] = None,
        persist_delay: float = config.PERSIST_DEBOUNCE_SECONDS,
    ):
        self.store = store
        self.runtime = runtime or TensorRuntime(seed=seed)
        self.train_delay = train_delay
        self.epochs = epochs
        self.synthetic_samples = synthetic_samples
        self.seed = seed
        self.max_sequence_length = config.LIFESTYLE_SEQUENCE_LENGTH
        self.embedding_dim = config.LIFESTYLE_EMBEDDING_DIM
        self._writer = DebouncedWriter(store, persist_delay)

        self._vocabulary: Optional[Vocabulary] = None
        self._model = None
        self._initialized = False
        self._is_ready = False
        self._is_training = False
        self._training_task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    @property
    def is_training(self) -> bool:
        return self._is_training

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        if self._load():
            return
        LOG.info("No saved lifestyle model, will train in background...")
        self._training_task = asyncio.get_running_loop().create_task(self._train_after_delay())

    def _load(self) -> bool:
        try:
            saved = self.store.get(config.LIFESTYLE_MODEL_KEY)
            if not saved:
                return False
            state = json.loads(saved)
            vocabulary = Vocabulary.from_list(state["vocabulary"])
            self.max_sequence_length = state.get("maxSequenceLength", self.max_sequence_length)
            self.embedding_dim = state.get("embeddingDim", self.embedding_dim)

            model = self.runtime.build_sequential(lifestyle_layers(len(vocabulary), self.embedding_dim))
            self.runtime.set_weights(model, state["weights"])
        except Exception as exc:
            LOG.warning("Could not restore lifestyle model: %s", exc)
            return False

        self._vocabulary = vocabulary
        self._model = model
        self._is_ready = True
        LOG.info("Lifestyle model loaded (%d terms)", len(vocabulary))
        return True

    async def _train_after_delay(self) -> None:
        await asyncio.sleep(self.train_delay)
        try:
            await self.train()
        except Exception as exc:
            LOG.warning("Lifestyle model training failed: %s", exc)

    def _fit(self, vocabulary: Vocabulary, texts: List[str], labels: List[List[float]]):
        model = self.runtime.build_sequential(lifestyle_layers(len(vocabulary), self.embedding_dim))
        xs = np.array(
            [text_to_sequence(t, vocabulary, self.max_sequence_length) for t in texts],
            dtype=np.int64,
        )
        ys = np.array(labels, dtype=np.float32)
        history = self.runtime.fit(
            model,
            xs,
            ys,
            loss="binary_crossentropy",
            epochs=self.epochs,
            batch_size=config.LIFESTYLE_BATCH_SIZE,
            learning_rate=0.001,
            validation_split=0.1,
            shuffle=True,
        )
        return model, history

    async def train(self) -> None:
        """Build vocabulary and network from synthetic descriptions."""
        if self._is_training:
            return
        self._is_training = True
        try:
            texts, labels = make_lifestyle_dataset(self.synthetic_samples, seed=self.seed)
            vocabulary = Vocabulary.build(
                texts,
                tokenizer=tokenize_words,
                min_frequency=1,
                max_size=config.LIFESTYLE_MAX_VOCAB,
            )
            model, history = await asyncio.to_thread(self._fit, vocabulary, texts, labels)
            if history:
                LOG.info("Lifestyle model trained: loss=%.4f", history[-1]["loss"])

            self._vocabulary = vocabulary
            self._model = model
            self._is_ready = True
            self._persist()
        finally:
            self._is_training = False

    def _persist(self) -> None:
        state = {
            "vocabulary": self._vocabulary.to_list(),
            "weights": self.runtime.get_weights(self._model),
            "maxSequenceLength": self.max_sequence_length,
            "embeddingDim": self.embedding_dim,
        }
        self._writer.schedule({config.LIFESTYLE_MODEL_KEY: json.dumps(state, ensure_ascii=False)})

    async def flush(self) -> None:
        await self._writer.flush()

    async def ensure_trained(self) -> None:
        """Train now instead of waiting for the scheduled background run."""
        await self.initialize()
        if self._is_ready:
            return
        task = self._training_task
        if task is not None and not task.done():
            if self._is_training:
                await task
                return
            task.cancel()
        await self.train()

    async def infer(self, description: str) -> LifestyleSignals:
        """Decode lifestyle signals; never raises."""
        fallback = LifestyleSignals()
        try:
            await self.initialize()
            if not description or not description.strip():
                return fallback
            if not self._is_ready or self._model is None:
                return fallback

            sequence = text_to_sequence(description, self._vocabulary, self.max_sequence_length)
            probs = self.runtime.predict(self._model, np.array([sequence], dtype=np.int64))[0]
            return decode_signals(probs)
        except Exception as exc:
            LOG.warning("Lifestyle inference failed: %s", exc)
            return fallback
