"""
tensor_runtime.py
-----------------

The small slice of a tensor library the two neural models need: a
sequential-layer builder, a mini-batch fit loop, a forward pass that returns
plain numpy arrays, and weight export/import as flat number lists.

Everything is backed by torch.  Temporary tensors created for a pass are
tracked in a ``TensorScope`` and dropped on every exit path, so callers only
ever see numpy arrays and Python lists.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
from sklearn.model_selection import train_test_split

LOG = logging.getLogger(__name__)

LayerSpec = Tuple[str, Dict]
EpochCallback = Callable[[Dict], None]

_EPS = 1e-7


class WeightShapeError(ValueError):
    """Persisted weights do not line up with the network's layers."""


class GlobalAveragePooling1D(nn.Module):
    """Mean over the sequence axis: (batch, steps, features) -> (batch, features)."""

    def forward(self, x):
        return x.mean(dim=1)


class TensorScope:
    """Holds the tensors allocated for one pass and releases them on exit."""

    def __init__(self):
        self._tensors: List[torch.Tensor] = []

    def track(self, tensor: torch.Tensor) -> torch.Tensor:
        self._tensors.append(tensor)
        return tensor

    def release(self) -> None:
        self._tensors.clear()

    def __len__(self) -> int:
        return len(self._tensors)


@contextmanager
def tensor_scope() -> Iterator[TensorScope]:
    scope = TensorScope()
    try:
        yield scope
    finally:
        scope.release()


def _activation(name: Optional[str]) -> Optional[nn.Module]:
    if name in (None, "linear"):
        return None
    if name == "relu":
        return nn.ReLU()
    if name == "sigmoid":
        return nn.Sigmoid()
    if name == "softmax":
        return nn.Softmax(dim=-1)
    raise ValueError(f"Unsupported activation: {name}")


def _dense(options: Dict) -> List[nn.Module]:
    linear = nn.Linear(options["in_features"], options["units"])
    if options.get("kernel_initializer") == "he_normal":
        nn.init.kaiming_normal_(linear.weight, nonlinearity="relu")
    else:
        nn.init.xavier_uniform_(linear.weight)
    nn.init.zeros_(linear.bias)
    layers: List[nn.Module] = [linear]
    activation = _activation(options.get("activation"))
    if activation is not None:
        layers.append(activation)
    return layers


def _has_batch_norm(model: nn.Module) -> bool:
    return any(isinstance(m, nn.BatchNorm1d) for m in model.modules())


def _set_batch_norm_training(model: nn.Module, training: bool) -> None:
    for module in model.modules():
        if isinstance(module, nn.BatchNorm1d):
            module.train(training)


class TensorRuntime:
    """Builds, trains and runs small sequential networks on the CPU."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.device = torch.device("cpu")

    # --- building ---

    def build_sequential(self, layers: Sequence[LayerSpec]) -> nn.Sequential:
        """Create a network from ``(kind, options)`` pairs, in order."""
        if self.seed is not None:
            torch.manual_seed(self.seed)

        modules: List[nn.Module] = []
        for kind, options in layers:
            if kind == "embedding":
                embedding = nn.Embedding(options["input_dim"], options["output_dim"])
                nn.init.uniform_(embedding.weight, -0.05, 0.05)
                modules.append(embedding)
            elif kind == "global_average_pooling_1d":
                modules.append(GlobalAveragePooling1D())
            elif kind == "dense":
                modules.extend(_dense(options))
            elif kind == "batch_norm":
                modules.append(nn.BatchNorm1d(options["num_features"], eps=1e-3, momentum=0.01))
            elif kind == "dropout":
                modules.append(nn.Dropout(options["rate"]))
            else:
                raise ValueError(f"Unsupported layer: {kind}")
        return nn.Sequential(*modules).to(self.device)

    # --- tensors ---

    def _inputs(self, x) -> torch.Tensor:
        arr = np.asarray(x)
        if np.issubdtype(arr.dtype, np.integer):
            return torch.as_tensor(arr, dtype=torch.long, device=self.device)
        return torch.as_tensor(arr, dtype=torch.float32, device=self.device)

    def _targets(self, y) -> torch.Tensor:
        return torch.as_tensor(np.asarray(y, dtype=np.float32), device=self.device)

    @staticmethod
    def _loss(kind: str, probs: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        clipped = probs.clamp(_EPS, 1 - _EPS)
        if kind == "binary_crossentropy":
            return -(targets * torch.log(clipped) + (1 - targets) * torch.log(1 - clipped)).mean()
        if kind == "categorical_crossentropy":
            return -(targets * torch.log(clipped)).sum(dim=-1).mean()
        raise ValueError(f"Unsupported loss: {kind}")

    @staticmethod
    def _accuracy(kind: str, probs: torch.Tensor, targets: torch.Tensor) -> float:
        if kind == "categorical_crossentropy":
            return (probs.argmax(dim=-1) == targets.argmax(dim=-1)).float().mean().item()
        return ((probs >= 0.5) == (targets >= 0.5)).float().mean().item()

    # --- training ---

    def fit(
        self,
        model: nn.Module,
        x,
        y,
        *,
        loss: str,
        epochs: int,
        batch_size: int,
        learning_rate: float = 0.001,
        validation_split: float = 0.0,
        shuffle: bool = True,
        on_epoch_end: Optional[EpochCallback] = None,
    ) -> List[Dict]:
        """Train with a fresh Adam optimizer; returns one log dict per epoch."""
        n_samples = len(x)
        indices = np.arange(n_samples)
        val_idx = np.array([], dtype=int)
        if validation_split > 0 and n_samples >= 2:
            indices, val_idx = train_test_split(
                indices, test_size=validation_split, shuffle=shuffle, random_state=self.seed
            )

        optimizer = torch.optim.Adam(model.parameters(), lr=learning_rate)
        has_batch_norm = _has_batch_norm(model)
        history: List[Dict] = []

        with tensor_scope() as scope:
            xs = scope.track(self._inputs(x))
            ys = scope.track(self._targets(y))
            train_idx = torch.as_tensor(indices, dtype=torch.long)

            for epoch in range(epochs):
                model.train()
                order = train_idx[torch.randperm(len(train_idx))] if shuffle else train_idx
                epoch_loss = 0.0
                epoch_acc = 0.0
                seen = 0

                for start in range(0, len(order), batch_size):
                    idx = order[start:start + batch_size]
                    # BatchNorm cannot estimate batch statistics from one row
                    single = has_batch_norm and len(idx) == 1
                    if single:
                        _set_batch_norm_training(model, False)
                    probs = model(xs[idx])
                    batch_loss = self._loss(loss, probs, ys[idx])

                    optimizer.zero_grad()
                    batch_loss.backward()
                    optimizer.step()
                    if single:
                        _set_batch_norm_training(model, True)

                    epoch_loss += batch_loss.item() * len(idx)
                    epoch_acc += self._accuracy(loss, probs.detach(), ys[idx]) * len(idx)
                    seen += len(idx)

                logs = {
                    "epoch": epoch + 1,
                    "loss": epoch_loss / max(seen, 1),
                    "accuracy": epoch_acc / max(seen, 1),
                }
                if len(val_idx):
                    model.eval()
                    with torch.no_grad():
                        val = torch.as_tensor(val_idx, dtype=torch.long)
                        val_probs = model(xs[val])
                        logs["val_loss"] = self._loss(loss, val_probs, ys[val]).item()
                        logs["val_accuracy"] = self._accuracy(loss, val_probs, ys[val])
                history.append(logs)
                LOG.debug("Epoch %d: loss=%.4f, acc=%.4f", logs["epoch"], logs["loss"], logs["accuracy"])
                if on_epoch_end is not None:
                    on_epoch_end(logs)

        model.eval()
        return history

    # --- inference ---

    def predict(self, model: nn.Module, x) -> np.ndarray:
        """Forward pass in inference mode; returns a float64 numpy array."""
        model.eval()
        with tensor_scope() as scope, torch.no_grad():
            inputs = scope.track(self._inputs(x))
            outputs = scope.track(model(inputs))
            return outputs.cpu().numpy().astype(np.float64)

    # --- weights ---

    def get_weights(self, model: nn.Module) -> List[Dict]:
        """Ordered ``{shape, dtype, data}`` records in layer-creation order."""
        weights = []
        for tensor in model.state_dict().values():
            weights.append({
                "shape": list(tensor.shape),
                "dtype": str(tensor.dtype).replace("torch.", ""),
                "data": tensor.detach().cpu().flatten().tolist(),
            })
        return weights

    def set_weights(self, model: nn.Module, weights: Sequence[Dict]) -> None:
        state = model.state_dict()
        if len(weights) != len(state):
            raise WeightShapeError(f"Expected {len(state)} weight tensors, got {len(weights)}")

        restored = OrderedDict()
        for (name, current), saved in zip(state.items(), weights):
            shape = list(saved["shape"])
            if shape != list(current.shape):
                raise WeightShapeError(f"Shape mismatch for {name}: {shape} != {list(current.shape)}")
            dtype = getattr(torch, saved.get("dtype", "float32"), current.dtype)
            restored[name] = torch.tensor(saved["data"], dtype=dtype).reshape(shape)
        model.load_state_dict(restored)
