"""
Sample Store - ordered output of a walk.

The store is append-only: the engine flushes one batch of (parameter
vector, NLL) rows per chunk, in chain order. Rows are kept as a list of
host arrays and concatenated lazily on first access.
"""

from typing import Any, Dict, List, Sequence

import numpy as np


class SampleStore:
    """
    Stored samples of one walk.

    Args:
        labels: Parameter names, one per column of the sample matrix

    Attributes:
        metadata: Walk bookkeeping filled in by the engine (steps completed,
                  burn-in steps, accepted and non-finite proposal counts,
                  cancellation flag, debug mode)
    """

    def __init__(self, labels: Sequence[str]):
        self.labels = tuple(labels)
        self.metadata: Dict[str, Any] = {}
        self._param_batches: List[np.ndarray] = []
        self._nll_batches: List[np.ndarray] = []
        self._samples = None
        self._nll = None

    def append_batch(self, params, nll) -> None:
        """Append rows in chain order. Arrays are copied to the host."""
        params = np.array(params, dtype=np.float64, copy=True).reshape(-1, len(self.labels))
        nll = np.array(nll, dtype=np.float64, copy=True).reshape(-1)
        if params.shape[0] != nll.shape[0]:
            raise ValueError(f"Got {params.shape[0]} parameter rows and {nll.shape[0]} NLL values")
        if params.shape[0] == 0:
            return
        self._param_batches.append(params)
        self._nll_batches.append(nll)
        self._samples = None
        self._nll = None

    def __len__(self) -> int:
        return sum(b.shape[0] for b in self._nll_batches)

    @property
    def nbatches(self) -> int:
        return len(self._param_batches)

    @property
    def samples(self) -> np.ndarray:
        """(n_samples, n_params) parameter vectors in chain order."""
        if self._samples is None:
            if self._param_batches:
                self._samples = np.concatenate(self._param_batches, axis=0)
            else:
                self._samples = np.zeros((0, len(self.labels)), dtype=np.float64)
        return self._samples

    @property
    def nll(self) -> np.ndarray:
        """(n_samples,) NLL of each stored row."""
        if self._nll is None:
            if self._nll_batches:
                self._nll = np.concatenate(self._nll_batches)
            else:
                self._nll = np.zeros(0, dtype=np.float64)
        return self._nll

    @property
    def acceptance_rate(self) -> float:
        steps = self.metadata.get('steps_completed', 0)
        if not steps:
            return 0.0
        return self.metadata.get('n_accepted', 0) / steps

    def parameter(self, name: str) -> np.ndarray:
        """Trace of one named parameter."""
        try:
            i = self.labels.index(name)
        except ValueError:
            raise KeyError(f"Unknown parameter '{name}'. Available: {list(self.labels)}") from None
        return self.samples[:, i]

    def as_array(self) -> np.ndarray:
        """Samples with the NLL appended as a final column."""
        return np.column_stack([self.samples, self.nll])

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict of labels, samples, NLL values and metadata, suitable for np.savez."""
        return {
            'labels': np.array(self.labels),
            'samples': self.samples,
            'nll': self.nll,
            **{f'meta_{k}': v for k, v in self.metadata.items()},
        }

    def __repr__(self):
        return f"SampleStore(n_samples={len(self)}, labels={list(self.labels)})"
