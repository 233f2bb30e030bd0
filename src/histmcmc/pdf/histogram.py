"""
Histogram PDF Evaluator

Builds an N-dimensional weighted histogram from Monte Carlo sample events
and evaluates it as a PDF at a set of evaluation points (the dataset).

Bin edges are fixed by the observables; the sample coordinates are moved by
the registered systematic transforms before every re-binning, so the
histogram is a function of the systematic parameter vector:

    counts, norm = pdf.histogram(params)
    density(x)   = counts[bin(x)] / norm      (0 outside the range)

All per-evaluation work is pure JAX so it can be traced into the compiled
walk kernel (see mcmc.scan). Construction-time work (validation, exclusion
filtering) is numpy.
"""

from typing import Callable, List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import ConfigurationError
from ..observables import Observable
from .systematics import (
    COMPOSITION_SHIFT_FIRST,
    COMPOSITIONS,
    SystematicTransform,
    apply_transform,
    order_transforms,
)


def as_event_matrix(samples, nfields: int) -> np.ndarray:
    """Reshape a flat or 2-D sample buffer to (n_events, nfields)."""
    arr = np.asarray(samples, dtype=np.float64)
    if nfields < 1:
        raise ConfigurationError(f"nfields must be >= 1, got {nfields}")
    if arr.ndim == 1:
        if arr.size % nfields != 0:
            raise ConfigurationError(
                f"Sample buffer of length {arr.size} is not a multiple of nfields={nfields}"
            )
        return arr.reshape(-1, nfields)
    if arr.ndim != 2 or arr.shape[1] != nfields:
        raise ConfigurationError(
            f"Expected samples of shape (n_events, {nfields}), got {arr.shape}"
        )
    return arr


def apply_exclusions(samples: np.ndarray, observables: Sequence[Observable],
                     weights: Optional[np.ndarray] = None) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Drop events that fall in the exclusion window of every observable declaring one.

    This is the union of the excluded regions: an event inside the window of
    one observable but outside the window of another is kept.

    Args:
        samples: Event matrix (n_events, n_fields)
        observables: Observables; those with exclude=None are ignored
        weights: Optional per-event weights, filtered alongside

    Returns:
        (samples, weights) with excluded events removed
    """
    excluding = [o for o in observables if o.has_exclusion]
    if not excluding or samples.shape[0] == 0:
        return samples, weights

    inside_all = np.ones(samples.shape[0], dtype=bool)
    for obs in excluding:
        v = samples[:, obs.field_index]
        inside_all &= (v >= obs.exclude[0]) & (v <= obs.exclude[1])

    keep = ~inside_all
    if weights is not None:
        weights = weights[keep]
    return samples[keep], weights


class HistogramPDF:
    """
    N-dimensional histogram PDF with runtime systematic transforms.

    Args:
        samples: Sample events, flat or (n_events, nfields)
        weights: Non-negative integer weight per event (None = all ones)
        nfields: Number of fields per event
        observables: Binned observables, one histogram axis each
        composition: Transform order for transforms on the same field,
                     'shift_first' (default) or 'registration'

    Raises:
        ConfigurationError: On mismatched buffers, bad weights or bad fields
    """

    def __init__(self, samples, weights, nfields: int, observables: Sequence[Observable],
                 composition: str = COMPOSITION_SHIFT_FIRST):
        samples = as_event_matrix(samples, nfields)
        if weights is None:
            weights = np.ones(samples.shape[0], dtype=np.int64)
        weights = np.asarray(weights)

        if weights.ndim != 1 or weights.shape[0] != samples.shape[0]:
            raise ConfigurationError(
                f"Got {weights.size} weights for {samples.shape[0]} sample events"
            )
        if weights.size and (np.any(weights < 0) or np.any(weights != np.round(weights))):
            raise ConfigurationError("Sample weights must be non-negative integers")
        if not observables:
            raise ConfigurationError("At least one observable is required")
        for obs in observables:
            if obs.field_index >= nfields:
                raise ConfigurationError(
                    f"Observable '{obs.name}' uses field {obs.field_index} "
                    f"but samples only have {nfields} fields"
                )
        if composition not in COMPOSITIONS:
            raise ConfigurationError(
                f"Unknown composition '{composition}'. Expected one of {COMPOSITIONS}"
            )

        self.nfields = nfields
        self.observables = tuple(observables)
        self.composition = composition
        self.transforms: List[SystematicTransform] = []

        self._samples = jnp.asarray(samples)
        self._weights = jnp.asarray(weights, dtype=self._samples.dtype)

        self._fields = np.array([o.field_index for o in self.observables], dtype=np.int32)
        self._lower = jnp.asarray([o.lower for o in self.observables], dtype=self._samples.dtype)
        self._upper = jnp.asarray([o.upper for o in self.observables], dtype=self._samples.dtype)
        self._nbins = np.array([o.bins for o in self.observables], dtype=np.int32)
        self._width = (self._upper - self._lower) / jnp.asarray(self._nbins, dtype=self._samples.dtype)
        # Row-major strides for the flattened bin index
        strides = np.ones(len(self._nbins), dtype=np.int32)
        for i in range(len(self._nbins) - 2, -1, -1):
            strides[i] = strides[i + 1] * self._nbins[i + 1]
        self._strides = jnp.asarray(strides)

        self._eval_bins = None
        self._eval_in_range = None
        self._evaluate_jit = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def nevents(self) -> int:
        return int(self._samples.shape[0])

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(n) for n in self._nbins)

    @property
    def nbins_total(self) -> int:
        return int(np.prod(self._nbins))

    @property
    def parameter_indices(self) -> Tuple[int, ...]:
        """Sorted systematic slots read by this PDF."""
        return tuple(sorted({p for t in self.transforms for p in t.parameters}))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def add_systematic(self, transform: SystematicTransform) -> None:
        """Register a transform applied to sample coordinates before binning."""
        if not isinstance(transform, SystematicTransform):
            raise ConfigurationError(f"Expected a SystematicTransform, got {type(transform).__name__}")
        for f in transform.fields:
            if f >= self.nfields:
                raise ConfigurationError(
                    f"Systematic on field {f} but samples only have {self.nfields} fields"
                )
        self.transforms.append(transform)
        self._evaluate_jit = None

    def set_eval_points(self, points) -> None:
        """Bind the events (same field layout as the samples) at which evaluate() reports densities."""
        self._eval_bins, self._eval_in_range = self._bin_points(points)
        self._evaluate_jit = None

    # ------------------------------------------------------------------
    # Binning
    # ------------------------------------------------------------------

    def _bin_index(self, coords):
        """Flat bin index and in-range mask for an (n, nfields) coordinate array."""
        x = coords[:, self._fields]
        in_range = jnp.all((x >= self._lower) & (x < self._upper), axis=1)
        idx = jnp.floor((x - self._lower) / self._width).astype(jnp.int32)
        # Rounding can put a value just below upper into bin nbins
        idx = jnp.clip(idx, 0, jnp.asarray(self._nbins) - 1)
        flat = jnp.sum(idx * self._strides, axis=1)
        return jnp.where(in_range, flat, 0), in_range

    def _bin_points(self, points):
        points = jnp.asarray(as_event_matrix(points, self.nfields), dtype=self._samples.dtype)
        return self._bin_index(points)

    def transform_samples(self, params, samples=None):
        """Sample coordinates after all registered transforms, in composition order."""
        coords = self._samples if samples is None else samples
        if not self.transforms:
            return coords
        params = jnp.asarray(params, dtype=coords.dtype)
        for transform in order_transforms(self.transforms, self.composition):
            coords = apply_transform(coords, transform, params)
        return coords

    def _flat_histogram(self, params, samples=None, weights=None):
        samples = self._samples if samples is None else samples
        weights = self._weights if weights is None else weights
        coords = self.transform_samples(params, samples)
        flat, in_range = self._bin_index(coords)
        w = jnp.where(in_range, weights, 0.0)
        counts = jnp.zeros(self.nbins_total, dtype=samples.dtype).at[flat].add(w)
        return counts, jnp.sum(w)

    def histogram(self, params) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Bin contents at a systematic parameter point.

        Returns:
            counts: Weighted bin contents, shaped (bins_0, bins_1, ...)
            normalization: Total weight of events landing inside the range
        """
        counts, norm = self._flat_histogram(jnp.atleast_1d(jnp.asarray(params)))
        return counts.reshape(self.shape), norm

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluator(self, points) -> Tuple[Callable, tuple]:
        """
        Pure evaluation function for a fixed set of points.

        The function has the signature fn(buffers, params) -> (densities,
        normalization) and can be traced by JAX. Buffers (sample events,
        weights and the binned points) are returned separately so compiled
        callers pass them as arguments instead of baking them in as
        constants. This object's bound evaluation points are not touched.

        Returns:
            (evaluate_fn, buffers)
        """
        eval_bins, eval_in_range = self._bin_points(points)
        buffers = (self._samples, self._weights, eval_bins, eval_in_range)
        return self.evaluate_fn, buffers

    @property
    def evaluate_fn(self) -> Callable:
        """The pure fn(buffers, params) returned by evaluator()."""
        return self._evaluate_with

    def _evaluate_with(self, buffers, params):
        samples, weights, eval_bins, eval_in_range = buffers
        counts, norm = self._flat_histogram(params, samples, weights)
        safe_norm = jnp.where(norm > 0, norm, 1.0)
        density = jnp.where(eval_in_range & (norm > 0), counts[eval_bins] / safe_norm, 0.0)
        return density, norm

    def evaluate(self, params) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Evaluate the PDF at the bound evaluation points.

        Safe to call repeatedly with different parameter points; the sample
        buffer is never reallocated.

        Args:
            params: Systematic parameter vector

        Returns:
            densities: One value per evaluation point (a lookup-table column)
            normalization: Weighted count of sample events inside the range
        """
        if self._eval_bins is None:
            raise ConfigurationError("No evaluation points bound; call set_eval_points first")
        if self._evaluate_jit is None:
            self._evaluate_jit = jax.jit(self._evaluate_with)
        buffers = (self._samples, self._weights, self._eval_bins, self._eval_in_range)
        params = jnp.atleast_1d(jnp.asarray(params, dtype=self._samples.dtype))
        return self._evaluate_jit(buffers, params)
