"""
MCMC Data Structures and Type Definitions.

This module contains the core data structures used by the walk engine:
- ParameterSpace: Labels, central values, widths and wiring of the fit parameters
- WalkArrays: Device-side copy of the ParameterSpace, registered as a JAX pytree
- WalkParams: Immutable run parameters for JAX static arguments
- build_parameter_space: Factory function for ParameterSpace

Parameter vector layout (stable for the lifetime of a run):

    [rate of source 0, ..., rate of source S-1,
     systematic parameters in slot order (see observables.systematic_slots)]

Each rate parameter is the expected event count of its source. Signal j
contributes N_j = v[source_id[j]] * rate_fractions[j], where
rate_fractions[j] = nexpected_j / (sum of nexpected over the source).
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import ConfigurationError
from ..observables import Source, Systematic, systematic_slots


@dataclass(frozen=True)
class ParameterSpace:
    """
    Host-side description of the fit parameters.

    Fields:
        names: Label of each parameter (source names, then systematic parameters)
        means: Central values; the walk starts here
        sigmas: Gaussian constraint widths in parameter units (0 = unconstrained)
        steps: Proposal widths (before step_scale)
        fixed: True for parameters excluded from the random walk
        nsources: Number of rate parameters
        source_id: Rate parameter index of each signal (n_signals,)
        rate_fractions: Share of its source rate carried by each signal (n_signals,)
        signal_names: Signal names, in lookup-table column order
        systematic_slots: Systematic name -> slots in the systematic sub-vector
    """
    names: Tuple[str, ...]
    means: np.ndarray
    sigmas: np.ndarray
    steps: np.ndarray
    fixed: np.ndarray
    nsources: int
    source_id: np.ndarray
    rate_fractions: np.ndarray
    signal_names: Tuple[str, ...]
    systematic_slots: dict

    @property
    def nparameters(self) -> int:
        return len(self.names)

    @property
    def nsystematics(self) -> int:
        """Number of systematic parameters (not systematics)."""
        return self.nparameters - self.nsources

    @property
    def nsignals(self) -> int:
        return len(self.signal_names)

    @property
    def float_mask(self) -> np.ndarray:
        return ~self.fixed

    @property
    def nfloat(self) -> int:
        return int(np.sum(~self.fixed))

    def index(self, name: str) -> int:
        """Position of a named parameter in the vector."""
        try:
            return self.names.index(name)
        except ValueError:
            raise KeyError(f"Unknown parameter '{name}'. Available: {list(self.names)}") from None

    def signal_rates(self, params) -> np.ndarray:
        """Expected count of each signal at a parameter point."""
        params = np.asarray(params, dtype=np.float64)
        return params[self.source_id] * self.rate_fractions

    def to_arrays(self) -> 'WalkArrays':
        return WalkArrays(
            means=jnp.asarray(self.means),
            sigmas=jnp.asarray(self.sigmas),
            steps=jnp.asarray(self.steps),
            float_mask=jnp.asarray(self.float_mask, dtype=jnp.asarray(self.means).dtype),
            source_id=jnp.asarray(self.source_id, dtype=jnp.int32),
            rate_fractions=jnp.asarray(self.rate_fractions),
        )


@dataclass(frozen=True)
class WalkArrays:
    """Device arrays derived from a ParameterSpace for use in compiled kernels."""
    means: jnp.ndarray
    sigmas: jnp.ndarray
    steps: jnp.ndarray
    float_mask: jnp.ndarray      # 1.0 = floating, 0.0 = fixed
    source_id: jnp.ndarray
    rate_fractions: jnp.ndarray


def _walk_arrays_flatten(wa):
    """Flatten WalkArrays for JAX pytree."""
    children = (wa.means, wa.sigmas, wa.steps, wa.float_mask, wa.source_id, wa.rate_fractions)
    return children, None


def _walk_arrays_unflatten(aux_data, children):
    """Unflatten WalkArrays from JAX pytree."""
    means, sigmas, steps, float_mask, source_id, rate_fractions = children
    return WalkArrays(
        means=means,
        sigmas=sigmas,
        steps=steps,
        float_mask=float_mask,
        source_id=source_id,
        rate_fractions=rate_fractions,
    )


# Register WalkArrays as a JAX pytree
jax.tree_util.register_pytree_node(
    WalkArrays,
    _walk_arrays_flatten,
    _walk_arrays_unflatten
)


@dataclass(frozen=True)
class WalkParams:
    """
    Immutable run parameters for JAX static argument compatibility.

    This frozen dataclass allows run parameters to be passed as static
    arguments to JIT-compiled functions.
    """
    NSTEPS: int
    BURNIN_STEPS: int
    DEBUG_MODE: bool
    SYNC_INTERVAL: int
    BLOCK_SIZE: int


# Proposal width for a systematic parameter declared with sigma = 0
UNCONSTRAINED_SYSTEMATIC_STEP = 0.01


def build_parameter_space(signals: Sequence, systematics: Sequence[Systematic],
                          sources: Sequence[Source]) -> ParameterSpace:
    """
    Build the ParameterSpace for a fit.

    Args:
        signals: Signals, in lookup-table column order
        systematics: Systematics, in registration order
        sources: Rate sources; every signal category must name one

    Returns:
        ParameterSpace

    Raises:
        ConfigurationError: If a signal has no source, a source has no
                            signals, or names collide
    """
    if not signals:
        raise ConfigurationError("At least one signal is required")

    source_names = [s.name for s in sources]
    if len(set(source_names)) != len(source_names):
        raise ConfigurationError(f"Duplicate source names: {source_names}")

    source_id = np.zeros(len(signals), dtype=np.int32)
    for j, sig in enumerate(signals):
        if sig.category not in source_names:
            raise ConfigurationError(
                f"Signal '{sig.name}' has category '{sig.category}' with no matching source"
            )
        source_id[j] = source_names.index(sig.category)

    nominal = np.zeros(len(sources), dtype=np.float64)
    for j, sig in enumerate(signals):
        nominal[source_id[j]] += sig.nexpected

    empty = [source_names[i] for i in range(len(sources)) if not np.any(source_id == i)]
    if empty:
        raise ConfigurationError(f"Sources with no signals: {empty}")

    rate_fractions = np.array([
        sig.nexpected / nominal[source_id[j]] if nominal[source_id[j]] > 0 else 0.0
        for j, sig in enumerate(signals)
    ], dtype=np.float64)

    names: List[str] = list(source_names)
    means: List[float] = list(nominal)
    sigmas: List[float] = [src.sigma * n for src, n in zip(sources, nominal)]
    # Poisson width when the rate is unconstrained
    steps: List[float] = [s if s > 0 else np.sqrt(max(n, 1.0)) for s, n in zip(sigmas, nominal)]
    fixed: List[bool] = [src.fixed for src in sources]

    slots = systematic_slots(systematics)
    for syst in systematics:
        names.extend(syst.parameter_names())
        means.extend(syst.means)
        sigmas.extend(syst.sigmas)
        steps.extend(s if s > 0 else UNCONSTRAINED_SYSTEMATIC_STEP * max(abs(m), 1.0)
                     for m, s in zip(syst.means, syst.sigmas))
        fixed.extend([syst.fixed] * syst.npars)

    if len(set(names)) != len(names):
        raise ConfigurationError(f"Parameter names must be unique, got {names}")

    return ParameterSpace(
        names=tuple(names),
        means=np.array(means, dtype=np.float64),
        sigmas=np.array(sigmas, dtype=np.float64),
        steps=np.array(steps, dtype=np.float64),
        fixed=np.array(fixed, dtype=bool),
        nsources=len(sources),
        source_id=source_id,
        rate_fractions=rate_fractions,
        signal_names=tuple(s.name for s in signals),
        systematic_slots=slots,
    )
