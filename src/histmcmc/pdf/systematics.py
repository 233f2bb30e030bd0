"""
Systematic Transforms for Histogram PDFs

Each transform moves one coordinate of every sample event before binning.
The kind set is closed (SystematicType) and dispatched through
TRANSFORM_REGISTRY, one coordinate rule per kind:

    SHIFT:            x' = x + P(x)
    SCALE:            x' = x * P(x)
    RESOLUTION_SCALE: x' = t + (x - t) * P(t)

where t is the event's truth field and P(y) = p_0 + p_1*y + p_2*y^2 + ...
is built from the transform's parameter slots. With a single parameter the
rules reduce to x + p, x * p and t + (x - t) * p.

Parameter slots index the systematic sub-vector of the fit parameters
(see observables.systematic_slots).
"""

from dataclasses import dataclass
from typing import Sequence, Tuple

import jax.numpy as jnp

from ..error_handling import ConfigurationError
from ..observables import Systematic, SystematicType


# Composition orders for transforms that touch the same field
COMPOSITION_SHIFT_FIRST = 'shift_first'
COMPOSITION_REGISTRATION = 'registration'
COMPOSITIONS = (COMPOSITION_SHIFT_FIRST, COMPOSITION_REGISTRATION)


@dataclass(frozen=True)
class SystematicTransform:
    """
    A bound systematic: kind, affected field(s) and parameter slots.

    Fields:
        kind: SystematicType
        field: Sample column the transform rewrites
        parameters: Slot indices into the systematic parameter vector
        truth_field: Reference column (RESOLUTION_SCALE only)
    """
    kind: SystematicType
    field: int
    parameters: Tuple[int, ...]
    truth_field: int = -1

    def __post_init__(self):
        if self.kind not in TRANSFORM_REGISTRY:
            raise ConfigurationError(f"Unknown systematic kind {self.kind!r}")
        object.__setattr__(self, 'kind', SystematicType(self.kind))
        object.__setattr__(self, 'parameters', tuple(int(p) for p in self.parameters))
        if not self.parameters:
            raise ConfigurationError("A systematic transform needs at least one parameter slot")
        if self.kind == SystematicType.RESOLUTION_SCALE and self.truth_field < 0:
            raise ConfigurationError("RESOLUTION_SCALE transform requires a truth field")

    @property
    def fields(self) -> Tuple[int, ...]:
        if self.kind == SystematicType.RESOLUTION_SCALE:
            return (self.field, self.truth_field)
        return (self.field,)


def _polynomial(coefficients, y):
    """Horner evaluation of sum_k c_k y^k."""
    result = jnp.zeros_like(y) + coefficients[-1]
    for c in coefficients[-2::-1]:
        result = result * y + c
    return result


def _shift(coords, transform, values):
    x = coords[:, transform.field]
    return x + _polynomial(values, x)


def _scale(coords, transform, values):
    x = coords[:, transform.field]
    return x * _polynomial(values, x)


def _resolution_scale(coords, transform, values):
    x = coords[:, transform.field]
    truth = coords[:, transform.truth_field]
    return truth + (x - truth) * _polynomial(values, truth)


# One coordinate rule per SystematicType
TRANSFORM_REGISTRY = {
    SystematicType.SHIFT: _shift,
    SystematicType.SCALE: _scale,
    SystematicType.RESOLUTION_SCALE: _resolution_scale,
}


def apply_transform(coords, transform: SystematicTransform, params):
    """
    Apply one transform to an (n_events, n_fields) coordinate array.

    Args:
        coords: Event coordinates
        transform: Bound transform
        params: Systematic parameter vector

    Returns:
        New coordinate array with the affected column rewritten
    """
    values = [params[p] for p in transform.parameters]
    column = TRANSFORM_REGISTRY[transform.kind](coords, transform, values)
    return coords.at[:, transform.field].set(column)


def order_transforms(transforms: Sequence[SystematicTransform],
                     composition: str = COMPOSITION_SHIFT_FIRST) -> Tuple[SystematicTransform, ...]:
    """
    Order transforms for application.

    'shift_first' applies all shifts, then scales, then resolution scales,
    keeping registration order within each kind. 'registration' keeps the
    order the transforms were added in.
    """
    if composition == COMPOSITION_REGISTRATION:
        return tuple(transforms)
    if composition == COMPOSITION_SHIFT_FIRST:
        return tuple(sorted(transforms, key=lambda t: int(t.kind)))
    raise ConfigurationError(
        f"Unknown composition '{composition}'. Expected one of {COMPOSITIONS}"
    )


def build_transform(systematic: Systematic, slots: Tuple[int, ...]) -> SystematicTransform:
    """Bind a Systematic descriptor to its parameter slots."""
    if len(slots) != systematic.npars:
        raise ConfigurationError(
            f"Systematic '{systematic.name}' has {systematic.npars} parameters "
            f"but {len(slots)} slots were assigned"
        )
    return SystematicTransform(
        kind=systematic.type,
        field=systematic.field_index,
        parameters=tuple(slots),
        truth_field=systematic.truth_field_index,
    )
