"""
Observable, Systematic and Source Descriptors

Plain, immutable descriptions of the fit inputs:
1. Observable: one binned field of the sample matrix (range, bins, exclusion)
2. Systematic: one nuisance parameter family applied as a coordinate transform
3. Source: a rate group shared by all signals carrying the same category tag

Descriptors are validated at construction; any inconsistency is a
ConfigurationError so bad configurations never reach the walk.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .error_handling import ConfigurationError


# ============================================================================
# SYSTEMATIC TYPE ENUMERATION
# ============================================================================

class SystematicType(IntEnum):
    """
    Closed set of coordinate transforms a systematic can apply.

    The set is fixed: every kind needs a coordinate rule in
    pdf.systematics.TRANSFORM_REGISTRY.
    """
    SHIFT = 0             # x' = x + p
    SCALE = 1             # x' = x * p
    RESOLUTION_SCALE = 2  # x' = truth + (x - truth) * p

    def __str__(self):
        return self.name.replace('_', ' ').title()

    @classmethod
    def coerce(cls, value) -> 'SystematicType':
        """Convert an enum, int or (case-insensitive) name into a SystematicType."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace(' ', '_').replace('-', '_')
            if key in cls.__members__:
                return cls[key]
        elif isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            if int(value) in cls._value2member_map_:
                return cls(int(value))
        raise ConfigurationError(f"Unknown systematic type {value!r}")


def field_index(fields: Sequence[str], name: str) -> int:
    """Index of a named field, or ConfigurationError if the field is absent."""
    try:
        return list(fields).index(name)
    except ValueError:
        raise ConfigurationError(
            f"Field '{name}' not found. Available fields: {list(fields)}"
        ) from None


# ============================================================================
# OBSERVABLE
# ============================================================================

@dataclass(frozen=True)
class Observable:
    """
    A binned dimension of the PDF.

    Fields:
        name: Identifier for labels
        field_index: Column of the sample matrix holding this observable
        lower: Lower edge of the binned range (inclusive)
        upper: Upper edge of the binned range (exclusive)
        bins: Number of bins
        exclude: Optional (min, max) exclusion window. Events inside the
                 windows of every observable that declares one are dropped.
    """
    name: str
    field_index: int
    lower: float
    upper: float
    bins: int
    exclude: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        errors = []
        if self.field_index < 0:
            errors.append(f"field_index must be >= 0, got {self.field_index}")
        if not (np.isfinite(self.lower) and np.isfinite(self.upper)):
            errors.append(f"range must be finite, got [{self.lower}, {self.upper})")
        elif self.upper <= self.lower:
            errors.append(f"upper ({self.upper}) must exceed lower ({self.lower})")
        if int(self.bins) != self.bins or self.bins < 1:
            errors.append(f"bins must be a positive integer, got {self.bins}")
        if self.exclude is not None:
            if len(self.exclude) != 2:
                errors.append(f"exclude must be a (min, max) pair, got {self.exclude}")
            elif self.exclude[0] > self.exclude[1]:
                errors.append(f"exclude min ({self.exclude[0]}) exceeds max ({self.exclude[1]})")
            else:
                object.__setattr__(self, 'exclude', (float(self.exclude[0]), float(self.exclude[1])))
        if errors:
            raise ConfigurationError(
                f"Invalid observable '{self.name}':\n  " + "\n  ".join(errors)
            )
        object.__setattr__(self, 'bins', int(self.bins))

    @classmethod
    def from_fields(cls, name: str, field: str, fields: Sequence[str],
                    lower: float, upper: float, bins: int,
                    exclude: Optional[Tuple[float, float]] = None) -> 'Observable':
        """Build an Observable by looking up its field name in the sample field list."""
        return cls(name, field_index(fields, field), lower, upper, bins, exclude)

    @property
    def bin_width(self) -> float:
        return (self.upper - self.lower) / self.bins

    @property
    def has_exclusion(self) -> bool:
        return self.exclude is not None


# ============================================================================
# SYSTEMATIC
# ============================================================================

@dataclass(frozen=True)
class Systematic:
    """
    A systematic distortion of one observable field.

    The parameter count equals len(means). With one parameter the transforms
    are x + p, x * p and truth + (x - truth) * p; with more parameters p is
    replaced by a polynomial (see pdf.systematics).

    Fields:
        name: Identifier; also the parameter label (name_k for k > 0 parameters)
        type: SystematicType (enum, int or name)
        field_index: Column of the affected observable
        means: Central value(s); the walk starts here
        sigmas: Gaussian width(s); used for the NLL constraint and step size.
                A width of zero leaves the parameter unconstrained.
        truth_field_index: Reference column for RESOLUTION_SCALE
        fixed: Parameters stay at their means during the walk
    """
    name: str
    type: SystematicType
    field_index: int
    means: Tuple[float, ...]
    sigmas: Tuple[float, ...]
    truth_field_index: int = -1
    fixed: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'type', SystematicType.coerce(self.type))
        means = tuple(float(m) for m in np.atleast_1d(self.means))
        sigmas = tuple(float(s) for s in np.atleast_1d(self.sigmas))
        object.__setattr__(self, 'means', means)
        object.__setattr__(self, 'sigmas', sigmas)

        errors = []
        if len(means) == 0:
            errors.append("at least one parameter mean is required")
        if len(means) != len(sigmas):
            errors.append(f"{len(means)} means but {len(sigmas)} sigmas")
        if not all(np.isfinite(means)):
            errors.append(f"means must be finite, got {means}")
        if not all(np.isfinite(sigmas)) or any(s < 0 for s in sigmas):
            errors.append(f"sigmas must be finite and >= 0, got {sigmas}")
        if self.field_index < 0:
            errors.append(f"field_index must be >= 0, got {self.field_index}")
        if self.type == SystematicType.RESOLUTION_SCALE and self.truth_field_index < 0:
            errors.append("RESOLUTION_SCALE requires a truth_field_index")
        if errors:
            raise ConfigurationError(
                f"Invalid systematic '{self.name}':\n  " + "\n  ".join(errors)
            )

    @property
    def npars(self) -> int:
        return len(self.means)

    def parameter_names(self) -> List[str]:
        if self.npars == 1:
            return [self.name]
        return [f"{self.name}_{k}" for k in range(self.npars)]


def systematic_slots(systematics: Sequence[Systematic]) -> Dict[str, Tuple[int, ...]]:
    """
    Assign parameter slots to systematics in registration order.

    Slots index the systematic part of the parameter vector. The mapping is
    built once per fit and shared by every signal, so two signals using the
    same systematic read identical slots.

    Raises:
        ConfigurationError: If two systematics share a name
    """
    slots = {}
    pidx = 0
    for syst in systematics:
        if syst.name in slots:
            raise ConfigurationError(f"Duplicate systematic name '{syst.name}'")
        slots[syst.name] = tuple(range(pidx, pidx + syst.npars))
        pidx += syst.npars
    return slots


# ============================================================================
# SOURCE
# ============================================================================

@dataclass(frozen=True)
class Source:
    """
    A rate group. Signals with the same category share one rate parameter.

    Fields:
        name: Category tag, used as the rate parameter label
        sigma: Fractional Gaussian constraint on the rate (0 = unconstrained)
        fixed: Rate stays at its nominal value during the walk
        signals: Names of the member signals, in registration order
    """
    name: str
    sigma: float = 0.0
    fixed: bool = False
    signals: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not np.isfinite(self.sigma) or self.sigma < 0:
            raise ConfigurationError(
                f"Source '{self.name}' sigma must be finite and >= 0, got {self.sigma}"
            )
