"""
Fit Signals

A Signal is a container for one signal's metadata and its histogram PDF:
- name/title/category identify it; signals sharing a category share a rate
- nexpected is the expected event count inside the fit range
- the histogram PDF is built from the signal's Monte Carlo samples

Efficiency (events landing inside the observable ranges over generated
events) is computed once, at construction, with every systematic at its
mean. It is not recomputed as systematics move during a walk; this is an
approximation that holds while the systematics stay near their means.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from .error_handling import ConfigurationError
from .observables import Observable, Source, Systematic, systematic_slots
from .pdf import HistogramPDF, apply_exclusions, as_event_matrix, build_transform
from .pdf.systematics import COMPOSITION_SHIFT_FIRST

import logging
logger = logging.getLogger('histmcmc')


class Signal:
    """
    A signal with its PDF and rate expectation.

    Args:
        name: String identifier
        nexpected: Expected number of (uncut) events. A negative value is a
                   scale factor on the number of MC events instead of a rate.
        samples: MC sample events, flat or (n_events, nfields)
        nfields: Number of fields per sample event
        observables: Observables used in the fit
        systematics: All systematics of the fit, in registration order
        weights: Non-negative integer weight per event (default all ones)
        sigma: Fractional Gaussian constraint on the rate (0 = unconstrained)
        category: Rate group tag; signals sharing a tag share one rate parameter
        title: Human readable title
        fixed: Keep the rate at nexpected during the walk
        systematic_names: Names of the systematics that act on this signal
                          (default: all of them)
        n_mc: Number of generated events, if different from the summed weights
        composition: Order of transforms on the same field (see pdf.systematics)
    """

    def __init__(self, name: str, nexpected: float, samples, nfields: int,
                 observables: Sequence[Observable], systematics: Sequence[Systematic] = (),
                 weights=None, sigma: float = 0.0, category: Optional[str] = None,
                 title: str = '', fixed: bool = False,
                 systematic_names: Optional[Sequence[str]] = None,
                 n_mc: Optional[int] = None,
                 composition: str = COMPOSITION_SHIFT_FIRST):
        if not np.isfinite(nexpected):
            raise ConfigurationError(f"Signal '{name}' nexpected must be finite, got {nexpected}")
        if not np.isfinite(sigma) or sigma < 0:
            raise ConfigurationError(f"Signal '{name}' sigma must be finite and >= 0, got {sigma}")

        self.name = name
        self.title = title or name
        self.category = category if category is not None else name
        self.sigma = float(sigma)
        self.fixed = bool(fixed)
        self.efficiency = 1.0

        samples = as_event_matrix(samples, nfields)
        if weights is None:
            weights = np.ones(samples.shape[0], dtype=np.int64)
        weights = np.asarray(weights)
        if weights.ndim != 1 or weights.shape[0] != samples.shape[0]:
            raise ConfigurationError(
                f"Signal '{name}': got {weights.size} weights for {samples.shape[0]} sample events"
            )

        self.n_mc = int(n_mc) if n_mc is not None else int(np.sum(weights))
        if self.n_mc <= 0:
            raise ConfigurationError(f"Signal '{name}' has no Monte Carlo events")

        # If a scale factor for MC generation was given rather than a rate,
        # nexpected is negative
        self.nexpected = float(nexpected)
        if self.nexpected < 0:
            self.nexpected *= -1.0 * self.n_mc

        all_names = [s.name for s in systematics]
        if systematic_names is None:
            systematic_names = all_names
        unknown = [s for s in systematic_names if s not in all_names]
        if unknown:
            raise ConfigurationError(f"Signal '{name}' uses unknown systematics: {unknown}")
        self.systematic_names = list(systematic_names)

        samples, weights = apply_exclusions(samples, observables, weights)

        self.histogram = self.build_pdf(samples, weights, nfields, observables,
                                        systematics, composition)

        # Evaluate histogram at mean of systematics to see how many
        # of our samples fall within our observable limits
        self.set_efficiency(systematics)

    def build_pdf(self, samples, weights, nfields: int,
                  observables: Sequence[Observable],
                  systematics: Sequence[Systematic],
                  composition: str) -> HistogramPDF:
        """Construct the histogram evaluator and register this signal's systematics."""
        pdf = HistogramPDF(samples, weights, nfields, observables, composition=composition)

        # Slots come from the full systematic list; MCMC checks them against its own
        slots = systematic_slots(systematics)
        self.systematic_slots = {}
        for syst in systematics:
            if syst.name in self.systematic_names:
                self.systematic_slots[syst.name] = slots[syst.name]
                pdf.add_systematic(build_transform(syst, slots[syst.name]))
        return pdf

    def set_efficiency(self, systematics: Sequence[Systematic]) -> None:
        """
        Efficiency at the systematic means, and nexpected scaled by it.

        nexpected = physical events expected * efficiency. sigma is
        fractional and does not scale.
        """
        means = np.array([m for syst in systematics for m in syst.means], dtype=np.float64)
        _, norm = self.histogram.histogram(means)

        self.nevents = float(norm)
        self.efficiency = self.nevents / self.n_mc
        self.nexpected *= self.efficiency

        logger.info(
            f"Signal '{self.name}': {self.nevents:g}/{self.n_mc} events remain. "
            f"Total efficiency {100.0 * self.efficiency:.3f}%"
        )

    def __repr__(self):
        return (f"Signal(name={self.name!r}, category={self.category!r}, "
                f"nexpected={self.nexpected:g}, efficiency={self.efficiency:.4f}, "
                f"n_mc={self.n_mc}, fixed={self.fixed})")

    def summary(self) -> Dict[str, object]:
        """Signal configuration as a plain dict."""
        return {
            'name': self.name,
            'title': self.title,
            'category': self.category,
            'nexpected': self.nexpected,
            'sigma': self.sigma,
            'efficiency': self.efficiency,
            'n_mc': self.n_mc,
            'fixed': self.fixed,
            'systematics': list(self.systematic_names),
        }


def build_sources(signals: Sequence[Signal]) -> List[Source]:
    """
    Group signals into rate sources by category tag.

    Sources are ordered by the first appearance of their category. A
    source's sigma is the largest member sigma; it is fixed only when all
    member signals are fixed.
    """
    groups: Dict[str, List[Signal]] = {}
    for sig in signals:
        groups.setdefault(sig.category, []).append(sig)

    sources = []
    for category, members in groups.items():
        sources.append(Source(
            name=category,
            sigma=max(s.sigma for s in members),
            fixed=all(s.fixed for s in members),
            signals=tuple(s.name for s in members),
        ))
    return sources
