"""
Binned PDFs for the Likelihood Walk

This package implements the histogram PDF evaluator and the systematic
coordinate transforms applied to its sample events before binning.

To add a new systematic kind:
1. Add enum value to SystematicType in observables.py
2. Write its coordinate rule in pdf/systematics.py
3. Add it to TRANSFORM_REGISTRY
"""

from .histogram import HistogramPDF, apply_exclusions, as_event_matrix
from .systematics import (
    SystematicTransform,
    TRANSFORM_REGISTRY,
    COMPOSITION_SHIFT_FIRST,
    COMPOSITION_REGISTRATION,
    apply_transform,
    build_transform,
    order_transforms,
)

__all__ = [
    'HistogramPDF',
    'apply_exclusions',
    'as_event_matrix',
    'SystematicTransform',
    'TRANSFORM_REGISTRY',
    'COMPOSITION_SHIFT_FIRST',
    'COMPOSITION_REGISTRATION',
    'apply_transform',
    'build_transform',
    'order_transforms',
]
