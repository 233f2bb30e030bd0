"""
Unit Tests for Descriptors, Systematic Transforms, Histogram PDFs and Signals

Tests individual components in isolation.
Run with: pytest tests/test_unit.py -v
"""

import numpy as np
import jax.numpy as jnp
import pytest

from histmcmc import (
    ConfigurationError,
    HistogramPDF,
    Observable,
    Signal,
    Source,
    Systematic,
    SystematicTransform,
    SystematicType,
    apply_exclusions,
    build_sources,
)
from histmcmc.observables import systematic_slots
from histmcmc.pdf import (
    COMPOSITION_REGISTRATION,
    COMPOSITION_SHIFT_FIRST,
    apply_transform,
    build_transform,
    order_transforms,
)
from histmcmc.mcmc.scan import initial_lookup_table, refresh_lookup_table
from histmcmc.mcmc.types import build_parameter_space, UNCONSTRAINED_SYSTEMATIC_STEP


# ============================================================================
# DESCRIPTOR TESTS
# ============================================================================

class TestDescriptors:
    """Validation of Observable, Systematic and Source."""

    def test_observable_bin_width(self):
        obs = Observable('x', 0, 0.0, 10.0, 20)
        assert obs.bin_width == 0.5
        assert not obs.has_exclusion

    @pytest.mark.parametrize("lower,upper,bins", [
        (5.0, 5.0, 10),
        (10.0, 0.0, 10),
        (0.0, np.inf, 10),
        (0.0, 10.0, 0),
    ])
    def test_observable_rejects_bad_binning(self, lower, upper, bins):
        with pytest.raises(ConfigurationError, match="Invalid observable"):
            Observable('x', 0, lower, upper, bins)

    def test_observable_rejects_inverted_exclusion(self):
        with pytest.raises(ConfigurationError, match="exclude"):
            Observable('x', 0, 0.0, 10.0, 10, exclude=(4.0, 2.0))

    def test_observable_from_fields(self):
        obs = Observable.from_fields('energy', 'e', ['r', 'e', 't'], 0.0, 5.0, 5)
        assert obs.field_index == 1

    @pytest.mark.parametrize("value,expected", [
        ('shift', SystematicType.SHIFT),
        ('Scale', SystematicType.SCALE),
        ('resolution_scale', SystematicType.RESOLUTION_SCALE),
        ('resolution scale', SystematicType.RESOLUTION_SCALE),
        (1, SystematicType.SCALE),
        (SystematicType.SHIFT, SystematicType.SHIFT),
    ])
    def test_systematic_type_coerce(self, value, expected):
        assert SystematicType.coerce(value) == expected

    @pytest.mark.parametrize("value", ['smear', 7, -1, True, None])
    def test_systematic_type_rejects_unknown(self, value):
        with pytest.raises(ConfigurationError, match="Unknown systematic type"):
            SystematicType.coerce(value)

    def test_systematic_type_str(self):
        assert str(SystematicType.RESOLUTION_SCALE) == 'Resolution Scale'

    def test_systematic_parameter_names(self):
        single = Systematic('shift', 'shift', 0, means=[0.0], sigmas=[0.1])
        poly = Systematic('poly', 'scale', 0, means=[1.0, 0.0, 0.0], sigmas=[0.1, 0.0, 0.0])
        assert single.parameter_names() == ['shift']
        assert poly.parameter_names() == ['poly_0', 'poly_1', 'poly_2']
        assert poly.npars == 3

    def test_systematic_scalar_mean_is_promoted(self):
        syst = Systematic('shift', 'shift', 0, means=0.5, sigmas=0.1)
        assert syst.means == (0.5,)
        assert syst.sigmas == (0.1,)

    def test_systematic_validation_collects_errors(self):
        with pytest.raises(ConfigurationError) as excinfo:
            Systematic('bad', 'shift', -1, means=[0.0, 1.0], sigmas=[-0.1])
        message = str(excinfo.value)
        assert "2 means but 1 sigmas" in message
        assert "field_index" in message

    def test_resolution_scale_requires_truth_field(self):
        with pytest.raises(ConfigurationError, match="truth_field_index"):
            Systematic('res', 'resolution_scale', 0, means=[1.0], sigmas=[0.1])

    def test_systematic_slots_are_sequential(self):
        a = Systematic('a', 'shift', 0, means=[0.0], sigmas=[0.1])
        b = Systematic('b', 'scale', 0, means=[1.0, 0.0], sigmas=[0.1, 0.1])
        c = Systematic('c', 'shift', 0, means=[0.0], sigmas=[0.1])
        assert systematic_slots([a, b, c]) == {'a': (0,), 'b': (1, 2), 'c': (3,)}

    def test_systematic_slots_rejects_duplicates(self):
        a = Systematic('a', 'shift', 0, means=[0.0], sigmas=[0.1])
        with pytest.raises(ConfigurationError, match="Duplicate"):
            systematic_slots([a, a])

    def test_source_rejects_negative_sigma(self):
        with pytest.raises(ConfigurationError):
            Source('s', sigma=-1.0)


# ============================================================================
# EXCLUSION TESTS
# ============================================================================

class TestExclusions:
    """Union-of-exclusions filtering."""

    def _observables(self):
        return [
            Observable('a', 0, 0.0, 10.0, 10, exclude=(2.0, 4.0)),
            Observable('b', 1, 0.0, 10.0, 10, exclude=(2.0, 4.0)),
        ]

    def test_event_inside_one_window_is_kept(self):
        events = np.array([
            [3.0, 3.0],   # inside both windows: dropped
            [3.0, 8.0],   # inside a only: kept
            [8.0, 3.0],   # inside b only: kept
            [8.0, 8.0],   # inside neither: kept
        ])
        kept, _ = apply_exclusions(events, self._observables())
        np.testing.assert_array_equal(kept, events[1:])

    def test_weights_filtered_alongside(self):
        events = np.array([[3.0, 3.0], [3.0, 8.0]])
        weights = np.array([5, 7])
        kept, kept_weights = apply_exclusions(events, self._observables(), weights)
        assert kept.shape == (1, 2)
        np.testing.assert_array_equal(kept_weights, [7])

    def test_single_declaring_observable(self):
        observables = [
            Observable('a', 0, 0.0, 10.0, 10, exclude=(2.0, 4.0)),
            Observable('b', 1, 0.0, 10.0, 10),
        ]
        events = np.array([[3.0, 8.0], [5.0, 8.0]])
        kept, _ = apply_exclusions(events, observables)
        np.testing.assert_array_equal(kept, [[5.0, 8.0]])

    def test_window_edges_are_inclusive(self):
        observables = [Observable('a', 0, 0.0, 10.0, 10, exclude=(2.0, 4.0))]
        events = np.array([[2.0], [4.0], [4.5]])
        kept, _ = apply_exclusions(events, observables)
        np.testing.assert_array_equal(kept, [[4.5]])

    def test_no_exclusions_is_identity(self):
        events = np.random.default_rng(0).uniform(0, 10, size=(50, 2))
        kept, weights = apply_exclusions(events, [Observable('a', 0, 0.0, 10.0, 10)])
        assert kept is events
        assert weights is None


# ============================================================================
# SYSTEMATIC TRANSFORM TESTS
# ============================================================================

class TestSystematicTransforms:
    """Coordinate rules and composition order."""

    def test_shift_moves_event_to_new_bin(self, energy):
        pdf = HistogramPDF(np.array([5.0]), None, 1, [energy])
        pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=0, parameters=(0,)))

        counts, norm = pdf.histogram(jnp.array([2.0]))
        counts = np.asarray(counts)
        assert counts[7] == 1.0
        assert counts[5] == 0.0
        assert float(norm) == 1.0

    def test_scale(self):
        coords = jnp.array([[4.0]])
        t = SystematicTransform(SystematicType.SCALE, field=0, parameters=(0,))
        out = apply_transform(coords, t, jnp.array([1.5]))
        assert float(out[0, 0]) == pytest.approx(6.0)

    def test_resolution_scale(self):
        coords = jnp.array([[6.0, 5.0]])
        t = SystematicTransform(SystematicType.RESOLUTION_SCALE, field=0, parameters=(0,), truth_field=1)
        out = apply_transform(coords, t, jnp.array([2.0]))
        assert float(out[0, 0]) == pytest.approx(7.0)
        # Truth column is untouched
        assert float(out[0, 1]) == pytest.approx(5.0)

    def test_polynomial_shift(self):
        coords = jnp.array([[2.0]])
        t = SystematicTransform(SystematicType.SHIFT, field=0, parameters=(0, 1))
        out = apply_transform(coords, t, jnp.array([1.0, 0.5]))
        # x + p0 + p1 * x
        assert float(out[0, 0]) == pytest.approx(4.0)

    def test_parameter_slots_index_the_vector(self):
        coords = jnp.array([[1.0]])
        t = SystematicTransform(SystematicType.SHIFT, field=0, parameters=(2,))
        out = apply_transform(coords, t, jnp.array([10.0, 20.0, 0.25]))
        assert float(out[0, 0]) == pytest.approx(1.25)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown systematic kind"):
            SystematicTransform(9, field=0, parameters=(0,))

    def test_transform_needs_parameters(self):
        with pytest.raises(ConfigurationError):
            SystematicTransform(SystematicType.SHIFT, field=0, parameters=())

    def test_build_transform_checks_slot_count(self):
        syst = Systematic('s', 'shift', 0, means=[0.0, 0.0], sigmas=[0.1, 0.1])
        with pytest.raises(ConfigurationError, match="slots"):
            build_transform(syst, (0,))

    def test_shift_first_composition(self, energy):
        pdf = HistogramPDF(np.array([1.0]), None, 1, [energy], composition=COMPOSITION_SHIFT_FIRST)
        pdf.add_systematic(SystematicTransform(SystematicType.SCALE, field=0, parameters=(0,)))
        pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=0, parameters=(1,)))
        out = pdf.transform_samples(jnp.array([2.0, 1.0]))
        # (1 + 1) * 2
        assert float(out[0, 0]) == pytest.approx(4.0)

    def test_registration_composition(self, energy):
        pdf = HistogramPDF(np.array([1.0]), None, 1, [energy], composition=COMPOSITION_REGISTRATION)
        pdf.add_systematic(SystematicTransform(SystematicType.SCALE, field=0, parameters=(0,)))
        pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=0, parameters=(1,)))
        out = pdf.transform_samples(jnp.array([2.0, 1.0]))
        # 1 * 2 + 1
        assert float(out[0, 0]) == pytest.approx(3.0)

    def test_order_is_stable_within_kind(self):
        s1 = SystematicTransform(SystematicType.SHIFT, field=0, parameters=(0,))
        sc = SystematicTransform(SystematicType.SCALE, field=0, parameters=(1,))
        s2 = SystematicTransform(SystematicType.SHIFT, field=0, parameters=(2,))
        assert order_transforms([sc, s2, s1]) == (s2, s1, sc)
        assert order_transforms([sc, s2, s1], COMPOSITION_REGISTRATION) == (sc, s2, s1)

    def test_unknown_composition_rejected(self, energy):
        with pytest.raises(ConfigurationError, match="composition"):
            HistogramPDF(np.array([1.0]), None, 1, [energy], composition='scale_first')


# ============================================================================
# HISTOGRAM PDF TESTS
# ============================================================================

class TestHistogramPDF:
    """Binning, normalization and evaluation."""

    def test_identity_matches_numpy_histogram(self):
        rng = np.random.default_rng(3)
        samples = rng.uniform(-1.0, 11.0, size=(5000, 3))
        weights = rng.integers(0, 4, size=5000)
        observables = [
            Observable('x', 0, 0.0, 10.0, 8),
            Observable('z', 2, 2.0, 6.0, 5),
        ]
        pdf = HistogramPDF(samples, weights, 3, observables)
        counts, norm = pdf.histogram(jnp.zeros(0))

        expected, _ = np.histogramdd(samples[:, [0, 2]], bins=[8, 5],
                                     range=[(0.0, 10.0), (2.0, 6.0)], weights=weights)
        np.testing.assert_allclose(np.asarray(counts), expected)
        assert float(norm) == pytest.approx(expected.sum())
        assert pdf.shape == (8, 5)
        assert pdf.nbins_total == 40

    def test_upper_edge_is_excluded(self, energy):
        pdf = HistogramPDF(np.array([0.0, 9.999, 10.0]), None, 1, [energy])
        counts, norm = pdf.histogram(jnp.zeros(0))
        counts = np.asarray(counts)
        assert counts[0] == 1.0
        assert counts[9] == 1.0
        assert float(norm) == 2.0

    def test_flat_samples_are_reshaped(self):
        observables = [Observable('x', 0, 0.0, 10.0, 10)]
        pdf = HistogramPDF(np.array([1.0, 100.0, 2.0, 200.0]), None, 2, observables)
        assert pdf.nevents == 2

    def test_mismatched_weights_rejected(self, energy):
        with pytest.raises(ConfigurationError, match="weights"):
            HistogramPDF(np.array([1.0, 2.0]), np.array([1]), 1, [energy])

    @pytest.mark.parametrize("weights", [[1, -1], [1.0, 0.5]])
    def test_bad_weights_rejected(self, energy, weights):
        with pytest.raises(ConfigurationError, match="non-negative integers"):
            HistogramPDF(np.array([1.0, 2.0]), np.array(weights), 1, [energy])

    def test_field_out_of_range_rejected(self):
        obs = Observable('y', 3, 0.0, 10.0, 10)
        with pytest.raises(ConfigurationError, match="field 3"):
            HistogramPDF(np.zeros((4, 2)), None, 2, [obs])

    def test_systematic_field_out_of_range_rejected(self, energy):
        pdf = HistogramPDF(np.array([1.0]), None, 1, [energy])
        with pytest.raises(ConfigurationError, match="field 2"):
            pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=2, parameters=(0,)))

    def test_evaluate_requires_points(self, energy):
        pdf = HistogramPDF(np.array([1.0]), None, 1, [energy])
        with pytest.raises(ConfigurationError, match="evaluation points"):
            pdf.evaluate(jnp.zeros(0))

    def test_evaluate_density(self, energy):
        pdf = HistogramPDF(np.array([0.5, 0.5, 0.5, 1.5]), None, 1, [energy])
        pdf.set_eval_points(np.array([0.2, 1.7, 5.0, 11.0, -1.0]))
        density, norm = pdf.evaluate(jnp.zeros(0))
        np.testing.assert_allclose(np.asarray(density), [0.75, 0.25, 0.0, 0.0, 0.0])
        assert float(norm) == 4.0

    def test_zero_normalization_gives_zero_density(self, energy):
        pdf = HistogramPDF(np.array([20.0, 30.0]), None, 1, [energy])
        pdf.set_eval_points(np.array([1.0]))
        density, norm = pdf.evaluate(jnp.zeros(0))
        assert float(norm) == 0.0
        assert float(density[0]) == 0.0
        assert np.all(np.isfinite(np.asarray(density)))

    def test_repeated_evaluation_is_stateless(self, energy):
        pdf = HistogramPDF(np.array([4.5, 5.5]), None, 1, [energy])
        pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=0, parameters=(0,)))
        pdf.set_eval_points(np.array([4.2, 6.2]))

        first, _ = pdf.evaluate(jnp.array([0.0]))
        moved, _ = pdf.evaluate(jnp.array([1.0]))
        again, _ = pdf.evaluate(jnp.array([0.0]))

        np.testing.assert_allclose(np.asarray(first), [0.5, 0.0])
        np.testing.assert_allclose(np.asarray(moved), [0.0, 0.5])
        np.testing.assert_array_equal(np.asarray(first), np.asarray(again))

    def test_evaluator_does_not_rebind_points(self, energy):
        pdf = HistogramPDF(np.array([0.5, 1.5]), None, 1, [energy])
        pdf.set_eval_points(np.array([0.5]))
        fn, buffers = pdf.evaluator(np.array([1.5, 1.5, 1.5]))

        density, _ = fn(buffers, jnp.zeros(0))
        assert density.shape == (3,)
        bound, _ = pdf.evaluate(jnp.zeros(0))
        assert bound.shape == (1,)

    def test_parameter_indices(self, energy):
        pdf = HistogramPDF(np.array([1.0]), None, 1, [energy])
        pdf.add_systematic(SystematicTransform(SystematicType.SHIFT, field=0, parameters=(3,)))
        pdf.add_systematic(SystematicTransform(SystematicType.SCALE, field=0, parameters=(1, 2)))
        assert pdf.parameter_indices == (1, 2, 3)


# ============================================================================
# SIGNAL TESTS
# ============================================================================

class TestSignal:
    """Efficiency, rate handling and source grouping."""

    def test_efficiency_scenario(self, energy):
        rng = np.random.default_rng(11)
        samples = rng.uniform(-5.0, 15.0, size=(1000, 1))
        signal = Signal('sig', 100.0, samples, 1, [energy])

        inside = np.sum((samples[:, 0] >= 0.0) & (samples[:, 0] < 10.0))
        assert signal.n_mc == 1000
        assert signal.efficiency == pytest.approx(inside / 1000.0)
        assert signal.nexpected == pytest.approx(100.0 * inside / 1000.0)

    @pytest.mark.parametrize("low,high", [(0.0, 10.0), (-10.0, 20.0), (50.0, 60.0)])
    def test_efficiency_bounds(self, energy, low, high):
        samples = np.random.default_rng(5).uniform(low, high, size=(500, 1))
        signal = Signal('sig', 10.0, samples, 1, [energy])
        assert 0.0 <= signal.efficiency <= 1.0

    def test_efficiency_uses_systematic_means(self, energy):
        shift = Systematic('shift', 'shift', 0, means=[5.0], sigmas=[0.1])
        samples = np.array([[1.0], [7.0]])
        signal = Signal('sig', 10.0, samples, 1, [energy], [shift])
        # 7.0 + 5.0 leaves the range
        assert signal.efficiency == pytest.approx(0.5)

    def test_weighted_efficiency(self, energy):
        samples = np.array([[1.0], [20.0]])
        signal = Signal('sig', 10.0, samples, 1, [energy], weights=np.array([3, 1]))
        assert signal.n_mc == 4
        assert signal.efficiency == pytest.approx(0.75)

    def test_negative_nexpected_is_scale_factor(self, energy):
        samples = np.linspace(0.5, 9.5, 1000).reshape(-1, 1)
        signal = Signal('sig', -0.5, samples, 1, [energy])
        assert signal.nexpected == pytest.approx(500.0)

    def test_unknown_systematic_rejected(self, energy, energy_shift):
        with pytest.raises(ConfigurationError, match="unknown systematics"):
            Signal('sig', 10.0, np.ones((5, 1)), 1, [energy], [energy_shift],
                   systematic_names=['missing'])

    def test_signal_subset_of_systematics(self, energy, energy_shift):
        scale = Systematic('scale', 'scale', 0, means=[1.0], sigmas=[0.01])
        signal = Signal('sig', 10.0, np.ones((5, 1)), 1, [energy], [energy_shift, scale],
                        systematic_names=['scale'])
        assert signal.histogram.parameter_indices == (1,)

    def test_sample_exclusions_applied(self):
        obs = Observable('x', 0, 0.0, 10.0, 10, exclude=(0.0, 5.0))
        samples = np.array([[1.0], [2.0], [8.0], [9.0]])
        signal = Signal('sig', 10.0, samples, 1, [obs])
        assert signal.histogram.nevents == 2

    def test_empty_signal_rejected(self, energy):
        with pytest.raises(ConfigurationError, match="no Monte Carlo events"):
            Signal('sig', 10.0, np.ones((2, 1)), 1, [energy], weights=np.array([0, 0]))

    def test_category_defaults_to_name(self, energy):
        signal = Signal('sig', 10.0, np.ones((5, 1)), 1, [energy])
        assert signal.category == 'sig'
        assert signal.summary()['category'] == 'sig'

    def test_build_sources(self, energy):
        samples = np.ones((5, 1))
        a = Signal('a', 10.0, samples, 1, [energy], category='bkg', sigma=0.1)
        b = Signal('b', 10.0, samples, 1, [energy], category='bkg', sigma=0.2, fixed=True)
        c = Signal('c', 10.0, samples, 1, [energy])

        sources = build_sources([a, b, c])
        assert [s.name for s in sources] == ['bkg', 'c']
        assert sources[0].sigma == 0.2
        assert not sources[0].fixed
        assert sources[0].signals == ('a', 'b')


# ============================================================================
# PARAMETER SPACE TESTS
# ============================================================================

class TestParameterSpace:
    """Parameter vector layout and wiring."""

    def _signals(self, energy, systematics, systematic_names=None):
        samples = np.linspace(0.5, 9.5, 100).reshape(-1, 1)
        kwargs = {'systematic_names': systematic_names}
        return [
            Signal('a', 30.0, samples, 1, [energy], systematics, category='bkg', sigma=0.1, **kwargs),
            Signal('b', 10.0, samples, 1, [energy], systematics, category='bkg', sigma=0.1, **kwargs),
            Signal('c', 25.0, samples, 1, [energy], systematics, **kwargs),
        ]

    def test_layout(self, energy, energy_shift):
        scale = Systematic('scale', 'scale', 0, means=[1.0, 0.0], sigmas=[0.0, 0.0], fixed=True)
        systematics = [energy_shift, scale]
        signals = self._signals(energy, systematics)
        space = build_parameter_space(signals, systematics, build_sources(signals))

        assert space.names == ('bkg', 'c', 'energy_shift', 'scale_0', 'scale_1')
        assert space.nsources == 2
        assert space.nsystematics == 3
        np.testing.assert_allclose(space.means, [40.0, 25.0, 0.0, 1.0, 0.0])
        np.testing.assert_array_equal(space.source_id, [0, 0, 1])
        np.testing.assert_allclose(space.rate_fractions, [0.75, 0.25, 1.0])
        np.testing.assert_array_equal(space.fixed, [False, False, False, True, True])
        assert space.systematic_slots == {'energy_shift': (0,), 'scale': (1, 2)}

    def test_widths(self, energy, energy_shift):
        scale = Systematic('scale', 'scale', 0, means=[2.0], sigmas=[0.0])
        systematics = [energy_shift, scale]
        # The scale acts on no signal, so efficiencies stay at 1
        signals = self._signals(energy, systematics, systematic_names=['energy_shift'])
        space = build_parameter_space(signals, systematics, build_sources(signals))

        # Source constraint is fractional sigma times nominal; unconstrained is Poisson
        np.testing.assert_allclose(space.sigmas[:2], [4.0, 0.0])
        np.testing.assert_allclose(space.steps[:2], [4.0, 5.0])
        assert space.steps[2] == pytest.approx(0.1)
        assert space.steps[3] == pytest.approx(UNCONSTRAINED_SYSTEMATIC_STEP * 2.0)

    def test_signal_rates(self, energy):
        signals = self._signals(energy, [])
        space = build_parameter_space(signals, [], build_sources(signals))
        np.testing.assert_allclose(space.signal_rates([80.0, 5.0]), [60.0, 20.0, 5.0])

    def test_index(self, energy):
        signals = self._signals(energy, [])
        space = build_parameter_space(signals, [], build_sources(signals))
        assert space.index('c') == 1
        with pytest.raises(KeyError, match="Unknown parameter"):
            space.index('missing')

    def test_missing_source_rejected(self, energy):
        signals = self._signals(energy, [])
        with pytest.raises(ConfigurationError, match="no matching source"):
            build_parameter_space(signals, [], [Source('bkg')])

    def test_empty_source_rejected(self, energy):
        signals = self._signals(energy, [])
        sources = build_sources(signals) + [Source('unused')]
        with pytest.raises(ConfigurationError, match="no signals"):
            build_parameter_space(signals, [], sources)

    def test_name_collision_rejected(self, energy):
        samples = np.ones((5, 1))
        shift = Systematic('c', 'shift', 0, means=[0.0], sigmas=[0.1])
        signals = [Signal('c', 10.0, samples, 1, [energy], [shift])]
        with pytest.raises(ConfigurationError, match="unique"):
            build_parameter_space(signals, [shift], build_sources(signals))

    def test_signal_records_its_slots(self, energy):
        a = Systematic('a', 'shift', 0, means=[0.0], sigmas=[0.1])
        b = Systematic('b', 'scale', 0, means=[1.0], sigmas=[0.01])
        sig = Signal('sig', 10.0, np.ones((5, 1)), 1, [energy], [a, b], systematic_names=['b'])
        assert sig.systematic_slots == {'b': (1,)}


# ============================================================================
# LOOKUP TABLE TESTS
# ============================================================================

def constant_evaluator(value):
    """Evaluator whose density is value + sum(params) at every point."""
    def evaluate(buffers, params):
        n = buffers[0].shape[0]
        return jnp.full(n, value) + jnp.sum(params), jnp.asarray(float(n))
    return evaluate


class TestLookupTable:
    """Column-selective refresh of the lookup table."""

    def _setup(self):
        evaluators = [constant_evaluator(1.0), constant_evaluator(2.0), constant_evaluator(3.0)]
        buffers = [(jnp.zeros(4),)] * 3
        # Signal 1 has no systematics
        slots = [(0,), (), (1,)]
        return evaluators, buffers, slots

    def test_initial_table(self):
        evaluators, buffers, _ = self._setup()
        lut = initial_lookup_table(evaluators, buffers, jnp.zeros(2))
        assert lut.shape == (4, 3)
        np.testing.assert_allclose(np.asarray(lut[0]), [1.0, 2.0, 3.0])

    def test_only_changed_columns_refreshed(self):
        evaluators, buffers, slots = self._setup()
        cached = -jnp.ones((4, 3))
        current = jnp.zeros(2)

        lut = refresh_lookup_table(cached, current, jnp.array([0.5, 0.0]), evaluators, buffers, slots)
        np.testing.assert_allclose(np.asarray(lut[:, 0]), 1.5)
        np.testing.assert_allclose(np.asarray(lut[:, 1:]), -1.0)

        lut = refresh_lookup_table(cached, current, jnp.array([0.0, 0.25]), evaluators, buffers, slots)
        np.testing.assert_allclose(np.asarray(lut[:, :2]), -1.0)
        np.testing.assert_allclose(np.asarray(lut[:, 2]), 3.25)

    def test_unchanged_point_reuses_every_column(self):
        evaluators, buffers, slots = self._setup()
        cached = -jnp.ones((4, 3))
        current = jnp.array([0.1, 0.2])
        lut = refresh_lookup_table(cached, current, current, evaluators, buffers, slots)
        np.testing.assert_allclose(np.asarray(lut), -1.0)
