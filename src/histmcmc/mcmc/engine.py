"""
MCMC Engine - Main Entry Point.

This module provides the MCMC class that runs the Metropolis walk over the
fit parameters. The implementation is split across several modules:

- types: Data structures (ParameterSpace, WalkArrays, WalkParams)
- nll: Negative log-likelihood and its backends
- sampling: Proposal and acceptance functions
- scan: Scan body and lookup-table maintenance
- compile: Kernel compilation and caching
- diagnostics: Acceptance and parameter summaries

Walk structure:
    1. Validate the run configuration
    2. Apply range cuts and exclusions to the dataset and bind it to every signal PDF
    3. Build the lookup table and NLL at the parameter means
    4. Run compiled chunks of sync_interval steps, flushing each chunk to
       the SampleStore and polling should_stop between chunks
    5. Log acceptance and parameter summaries
"""

import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from ..error_handling import (
    ConfigurationError,
    ResourceError,
    WalkError,
    diagnose_samples,
    is_resource_exhausted,
    print_diagnostics,
    validate_run_config,
)
from ..hardware_info import get_hardware_info, get_histmcmc_version
from ..observables import Observable, Source, Systematic
from ..pdf import apply_exclusions, as_event_matrix
from ..samples import SampleStore
from ..signals import Signal, build_sources
from .compile import KernelCache
from .diagnostics import (
    parameter_summary,
    print_acceptance_summary,
    print_parameter_summary,
)
from .nll import DEFAULT_BLOCK_SIZE, NLLEvaluator, nll_jax
from .scan import initial_lookup_table, make_step_fn
from .types import WalkParams, build_parameter_space
from .utils import burnin_steps, clean_config

import logging
logger = logging.getLogger('histmcmc')


class MCMC:
    """
    Metropolis random walk over signal rates and systematic parameters.

    Args:
        signals: Signals, one lookup-table column each
        systematics: All systematics, in registration order (the same list
                     the signals were built with)
        observables: Observables whose ranges and exclusion windows apply to the
                     dataset (default: those of the first signal's PDF)
        sources: Rate sources (default: one per signal category)
        block_size: Events per NLL partial-sum block (power of two)
        nll_backend: 'jax' or 'numpy' for the host-side nll() helper
        num_threads: Thread pool size for the numpy backend

    Raises:
        ConfigurationError: If the signals, systematics and sources do not
                            describe a consistent parameter space
    """

    def __init__(self, signals: Sequence[Signal], systematics: Sequence[Systematic] = (),
                 observables: Sequence[Observable] = (), sources: Optional[Sequence[Source]] = None,
                 block_size: int = DEFAULT_BLOCK_SIZE, nll_backend: str = 'jax',
                 num_threads: int = 1):
        self.signals = list(signals)
        if not self.signals:
            raise ConfigurationError("At least one signal is required")
        self.systematics = list(systematics)

        nfields = {s.histogram.nfields for s in self.signals}
        if len(nfields) != 1:
            raise ConfigurationError(f"Signals disagree on the number of fields: {sorted(nfields)}")
        self.nfields = nfields.pop()

        self.observables = list(observables) if observables else list(self.signals[0].histogram.observables)
        self.sources = list(sources) if sources is not None else build_sources(self.signals)

        self.space = build_parameter_space(self.signals, self.systematics, self.sources)
        self.block_size = block_size
        self.nll_evaluator = NLLEvaluator(self.space, block_size, nll_backend, num_threads)

        self._pdfs = [s.histogram for s in self.signals]
        self._signal_slots = [pdf.parameter_indices for pdf in self._pdfs]
        self._check_signal_slots()

        self._kernels = KernelCache(self._make_step_fn)
        self._log_parameters()

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    @property
    def parameter_names(self):
        return self.space.names

    def _make_step_fn(self, walk_params: WalkParams) -> Callable:
        return make_step_fn(
            [pdf.evaluate_fn for pdf in self._pdfs],
            self._signal_slots,
            self.space.nsources,
            walk_params,
        )

    def _check_signal_slots(self) -> None:
        """Every signal must read each of its systematics from the engine's slots."""
        errors = []
        for sig in self.signals:
            for name, slots in sig.systematic_slots.items():
                expected = self.space.systematic_slots.get(name)
                if expected is None:
                    errors.append(f"Signal '{sig.name}' uses systematic '{name}', which is not registered")
                elif tuple(slots) != tuple(expected):
                    errors.append(
                        f"Signal '{sig.name}' reads systematic '{name}' from slots {tuple(slots)}, "
                        f"expected {tuple(expected)}; build every signal with the same systematic list"
                    )
        if errors:
            raise ConfigurationError("Inconsistent systematic slots:\n  " + "\n  ".join(errors))

    def _log_parameters(self) -> None:
        s = self.space
        logger.info(
            f"MCMC: {s.nsignals} signal(s), {s.nsources} rate parameter(s), "
            f"{s.nsystematics} systematic parameter(s), {s.nfloat} floating"
        )
        width = max(len(n) for n in s.names)
        for i, name in enumerate(s.names):
            state = 'fixed' if s.fixed[i] else f"step {s.steps[i]:.4g}"
            constraint = f"sigma {s.sigmas[i]:.4g}" if s.sigmas[i] > 0 else "unconstrained"
            logger.info(f"  {name:<{width}}  mean {s.means[i]:<12.6g} {constraint:<18} {state}")

    def prepare_data(self, data) -> np.ndarray:
        """
        Dataset as an (n_events, nfields) matrix restricted to the fit region.

        Events outside any observable's [lower, upper) range, and events in
        the exclusion windows, are removed.
        """
        events = as_event_matrix(data, self.nfields)
        in_range = np.ones(events.shape[0], dtype=bool)
        for obs in self.observables:
            v = events[:, obs.field_index]
            in_range &= (v >= obs.lower) & (v < obs.upper)
        if not np.all(in_range):
            logger.info(f"Range cuts removed {int(np.sum(~in_range))} of {events.shape[0]} data events")

        kept, _ = apply_exclusions(events[in_range], self.observables)
        if kept.shape[0] != int(np.sum(in_range)):
            logger.info(f"Exclusions removed {int(np.sum(in_range)) - kept.shape[0]} data events")
        return kept

    def _as_params(self, params) -> np.ndarray:
        if params is None:
            return self.space.means.copy()
        params = np.asarray(params, dtype=np.float64).reshape(-1)
        if params.shape[0] != self.space.nparameters:
            raise ConfigurationError(
                f"Expected {self.space.nparameters} parameters {list(self.space.names)}, got {params.shape[0]}"
            )
        return params

    # ------------------------------------------------------------------
    # Host helpers
    # ------------------------------------------------------------------

    def lookup_table(self, data, params=None) -> np.ndarray:
        """
        Density of every signal at every data event.

        Args:
            data: Dataset events, flat or (n_events, nfields)
            params: Full parameter vector (default: the means)

        Returns:
            (n_events, n_signals) array
        """
        events = self.prepare_data(data)
        params = self._as_params(params)
        evaluated = [pdf.evaluator(events) for pdf in self._pdfs]
        lut = initial_lookup_table(
            [fn for fn, _ in evaluated],
            [buffers for _, buffers in evaluated],
            jnp.asarray(params[self.space.nsources:]),
        )
        return np.asarray(jax.device_get(lut))

    def nll(self, data, params=None) -> float:
        """NLL of the dataset at a parameter point, using the configured backend."""
        params = self._as_params(params)
        return self.nll_evaluator(self.lookup_table(data, params), params)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _initialize(self, events: np.ndarray, rng_seed: int, step_scale: float):
        """Initial carry and kernel constants for a walk starting at the means."""
        nsources = self.space.nsources
        evaluated = [pdf.evaluator(events) for pdf in self._pdfs]
        pdf_buffers = tuple(buffers for _, buffers in evaluated)

        arrays = self.space.to_arrays()
        params = arrays.means
        lut = initial_lookup_table(
            [fn for fn, _ in evaluated], pdf_buffers, params[nsources:]
        )
        nll = nll_jax(lut, params, arrays.source_id, arrays.rate_fractions,
                      arrays.means, arrays.sigmas, block_size=self.block_size)

        if not np.isfinite(float(nll)):
            raise ConfigurationError(
                "Initial NLL is not finite: some data events have zero density under every "
                "signal at the parameter means"
            )

        counter = jnp.zeros((), dtype=jnp.int32)
        carry = (params, nll, lut, counter, counter)
        consts = (random.PRNGKey(rng_seed), arrays, pdf_buffers,
                  jnp.asarray(step_scale, dtype=params.dtype))
        return carry, consts

    def __call__(self, data, nsteps: int, burnin_fraction: float = 0.1,
                 debug_mode: bool = False, sync_interval: int = 10000,
                 rng_seed: int = 42, step_scale: float = 1.0,
                 should_stop: Optional[Callable[[], bool]] = None) -> SampleStore:
        """
        Run the walk.

        Args:
            data: Dataset events, flat or (n_events, nfields)
            nsteps: Total steps, burn-in included
            burnin_fraction: Leading fraction of steps that are not stored
            debug_mode: Accept and store every proposed point
            sync_interval: Steps per compiled chunk / host flush
            rng_seed: Seed of the master random key
            step_scale: Multiplier on every proposal width
            should_stop: Polled before each chunk; True ends the walk early

        Returns:
            SampleStore with stored samples, NLL values and walk metadata

        Raises:
            ConfigurationError: Invalid run configuration or dataset, or a
                                dataset with zero likelihood at the means
            ResourceError: Buffers do not fit in host or device memory
            WalkError: Any other failure while stepping
        """
        # --- 1. VALIDATE CONFIGURATION ---
        run_config = clean_config({
            'nsteps': nsteps,
            'burnin_fraction': burnin_fraction,
            'debug_mode': debug_mode,
            'sync_interval': sync_interval,
            'rng_seed': rng_seed,
            'step_scale': step_scale,
        })
        logger.info("Validating walk configuration...")
        validate_run_config(run_config)

        walk_params = WalkParams(
            NSTEPS=int(nsteps),
            BURNIN_STEPS=burnin_steps(run_config),
            DEBUG_MODE=bool(debug_mode),
            SYNC_INTERVAL=int(sync_interval),
            BLOCK_SIZE=self.block_size,
        )

        store = SampleStore(self.space.names)
        store.metadata.update({
            'nsteps': walk_params.NSTEPS,
            'burnin_steps': walk_params.BURNIN_STEPS,
            'debug_mode': walk_params.DEBUG_MODE,
            'rng_seed': rng_seed,
            'steps_completed': 0,
            'n_accepted': 0,
            'n_nonfinite': 0,
            'cancelled': False,
        })

        if walk_params.NSTEPS == 0:
            logger.info("nsteps = 0, skipping walk.")
            return store

        # --- 2. PREPARE DATA AND INITIAL STATE ---
        events = self.prepare_data(data)
        logger.info(f"Dataset: {events.shape[0]} events")
        try:
            carry, consts = self._initialize(events, rng_seed, step_scale)
        except (MemoryError, RuntimeError) as e:
            if is_resource_exhausted(e):
                raise ResourceError(
                    f"Could not allocate walk buffers for {events.shape[0]} events: {e}"
                ) from e
            raise

        hardware = get_hardware_info()
        logger.info(f"histmcmc {get_histmcmc_version()}, JAX {hardware['jax_version']}")
        logger.info(f"JAX backend: {hardware['jax_backend']} ({', '.join(hardware['jax_devices'])})")
        if 'gpu_name' in hardware:
            logger.info(f"GPU: {hardware['gpu_name']} ({hardware['gpu_memory']}, driver {hardware['driver_version']})")
        if not hardware['x64_enabled']:
            logger.warning("JAX x64 is disabled; NLL sums run in float32")
        logger.info(f"Starting walk of {walk_params.NSTEPS} steps ({walk_params.BURNIN_STEPS} burn-in) "
                    f"at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        # --- 3. RUN CHUNKS ---
        num_chunks = -(-walk_params.NSTEPS // walk_params.SYNC_INTERVAL)
        start_time = time.perf_counter()
        step = 0
        chunk = 0
        while step < walk_params.NSTEPS:
            if should_stop is not None and should_stop():
                logger.warning(f"Walk cancelled at step {step}/{walk_params.NSTEPS}")
                store.metadata['cancelled'] = True
                break

            length = min(walk_params.SYNC_INTERVAL, walk_params.NSTEPS - step)
            kernel = self._kernels.get(walk_params, length)
            try:
                carry, records = kernel(carry, step, consts)
                params_host, nll_host, _, keep_host = jax.device_get(records)
            except (MemoryError, RuntimeError) as e:
                if is_resource_exhausted(e):
                    raise ResourceError(f"Out of memory in steps [{step}, {step + length}): {e}") from e
                raise WalkError(f"Walk failed in steps [{step}, {step + length}): {e}", step=step) from e

            keep_host = np.asarray(keep_host, dtype=bool)
            store.append_batch(np.asarray(params_host)[keep_host], np.asarray(nll_host)[keep_host])

            step += length
            chunk += 1
            if chunk % max(1, num_chunks // 10) == 0:
                logger.info(f"  Chunk {chunk}/{num_chunks} (step {step}/{walk_params.NSTEPS})...")

        wall_time = time.perf_counter() - start_time

        # --- 4. SUMMARIES ---
        n_accepted, n_nonfinite = (int(x) for x in jax.device_get((carry[3], carry[4])))
        store.metadata.update({
            'steps_completed': step,
            'n_accepted': n_accepted,
            'n_nonfinite': n_nonfinite,
            'final_params': np.asarray(jax.device_get(carry[0])),
            'final_nll': float(carry[1]),
            'wall_time': wall_time,
        })

        logger.info(f"\n--- Walk Summary ---")
        logger.info(f"  Steps: {step}, stored samples: {len(store)}")
        logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
        print_acceptance_summary(n_accepted, step, n_nonfinite)

        if not walk_params.DEBUG_MODE:
            diagnostics = diagnose_samples(store.samples, store.nll, {'wall_time': wall_time})
            print_diagnostics(diagnostics)
            print_parameter_summary(parameter_summary(store.samples, store.labels))

        return store
