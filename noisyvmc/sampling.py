from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable, List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from .errors import NumericalFailure
from .observables import Observable
from .utils import set_seed
from .wavefunctions import WaveFunction


MIN_BLOCKS = 16

# Compiled kernels kept per integrator, least recently used evicted first.
MAX_CACHED_KERNELS = 8


def average_walkers(estimates: np.ndarray, errors: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Combine independent per-walker estimates of shape (W, ndim)."""
    nwalkers = estimates.shape[0]
    mean = np.mean(estimates, axis=0)
    err = np.sqrt(np.sum(errors * errors, axis=0)) / nwalkers
    return mean, err


def blocking_estimate(series: np.ndarray, min_blocks: int = MIN_BLOCKS) -> Tuple[np.ndarray, np.ndarray]:
    """Mean and standard error of a correlated series of shape (nsteps, ndim).

    The naive standard error of the unblocked series is the floor. Block sizes
    then double while at least ``min_blocks`` blocks remain, and the largest
    error seen over all block sizes is returned.
    """
    nsteps = series.shape[0]
    if nsteps < 2:
        raise ValueError(f"At least two samples are needed for an error estimate, got {nsteps}")
    mean = np.mean(series, axis=0)
    err = np.std(series, axis=0, ddof=1) / np.sqrt(nsteps)
    block = 2
    while nsteps // block >= min_blocks:
        nblocks = nsteps // block
        blocks = series[: nblocks * block].reshape(nblocks, block, -1).mean(axis=1)
        level = np.std(blocks, axis=0, ddof=1) / np.sqrt(nblocks)
        err = np.maximum(err, level)
        block *= 2
    return mean, err


def _make_metropolis_kernel(
    wf: WaveFunction,
    observables: Sequence[Observable],
    *,
    n_steps: int,
    record: bool,
) -> Callable:
    """Build a jit-able Metropolis kernel over a batch of walkers."""
    ndim_obs = sum(obs.ndim for obs in observables)

    def _measure(params, x, aux):
        if ndim_obs == 0:
            return jnp.zeros((0,), dtype=x.dtype)
        derivs = wf.derivatives_from_params(params, x, aux)
        return jnp.concatenate([jnp.reshape(obs(x, derivs), (-1,)) for obs in observables])

    def _walker(params, key, x, step_size):
        key, draw_key = jax.random.split(key)
        aux = wf.draw(draw_key, x)
        proto = wf.proto_from_params(params, x, aux)

        def _body(carry, _):
            """One proposal/accept iteration for a single walker."""
            key_c, x_c, proto_c, aux_c, accepts_c, failed_c = carry
            key_c, move_key, draw_key_c, acc_key = jax.random.split(key_c, 4)
            x_new = x_c + step_size * jax.random.uniform(
                move_key, x_c.shape, dtype=x_c.dtype, minval=-1.0, maxval=1.0)
            aux_new = wf.draw(draw_key_c, x_new)
            proto_new = wf.proto_from_params(params, x_new, aux_new)

            ratio = wf.acceptance(proto_c, proto_new)
            failed_next = failed_c | jnp.isnan(ratio)
            accept = jax.random.uniform(acc_key, (), dtype=x_c.dtype) < ratio

            x_next = jnp.where(accept, x_new, x_c)
            proto_next = jnp.where(accept, proto_new, proto_c)
            aux_next = jax.tree_util.tree_map(
                lambda new, old: jnp.where(accept, new, old), aux_new, aux_c)
            accepts_next = accepts_c + accept.astype(x_c.dtype)

            sample = _measure(params, x_next, aux_next) if record else None
            return (key_c, x_next, proto_next, aux_next, accepts_next, failed_next), sample

        init_carry = (key, x, proto, aux, jnp.asarray(0.0, dtype=x.dtype), jnp.asarray(False))
        final_carry, samples = jax.lax.scan(_body, init_carry, None, length=n_steps)
        _, x_f, _, _, accepts_f, failed_f = final_carry
        return x_f, samples, accepts_f / n_steps, failed_f

    def _run(params, keys, positions, step_size):
        return jax.vmap(_walker, in_axes=(None, 0, 0, None))(params, keys, positions, step_size)

    return jax.jit(_run)


class MCIntegrator:
    """Metropolis Monte Carlo integrator with a set of registered observables.

    Walkers move all coordinates at once with uniform proposals. Estimates are
    block-averaged per walker and combined through ``reducer``, which receives
    per-walker ``(estimates, errors)`` arrays and returns the pooled pair.
    """

    def __init__(
        self,
        ndim: int,
        *,
        n_walkers: int = 4,
        step_size: float = 0.5,
        target_acceptance: float = 0.5,
        n_find_step_iterations: int = 10,
        n_find_step_samples: int = 100,
        n_decorrelation_steps: int = 200,
        seed: int = 1,
        reducer: Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]] = average_walkers,
        initial_positions: Optional[np.ndarray] = None,
    ):
        if n_walkers < 1:
            raise ValueError(f"n_walkers must be positive, got {n_walkers}")
        self.ndim = int(ndim)
        self.n_walkers = int(n_walkers)
        self.step_size = float(step_size)
        self.target_acceptance = float(target_acceptance)
        self.n_find_step_iterations = int(n_find_step_iterations)
        self.n_find_step_samples = int(n_find_step_samples)
        self.n_decorrelation_steps = int(n_decorrelation_steps)
        self.reducer = reducer
        self.acceptance_rate = 0.0

        self._key = set_seed(seed)
        if initial_positions is None:
            self._key, init_key = jax.random.split(self._key)
            positions = jax.random.normal(init_key, (self.n_walkers, self.ndim), dtype=jnp.float64)
        else:
            positions = jnp.broadcast_to(
                jnp.asarray(initial_positions, dtype=jnp.float64), (self.n_walkers, self.ndim))
        self._positions = positions
        self._sampling_functions: List[WaveFunction] = []
        self._observables: List[Observable] = []
        self._kernels: "OrderedDict[Tuple[int, int, int, Tuple[int, ...], int, bool], Callable]" = OrderedDict()

    @property
    def positions(self) -> np.ndarray:
        return np.asarray(self._positions)

    @property
    def observables(self) -> List[Observable]:
        return list(self._observables)

    @property
    def observable_dims(self) -> List[int]:
        return [obs.ndim for obs in self._observables]

    @property
    def sampling_function(self) -> Optional[WaveFunction]:
        return self._sampling_functions[0] if self._sampling_functions else None

    def add_sampling_function(self, wf: WaveFunction) -> None:
        if wf.ndim != self.ndim:
            raise ValueError(f"Sampling function has {wf.ndim} coordinates, integrator has {self.ndim}")
        if self._sampling_functions:
            raise ValueError(
                "Only one sampling function is supported; combine models with MultiComponentWaveFunction")
        self._sampling_functions.append(wf)

    def clear_sampling_functions(self) -> None:
        self._sampling_functions.clear()
        self._kernels.clear()

    def add_observable(self, obs: Observable) -> None:
        self._observables.append(obs)

    def pop_observable(self) -> Observable:
        return self._observables.pop()

    def clear_observables(self) -> None:
        self._observables.clear()

    def _kernel(self, observables: Sequence[Observable], n_steps: int, record: bool) -> Callable:
        wf = self.sampling_function
        cache_key = (
            id(wf),
            wf.nvp,
            wf.nproto,
            tuple(id(obs) for obs in observables),
            n_steps,
            record,
        )
        kernel = self._kernels.get(cache_key)
        if kernel is None:
            kernel = _make_metropolis_kernel(wf, observables, n_steps=n_steps, record=record)
            if len(self._kernels) >= MAX_CACHED_KERNELS:
                self._kernels.popitem(last=False)
            self._kernels[cache_key] = kernel
        else:
            self._kernels.move_to_end(cache_key)
        return kernel

    @property
    def n_cached_kernels(self) -> int:
        return len(self._kernels)

    def _advance(self, n_steps: int, record: bool, observables: Sequence[Observable] = ()):
        wf = self.sampling_function
        params = jnp.asarray(wf.get_vp(), dtype=jnp.float64)
        kernel = self._kernel(observables, n_steps, record)
        self._key, run_key = jax.random.split(self._key)
        keys = jax.random.split(run_key, self.n_walkers)
        positions, samples, acceptance, failed = kernel(
            params, keys, self._positions, jnp.asarray(self.step_size, dtype=jnp.float64))
        if bool(jnp.any(failed)):
            raise NumericalFailure(
                f"Undefined acceptance ratio while sampling {type(wf).__name__}")
        self._positions = positions
        self.acceptance_rate = float(jnp.mean(acceptance))
        return samples

    def find_step(self) -> float:
        """Tune ``step_size`` towards ``target_acceptance``."""
        for _ in range(self.n_find_step_iterations):
            self._advance(self.n_find_step_samples, record=False)
            scale = np.clip(self.acceptance_rate / self.target_acceptance, 0.5, 2.0)
            self.step_size *= float(scale)
        return self.step_size

    def decorrelate(self) -> None:
        if self.n_decorrelation_steps > 0:
            self._advance(self.n_decorrelation_steps, record=False)

    def integrate(
        self,
        nmc: int,
        *,
        do_find_step: bool = True,
        do_decorrelation: bool = True,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Sample ``nmc`` configurations in total and average every observable.

        Returns ``(estimates, errors)`` concatenated in registration order.
        """
        if self.sampling_function is None:
            raise ValueError("No sampling function registered")
        if nmc < 1:
            raise ValueError(f"nmc must be positive, got {nmc}")
        if do_find_step:
            self.find_step()
        if do_decorrelation:
            self.decorrelate()

        n_steps = max(2, -(-nmc // self.n_walkers))
        observables = tuple(self._observables)
        samples = self._advance(n_steps, record=True, observables=observables)
        samples = np.asarray(samples)
        if samples.shape[-1] == 0:
            return np.zeros(0), np.zeros(0)

        per_walker = [blocking_estimate(samples[w]) for w in range(self.n_walkers)]
        estimates = np.stack([m for m, _ in per_walker])
        errors = np.stack([e for _, e in per_walker])
        return self.reducer(estimates, errors)
