"""Reference Metropolis integrator: registration rules, reduction and failures."""

import numpy as np
import pytest

from noisyvmc import (
    GaussianOrbital,
    HarmonicOscillator,
    MCIntegrator,
    NumericalFailure,
    ShadowWaveFunction,
    SymmetrizerWaveFunction,
    average_walkers,
)
from noisyvmc.sampling import MAX_CACHED_KERNELS, blocking_estimate


def test_average_walkers_combines_errors():
    est = np.array([[1.0, 2.0], [3.0, 4.0]])
    err = np.array([[0.3, 0.0], [0.4, 0.2]])
    mean, combined = average_walkers(est, err)
    np.testing.assert_allclose(mean, [2.0, 3.0])
    np.testing.assert_allclose(combined, [0.25, 0.1])


def test_blocking_of_uncorrelated_series():
    rng = np.random.default_rng(0)
    series = rng.normal(size=(4096, 1))
    mean, err = blocking_estimate(series)
    assert abs(mean[0]) < 5 * err[0]
    assert 0.5 / 64 < err[0] < 2.0 / 64


def test_integrator_requires_a_single_sampling_function():
    integrator = MCIntegrator(1)
    with pytest.raises(ValueError):
        integrator.integrate(100)
    integrator.add_sampling_function(GaussianOrbital(1, 1, 0.5))
    with pytest.raises(ValueError):
        integrator.add_sampling_function(GaussianOrbital(1, 1, 0.5))
    with pytest.raises(ValueError):
        MCIntegrator(2).add_sampling_function(GaussianOrbital(1, 1, 0.5))
    integrator.clear_sampling_functions()
    assert integrator.sampling_function is None


def test_harmonic_oscillator_energy_and_acceptance():
    wf = GaussianOrbital(1, 2, 0.5)
    integrator = MCIntegrator(2, n_walkers=4, seed=5)
    integrator.add_sampling_function(wf)
    integrator.add_observable(HarmonicOscillator(1, 2))
    est, err = integrator.integrate(2000)
    assert est.shape == (4,) and err.shape == (4,)
    assert np.isclose(est[0], 1.0, atol=1e-10)
    assert 0.0 < integrator.acceptance_rate <= 1.0
    assert integrator.positions.shape == (4, 2)


def test_leaving_a_node_raises():
    """Walkers started on a node of an antisymmetric function cannot move."""
    wf = SymmetrizerWaveFunction(GaussianOrbital(1, 2, 0.9, centers=[0.5, -0.25]), flag_antisymmetric=True)
    integrator = MCIntegrator(2, n_walkers=2, initial_positions=np.zeros(2))
    integrator.add_sampling_function(wf)
    with pytest.raises(NumericalFailure):
        integrator.integrate(50, do_find_step=False, do_decorrelation=False)


def test_shadow_sampling_smoke():
    wf = ShadowWaveFunction(1, 1, 0.5, 8, flag_vd1=True)
    wf.add_pure_shadow_wave_function(GaussianOrbital(1, 1, 1.0))
    integrator = MCIntegrator(1, n_walkers=2, seed=3, n_find_step_iterations=2, n_decorrelation_steps=20)
    integrator.add_sampling_function(wf)
    integrator.add_observable(HarmonicOscillator(1, 1))
    est, err = integrator.integrate(400)
    assert np.all(np.isfinite(est)) and np.all(np.isfinite(err))


def test_short_series_fall_back_to_naive_error():
    series = np.array([[1.0], [2.0], [4.0], [1.0]])
    mean, err = blocking_estimate(series)
    assert np.isclose(mean[0], 2.0)
    assert np.isclose(err[0], np.std(series[:, 0], ddof=1) / 2.0)
    with pytest.raises(ValueError):
        blocking_estimate(series[:1])


def test_short_runs_still_report_error_bars():
    """Fewer samples per walker than blocks must not pass for an exact result."""
    integrator = MCIntegrator(1, n_walkers=4, seed=2)
    integrator.add_sampling_function(GaussianOrbital(1, 1, 0.3))
    integrator.add_observable(HarmonicOscillator(1, 1))
    est, err = integrator.integrate(60)
    assert np.isfinite(est[0])
    assert err[0] > 0.0

def test_compiled_kernels_are_bounded_and_released():
    integrator = MCIntegrator(1, n_walkers=2, n_find_step_iterations=1, n_find_step_samples=4,
                              n_decorrelation_steps=4)
    integrator.add_sampling_function(GaussianOrbital(1, 1, 0.3))
    integrator.add_observable(HarmonicOscillator(1, 1))
    for nmc in range(4, 4 + 2 * (MAX_CACHED_KERNELS + 3), 2):
        integrator.integrate(nmc)
    assert 0 < integrator.n_cached_kernels <= MAX_CACHED_KERNELS

    integrator.clear_sampling_functions()
    assert integrator.n_cached_kernels == 0
