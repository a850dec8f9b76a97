"""Smoke tests for the variational Monte Carlo drivers."""

import numpy as np
import pytest

from noisyvmc import (
    GaussianOrbital,
    HarmonicOscillator,
    OptimizerState,
    compute_variational_energy,
    optimize_wavefunction,
)


def _assert_vmc_result(result):
    """Sanity-check the VMCResult container returned by the drivers."""
    assert np.isfinite(result.avg_energy), "average energy should be finite"
    assert np.isfinite(result.std_energy), "energy std should be finite"
    assert 0.0 <= result.acceptance <= 1.0, "acceptance must be a probability"
    assert result.mean_history.ndim == 1, "mean history must be 1-D"
    assert result.std_history.ndim == 1, "std history must be 1-D"
    assert result.mean_history.size == result.std_history.size, "history lengths should match"
    assert result.mean_history.size > 0, "expect at least one recorded mean"
    assert np.all(np.isfinite(result.mean_history)), "mean history should be finite"
    assert np.all(np.isfinite(result.std_history)), "std history should be finite"


def test_variational_energy_smoke():
    """Estimate the energy of the exact harmonic-oscillator ground state."""
    wf = GaussianOrbital(1, 2, 0.5)
    result = compute_variational_energy(wf, HarmonicOscillator(1, 2), nmc=2000, seed=123, verbose=False)
    _assert_vmc_result(result)
    assert np.isclose(result.avg_energy, 1.0, atol=1e-10)
    assert result.state is None


def test_adam_optimization_smoke():
    """Run a couple of Adam iterations through the full sampling stack."""
    wf = GaussianOrbital(1, 1, 0.3)
    result = optimize_wavefunction(
        wf,
        HarmonicOscillator(1, 1),
        optimizer_type="adam",
        e_nmc=2000,
        grad_nmc=2000,
        seed=321,
        alpha=0.05,
        max_iterations=3,
        verbose=False,
    )
    _assert_vmc_result(result)
    assert result.state in (OptimizerState.CONVERGED, OptimizerState.MAX_ITERATIONS)
    np.testing.assert_allclose(wf.get_vp(), result.parameters)


def test_stochastic_reconfiguration_descent_smoke():
    wf = GaussianOrbital(1, 1, 0.3)
    result = optimize_wavefunction(
        wf,
        HarmonicOscillator(1, 1),
        optimizer_type="dynamic_descent",
        use_sr=True,
        e_nmc=2000,
        grad_nmc=2000,
        seed=7,
        step_size=0.05,
        max_iterations=3,
        verbose=False,
    )
    _assert_vmc_result(result)


def test_simplex_optimization_smoke():
    """Derivative-free optimizers run on the value-only target."""
    wf = GaussianOrbital(1, 1, 0.3)
    result = optimize_wavefunction(
        wf,
        HarmonicOscillator(1, 1),
        optimizer_type="simplex",
        e_nmc=2000,
        seed=11,
        max_iterations=3,
        verbose=False,
    )
    _assert_vmc_result(result)


def test_unknown_optimizer_type():
    with pytest.raises(ValueError):
        optimize_wavefunction(GaussianOrbital(1, 1, 0.5), HarmonicOscillator(1, 1), optimizer_type="bfgs")
