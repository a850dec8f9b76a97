"""Optimizers on closed-form test targets."""

import numpy as np
import pytest

from noisyvmc import (
    Adam,
    ConjugateGradient,
    ConstNormGaussianOrbital,
    DynamicDescent,
    EnergyGradientTargetFunction,
    HarmonicOscillator,
    MCIntegrator,
    NelderMeadSimplex,
    NoisyGradient,
    NoisyValue,
    NumericalFailure,
    OptimizerState,
    SimulatedAnnealing,
)

C = np.array([1.0, -2.0, 0.5])


class QuadraticTarget:
    """f(x) = sum (x - c)^2 reported with a fixed error bar (zero by default)."""

    def __init__(self, c=C, error=0.0):
        self.c = np.asarray(c, dtype=np.float64)
        self.error = error
        self.calls = 0

    @property
    def ndim(self):
        return self.c.size

    def f(self, x):
        self.calls += 1
        return NoisyValue(float(np.sum((np.asarray(x) - self.c) ** 2)), self.error)

    def grad(self, x):
        return NoisyGradient(2.0 * (np.asarray(x) - self.c), np.full(self.ndim, self.error))

    def fgrad(self, x):
        return self.f(x), self.grad(x)


class BrokenTarget(QuadraticTarget):
    """Returns NaN once x leaves the unit box."""

    def f(self, x):
        if np.any(np.abs(x) > 1.0):
            return NoisyValue(np.nan, 0.0)
        return super().f(x)



class NoisyQuadraticTarget(QuadraticTarget):
    """Quadratic whose values scatter with the reported error bar."""

    def __init__(self, c=C, error=0.01, seed=0):
        super().__init__(c, error)
        self.rng = np.random.default_rng(seed)

    def f(self, x):
        value = super().f(x)
        return NoisyValue(value.val + self.error * self.rng.normal(), value.err)


class SpikedTarget(QuadraticTarget):
    """Quadratic that reports one spuriously large value on a chosen call."""

    def __init__(self, spike_call, c=C, error=1e-12):
        super().__init__(c, error)
        self.spike_call = spike_call

    def f(self, x):
        value = super().f(x)
        if self.calls == self.spike_call:
            return NoisyValue(value.val + 10.0, value.err)
        return value


class SignTarget:
    """f(x) = |x0| + 100 x1: the first gradient component flips sign, the second never does."""

    ndim = 2

    def fgrad(self, x):
        x = np.asarray(x, dtype=np.float64)
        value = NoisyValue(abs(x[0]) + 100.0 * x[1], 0.0)
        return value, NoisyGradient([1.0 if x[0] >= 0 else -1.0, 100.0], [0.0, 0.0])

    def f(self, x):
        return self.fgrad(x)[0]


def test_adam_converges_on_exact_quadratic():
    """Adam reaches the minimum of a zero-error quadratic within 1e-3."""
    opt = Adam(QuadraticTarget(), np.zeros(3), alpha=0.1, max_n_const_values=100, max_iterations=3000)
    result = opt.find_min()
    np.testing.assert_allclose(result.x, C, atol=1e-3)
    np.testing.assert_allclose(opt.get_x(), result.x)
    assert result.n_iterations <= 3000
    assert result.state in (OptimizerState.CONVERGED, OptimizerState.MAX_ITERATIONS)
    assert len(result.value_history) == len(result.error_history) > 0


def test_conjugate_gradient_converges_on_exact_quadratic():
    opt = ConjugateGradient(QuadraticTarget(), np.zeros(3), step_size=0.25, max_iterations=500)
    result = opt.find_min()
    np.testing.assert_allclose(result.x, C, atol=1e-6)
    assert result.state is not OptimizerState.FAILED


def test_conjugate_gradient_recovers_from_one_spurious_worsening():
    """A single outlier halves the step once; the next real improvement grows it back."""
    opt = ConjugateGradient(SpikedTarget(spike_call=2), np.zeros(3), step_size=0.25, max_iterations=500)
    result = opt.find_min()
    assert result.state is OptimizerState.CONVERGED
    assert opt.step == 0.25
    np.testing.assert_allclose(result.x, C, atol=1e-5)


def test_dynamic_descent_shrinks_overshooting_step():
    """A step that overshoots flips the gradient and gets shrunk until it converges."""
    opt = DynamicDescent(QuadraticTarget(), np.zeros(3), step_size=0.9, shrink_factor=0.5,
                         max_n_const_values=20, max_iterations=2000)
    result = opt.find_min()
    np.testing.assert_allclose(result.x, C, atol=1e-3)


def test_dynamic_descent_shrinks_only_the_flipping_component():
    opt = DynamicDescent(SignTarget(), [0.3, 0.0], step_size=0.4, shrink_factor=0.5, max_iterations=10)
    result = opt.find_min()
    assert result.state is OptimizerState.MAX_ITERATIONS
    assert opt.step_sizes[0] < 0.4
    assert opt.step_sizes[1] == 0.4
    assert abs(result.x[0]) < 0.3


@pytest.mark.parametrize("optimizer_cls", [Adam, ConjugateGradient, DynamicDescent])
def test_noise_level_difference_is_not_an_improvement(optimizer_cls):
    opt = optimizer_cls(QuadraticTarget(), np.zeros(3))
    assert not opt.accepts_improvement(NoisyValue(1.000, 0.01), NoisyValue(0.998, 0.01))
    assert opt.accepts_improvement(NoisyValue(1.000, 0.01), NoisyValue(0.9, 0.01))


def test_adam_stops_when_improvements_drown_in_noise():
    """With large error bars no step is significant, so the run ends after the window."""
    opt = Adam(QuadraticTarget(error=100.0), np.zeros(3), alpha=0.01, max_n_const_values=5)
    result = opt.find_min()
    assert result.state is OptimizerState.CONVERGED
    assert result.n_iterations == 6
    np.testing.assert_allclose(result.x, np.zeros(3))


def test_adam_gradient_error_stop_and_averaging():
    target = QuadraticTarget(error=10.0)
    opt = Adam(target, np.zeros(3), alpha=0.01, use_gradient_error=True, use_averaging=True)
    result = opt.find_min()
    assert result.state is OptimizerState.CONVERGED
    assert result.n_iterations == 1


def test_simplex_converges_on_exact_quadratic():
    opt = NelderMeadSimplex(QuadraticTarget(), np.zeros(3), step_size=0.5, tolerance=1e-14, max_iterations=2000)
    result = opt.find_min()
    assert result.state is OptimizerState.CONVERGED
    np.testing.assert_allclose(result.x, C, atol=1e-3)


def test_simplex_on_noisy_quadratic():
    """Vertices are only replaced by significantly better points."""
    target = NoisyQuadraticTarget(error=0.01, seed=4)
    opt = NelderMeadSimplex(target, np.zeros(3), step_size=0.5, max_iterations=2000)
    result = opt.find_min()
    assert result.state is not OptimizerState.FAILED
    assert np.sum((result.x - C) ** 2) < 0.1


def test_simulated_annealing_improves_on_start():
    target = QuadraticTarget(c=[0.0, 0.0])
    start = np.array([2.0, 2.0])
    opt = SimulatedAnnealing(target, start, step_size=0.3, t_initial=1.0, mu_t=1.2, t_min=1e-2,
                             iters_fixed_T=10, seed=3, max_iterations=5000)
    result = opt.find_min()
    assert result.state is OptimizerState.CONVERGED
    assert result.value.val < target.f(start).val
    assert np.isclose(result.value.val, target.f(result.x).val)


def test_simulated_annealing_respects_iteration_cap():
    opt = SimulatedAnnealing(QuadraticTarget(), np.zeros(3), max_iterations=7)
    result = opt.find_min()
    assert result.state is OptimizerState.MAX_ITERATIONS
    assert result.n_iterations == 7


@pytest.mark.parametrize(
    "factory",
    [
        lambda t: Adam(t, np.zeros(3), alpha=0.5),
        lambda t: ConjugateGradient(t, np.zeros(3), step_size=2.0),
        lambda t: NelderMeadSimplex(t, np.zeros(3), step_size=2.0),
    ],
)
def test_non_finite_objective_fails_hard(factory):
    """A NaN objective aborts the run and leaves no usable parameters."""
    opt = factory(BrokenTarget())
    with pytest.raises(NumericalFailure):
        opt.find_min()
    assert opt.state is OptimizerState.FAILED
    with pytest.raises(NumericalFailure):
        opt.get_x()


def test_starting_point_must_match_target():
    with pytest.raises(ValueError):
        Adam(QuadraticTarget(), np.zeros(2))


def test_undefined_error_bars_from_a_real_target_fail_hard():
    """A zero-width normalised Gaussian has an infinite log-derivative, so the estimates turn NaN."""
    wf = ConstNormGaussianOrbital(1, 1, 0.0)
    integrator = MCIntegrator(1, n_walkers=2, seed=1, n_find_step_iterations=2, n_decorrelation_steps=20)
    target = EnergyGradientTargetFunction(wf, HarmonicOscillator(1, 1), integrator, e_nmc=200, grad_nmc=200)
    opt = Adam(target, [0.0], alpha=0.1, max_iterations=5)
    with pytest.raises(NumericalFailure):
        opt.find_min()
    assert opt.state is OptimizerState.FAILED
    with pytest.raises(NumericalFailure):
        opt.get_x()


def test_unexpected_target_errors_leave_the_optimizer_failed():
    class RaisingTarget(QuadraticTarget):
        def fgrad(self, x):
            raise RuntimeError("integrator crashed")

    opt = ConjugateGradient(RaisingTarget(), np.zeros(3))
    with pytest.raises(RuntimeError):
        opt.find_min()
    assert opt.state is OptimizerState.FAILED


@pytest.mark.parametrize("optimizer_cls", [Adam, ConjugateGradient, DynamicDescent, NelderMeadSimplex,
                                           SimulatedAnnealing])
def test_at_least_one_iteration_is_required(optimizer_cls):
    with pytest.raises(ValueError):
        optimizer_cls(QuadraticTarget(), np.zeros(3), max_iterations=0)
