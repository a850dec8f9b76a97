from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import jax.numpy as jnp
import numpy as np
import optax

from .errors import NumericalFailure
from .noisy import NoisyGradient, NoisyValue, StepOutcome, classify_step


class OptimizerState(Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"


@dataclass
class OptimizationResult:
    x: np.ndarray
    value: NoisyValue
    state: OptimizerState
    n_iterations: int
    value_history: List[float] = field(default_factory=list)
    error_history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.state is OptimizerState.CONVERGED


class NoisyOptimizer(ABC):
    """Base class for optimizers driven by a noisy target function.

    The target exposes ``ndim`` and ``f(x) -> NoisyValue``; gradient-based
    optimizers also need ``fgrad(x) -> (NoisyValue, NoisyGradient)``.
    A non-finite value or gradient moves the optimizer to ``FAILED`` and
    raises ``NumericalFailure`` out of ``find_min``. Any other exception
    escaping the target also leaves the optimizer ``FAILED``.
    """

    name = "Optimizer"
    uses_gradient = False

    def __init__(
        self,
        target,
        x0,
        *,
        max_iterations: int = 1000,
        sigma_level: float = 2.0,
        verbose: bool = False,
    ):
        x0 = np.asarray(x0, dtype=np.float64).reshape(-1)
        if x0.shape[0] != target.ndim:
            raise ValueError(f"Starting point has {x0.shape[0]} entries, target expects {target.ndim}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        self.target = target
        self.max_iterations = int(max_iterations)
        self.sigma_level = float(sigma_level)
        self.verbose = verbose
        self.state = OptimizerState.INITIALIZED
        self._x = x0.copy()
        self._value: Optional[NoisyValue] = None
        self.value_history: List[float] = []
        self.error_history: List[float] = []

    def find_min(self) -> OptimizationResult:
        self.state = OptimizerState.RUNNING
        try:
            result = self._run()
        except Exception:
            self.state = OptimizerState.FAILED
            raise
        self.state = result.state
        return result

    def get_x(self) -> np.ndarray:
        if self.state is OptimizerState.FAILED:
            raise NumericalFailure(f"{self.name} failed; no usable parameters")
        return self._x.copy()

    @property
    def value(self) -> Optional[NoisyValue]:
        return self._value

    @abstractmethod
    def _run(self) -> OptimizationResult:
        """Run the optimisation loop from ``self._x``."""

    def accepts_improvement(self, old: NoisyValue, new: NoisyValue) -> bool:
        return classify_step(old, new, self.sigma_level) is StepOutcome.IMPROVED

    def _classify(self, old: NoisyValue, new: NoisyValue) -> StepOutcome:
        return classify_step(old, new, self.sigma_level)

    def _evaluate(self, x: np.ndarray) -> NoisyValue:
        value = self.target.f(x)
        if not value.is_finite():
            raise NumericalFailure(f"{self.name}: non-finite objective {value.val} ± {value.err}")
        return value

    def _evaluate_with_gradient(self, x: np.ndarray) -> Tuple[NoisyValue, NoisyGradient]:
        value, grad = self.target.fgrad(x)
        if not value.is_finite():
            raise NumericalFailure(f"{self.name}: non-finite objective {value.val} ± {value.err}")
        if not grad.is_finite():
            raise NumericalFailure(f"{self.name}: non-finite gradient {grad.val}")
        return value, grad

    def _log_and_record(self, step: int, value: NoisyValue, best: Optional[NoisyValue] = None):
        if self.verbose:
            line = f"[{self.name}] Step {step}/{self.max_iterations} | Value = {value.val:.6f} ± {value.err:.6f}"
            if best is not None:
                line += f" | Best = {best.val:.6f} ± {best.err:.6f}"
            print(line)
        self.value_history.append(float(value.val))
        self.error_history.append(float(value.err))

    def _finish(self, x: np.ndarray, value: NoisyValue, state: OptimizerState, n_iterations: int) -> OptimizationResult:
        self._x = np.asarray(x, dtype=np.float64).copy()
        self._value = value
        if self.verbose:
            print(f"[{self.name}] Finished ({state.value}) after {n_iterations} iterations | "
                  f"Value = {value.val:.6f} ± {value.err:.6f}")
        return OptimizationResult(
            x=self._x.copy(),
            value=value,
            state=state,
            n_iterations=n_iterations,
            value_history=list(self.value_history),
            error_history=list(self.error_history),
        )


class ConjugateGradient(NoisyOptimizer):
    """Polak-Ribiere conjugate gradient with an error-aware backtracking step.

    A trial step that is significantly better is taken and lets the step grow
    back towards ``step_size``. One within noise is taken but counted towards
    convergence. A significantly worse one halves the step and is retried; if
    every retry is worse the search restarts along the steepest descent.
    """

    name = "CG"
    uses_gradient = True

    def __init__(
        self,
        target,
        x0,
        *,
        step_size: float = 0.1,
        restart_period: Optional[int] = None,
        max_backtracks: int = 10,
        max_n_const_values: int = 5,
        **kwargs,
    ):
        super().__init__(target, x0, **kwargs)
        self.step_size = float(step_size)
        self.restart_period = int(restart_period or max(1, target.ndim))
        self.max_backtracks = int(max_backtracks)
        self.max_n_const_values = int(max_n_const_values)
        self.step = self.step_size

    def _run(self) -> OptimizationResult:
        x = self._x.copy()
        value, grad = self._evaluate_with_gradient(x)
        best_x, best = x.copy(), value
        direction = -grad.val
        self.step = self.step_size
        n_const = 0

        for it in range(1, self.max_iterations + 1):
            if np.dot(direction, grad.val) >= 0.0:
                direction = -grad.val

            moved = False
            for _ in range(self.max_backtracks + 1):
                x_try = x + self.step * direction
                value_try, grad_try = self._evaluate_with_gradient(x_try)
                outcome = self._classify(value, value_try)
                if outcome is StepOutcome.WORSENED:
                    self.step *= 0.5
                    continue
                if outcome is StepOutcome.IMPROVED:
                    n_const = 0
                    self.step = min(2.0 * self.step, self.step_size)
                else:
                    n_const += 1
                moved = True
                break
            if not moved:
                n_const += 1
                direction = -grad.val
                self._log_and_record(it, value, best)
                if n_const >= self.max_n_const_values:
                    return self._finish(best_x, best, OptimizerState.CONVERGED, it)
                continue

            g_old = grad.val
            x, value, grad = x_try, value_try, grad_try
            if value.val < best.val:
                best_x, best = x.copy(), value
            self._log_and_record(it, value, best)

            if n_const >= self.max_n_const_values or grad.is_statistically_zero(self.sigma_level):
                return self._finish(best_x, best, OptimizerState.CONVERGED, it)

            denom = float(np.dot(g_old, g_old))
            beta = 0.0 if denom == 0.0 else max(0.0, float(np.dot(grad.val, grad.val - g_old)) / denom)
            if it % self.restart_period == 0:
                beta = 0.0
            direction = -grad.val + beta * direction

        return self._finish(best_x, best, OptimizerState.MAX_ITERATIONS, self.max_iterations)


class _MomentOptimizer(NoisyOptimizer):
    """Shared loop for optax-driven first-order optimizers.

    Terminates after ``max_n_const_values`` consecutive iterations without a
    significant improvement over the best value seen.
    """

    uses_gradient = True

    def __init__(
        self,
        target,
        x0,
        *,
        max_n_const_values: int = 20,
        use_gradient_error: bool = False,
        use_averaging: bool = False,
        **kwargs,
    ):
        super().__init__(target, x0, **kwargs)
        self.max_n_const_values = int(max_n_const_values)
        self.use_gradient_error = use_gradient_error
        self.use_averaging = use_averaging

    @abstractmethod
    def _make_transform(self) -> optax.GradientTransformation:
        """Return the optax transformation driving the updates."""

    def _on_gradient(self, opt_state, g_old: Optional[np.ndarray], g_new: np.ndarray):
        return opt_state

    def _run(self) -> OptimizationResult:
        transform = self._make_transform()
        params = jnp.asarray(self._x)
        opt_state = transform.init(params)
        best_x, best = None, None
        window: List[np.ndarray] = []
        n_const = 0
        g_old = None
        state = OptimizerState.MAX_ITERATIONS
        it = 0

        for it in range(1, self.max_iterations + 1):
            x = np.asarray(params, dtype=np.float64)
            value, grad = self._evaluate_with_gradient(x)
            if best is None or self.accepts_improvement(best, value):
                best_x, best = x.copy(), value
                n_const = 0
                window = []
            else:
                n_const += 1
                window.append(x.copy())
            self._log_and_record(it, value, best)

            if self.use_gradient_error and grad.is_statistically_zero(self.sigma_level):
                state = OptimizerState.CONVERGED
                break
            if n_const >= self.max_n_const_values:
                state = OptimizerState.CONVERGED
                break

            opt_state = self._on_gradient(opt_state, g_old, grad.val)
            updates, opt_state = transform.update(jnp.asarray(grad.val), opt_state, params)
            params = optax.apply_updates(params, updates)
            g_old = grad.val

        if self.use_averaging and window:
            x_avg = np.mean(np.stack(window), axis=0)
            return self._finish(x_avg, self._evaluate(x_avg), state, it)
        return self._finish(best_x, best, state, it)


class Adam(_MomentOptimizer):
    """Adam with bias-corrected first and second gradient moments."""

    name = "Adam"

    def __init__(
        self,
        target,
        x0,
        *,
        alpha: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 10e-8,
        **kwargs,
    ):
        super().__init__(target, x0, **kwargs)
        self.alpha = float(alpha)
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)

    def _make_transform(self) -> optax.GradientTransformation:
        return optax.adam(learning_rate=self.alpha, b1=self.beta1, b2=self.beta2, eps=self.epsilon)


class DynamicDescent(_MomentOptimizer):
    """Plain gradient descent with one step per parameter.

    Each component's step shrinks by ``shrink_factor`` whenever that component
    of the gradient changes sign between iterations. Works on any gradient the
    target returns, including the stochastic-reconfiguration preconditioned one.
    """

    name = "DynamicDescent"

    def __init__(self, target, x0, *, step_size: float = 0.1, shrink_factor: float = 0.5, **kwargs):
        super().__init__(target, x0, **kwargs)
        if not 0.0 < shrink_factor <= 1.0:
            raise ValueError(f"shrink_factor must lie in (0, 1], got {shrink_factor}")
        self.step_size = float(step_size)
        self.shrink_factor = float(shrink_factor)
        self.step_sizes = np.full(target.ndim, self.step_size)

    def _make_transform(self) -> optax.GradientTransformation:
        self.step_sizes = np.full(self.target.ndim, self.step_size)
        return optax.inject_hyperparams(optax.sgd)(learning_rate=jnp.asarray(self.step_sizes))

    def _on_gradient(self, opt_state, g_old, g_new):
        if g_old is not None:
            flipped = np.asarray(g_old) * np.asarray(g_new) < 0.0
            self.step_sizes = np.where(flipped, self.step_sizes * self.shrink_factor, self.step_sizes)
            opt_state.hyperparams["learning_rate"] = jnp.asarray(self.step_sizes)
        return opt_state
