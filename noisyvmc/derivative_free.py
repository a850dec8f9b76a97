from __future__ import annotations

from typing import List

import jax
import numpy as np

from .noisy import NoisyValue, combined_error
from .optimizer import NoisyOptimizer, OptimizationResult, OptimizerState
from .utils import set_seed


class SimulatedAnnealing(NoisyOptimizer):
    """Metropolis random walk under a geometric cooling schedule.

    At temperature ``T`` a worse point is accepted with probability
    ``exp(-(f_new - f_old) / (k T))``. ``iters_fixed_T`` moves are attempted
    per temperature and ``T`` is divided by ``mu_t`` until it drops below
    ``t_min``. The best point seen is returned.
    """

    name = "SimulatedAnnealing"

    def __init__(
        self,
        target,
        x0,
        *,
        iters_fixed_T: int = 10,
        step_size: float = 0.1,
        k: float = 1.0,
        t_initial: float = 1.0,
        mu_t: float = 1.1,
        t_min: float = 1e-3,
        seed: int = 1,
        **kwargs,
    ):
        super().__init__(target, x0, **kwargs)
        if mu_t <= 1.0:
            raise ValueError(f"mu_t must exceed 1 for the temperature to decrease, got {mu_t}")
        if not 0.0 < t_min <= t_initial:
            raise ValueError(f"Need 0 < t_min <= t_initial, got t_min={t_min}, t_initial={t_initial}")
        self.iters_fixed_T = int(iters_fixed_T)
        self.step_size = float(step_size)
        self.k = float(k)
        self.t_initial = float(t_initial)
        self.mu_t = float(mu_t)
        self.t_min = float(t_min)
        self._key = set_seed(seed)

    def _run(self) -> OptimizationResult:
        x = self._x.copy()
        value = self._evaluate(x)
        best_x, best = x.copy(), value
        temperature = self.t_initial
        it = 0

        while temperature >= self.t_min:
            for _ in range(self.iters_fixed_T):
                if it >= self.max_iterations:
                    return self._finish(best_x, best, OptimizerState.MAX_ITERATIONS, it)
                it += 1
                self._key, move_key, acc_key = jax.random.split(self._key, 3)
                move = np.asarray(jax.random.uniform(move_key, x.shape, minval=-1.0, maxval=1.0))
                x_new = x + self.step_size * move
                value_new = self._evaluate(x_new)

                delta = value_new.val - value.val
                if delta <= 0.0 or float(jax.random.uniform(acc_key)) < np.exp(-delta / (self.k * temperature)):
                    x, value = x_new, value_new
                if value_new.val < best.val:
                    best_x, best = x_new.copy(), value_new
                self._log_and_record(it, value, best)
            temperature /= self.mu_t

        return self._finish(best_x, best, OptimizerState.CONVERGED, it)


class NelderMeadSimplex(NoisyOptimizer):
    """Nelder-Mead simplex search on the target value alone.

    A trial point only replaces the worst vertex when it is significantly
    better than the vertex it is compared against; otherwise the simplex
    shrinks towards its best vertex. The run converges once the spread of
    values across the simplex is within ``sigma_level`` combined error bars of
    its best and worst vertices, or below ``tolerance``.
    """

    name = "Simplex"

    def __init__(
        self,
        target,
        x0,
        *,
        step_size: float = 0.1,
        tolerance: float = 1e-8,
        reflection: float = 1.0,
        expansion: float = 2.0,
        contraction: float = 0.5,
        shrink: float = 0.5,
        **kwargs,
    ):
        super().__init__(target, x0, **kwargs)
        self.step_size = float(step_size)
        self.tolerance = float(tolerance)
        self.reflection = float(reflection)
        self.expansion = float(expansion)
        self.contraction = float(contraction)
        self.shrink = float(shrink)

    def _converged(self, values: List[NoisyValue]) -> bool:
        best, worst = values[0], values[-1]
        spread = worst.val - best.val
        return spread <= max(self.tolerance, self.sigma_level * combined_error(best, worst))

    def _run(self) -> OptimizationResult:
        ndim = self._x.shape[0]
        vertices = [self._x.copy()]
        for i in range(ndim):
            vertex = self._x.copy()
            vertex[i] += self.step_size
            vertices.append(vertex)
        values = [self._evaluate(v) for v in vertices]

        for it in range(1, self.max_iterations + 1):
            order = np.argsort([v.val for v in values])
            vertices = [vertices[i] for i in order]
            values = [values[i] for i in order]
            self._log_and_record(it, values[0])
            if self._converged(values):
                return self._finish(vertices[0], values[0], OptimizerState.CONVERGED, it)

            centroid = np.mean(vertices[:-1], axis=0)
            worst_x, worst = vertices[-1], values[-1]

            reflected = centroid + self.reflection * (centroid - worst_x)
            f_reflected = self._evaluate(reflected)
            if self.accepts_improvement(values[0], f_reflected):
                expanded = centroid + self.expansion * (reflected - centroid)
                f_expanded = self._evaluate(expanded)
                if self.accepts_improvement(f_reflected, f_expanded):
                    vertices[-1], values[-1] = expanded, f_expanded
                else:
                    vertices[-1], values[-1] = reflected, f_reflected
                continue
            if self.accepts_improvement(values[-2], f_reflected):
                vertices[-1], values[-1] = reflected, f_reflected
                continue

            if self.accepts_improvement(worst, f_reflected):
                contracted = centroid + self.contraction * (reflected - centroid)
                reference = f_reflected
            else:
                contracted = centroid + self.contraction * (worst_x - centroid)
                reference = worst
            f_contracted = self._evaluate(contracted)
            if self.accepts_improvement(reference, f_contracted):
                vertices[-1], values[-1] = contracted, f_contracted
                continue

            for i in range(1, len(vertices)):
                vertices[i] = vertices[0] + self.shrink * (vertices[i] - vertices[0])
                values[i] = self._evaluate(vertices[i])

        order = np.argsort([v.val for v in values])
        return self._finish(vertices[order[0]], values[order[0]], OptimizerState.MAX_ITERATIONS, self.max_iterations)
