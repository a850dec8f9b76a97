from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .errors import ConstructionError
from .hamiltonians import Hamiltonian
from .noisy import NoisyGradient, NoisyValue
from .observables import EnergyGradientObservable, StochasticReconfigurationObservable
from .sampling import MCIntegrator
from .wavefunctions import WaveFunction


class _IntegrationTarget:
    """Shared plumbing between a wave function, a Hamiltonian and an integrator.

    Transient observables are pushed onto the integrator before each
    integration and popped afterwards, so the integrator's observable list
    is left as it was found.
    """

    def __init__(
        self,
        wf: WaveFunction,
        ham: Hamiltonian,
        integrator: MCIntegrator,
        *,
        lambda_reg: float = 0.0,
        do_find_step: bool = True,
        do_decorrelation: bool = True,
    ):
        if lambda_reg < 0:
            raise ValueError(f"lambda_reg must be non-negative, got {lambda_reg}")
        self.wf = wf
        self.ham = ham
        self.integrator = integrator
        self.lambda_reg = float(lambda_reg)
        self.do_find_step = do_find_step
        self.do_decorrelation = do_decorrelation
        self.n_evaluations = 0
        integrator.clear_sampling_functions()
        integrator.add_sampling_function(wf)

    @property
    def ndim(self) -> int:
        return self.wf.nvp

    def _set_params(self, vp) -> np.ndarray:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        self.wf.set_vp(vp)
        return vp

    def _integrate(self, observables, nmc: int) -> Tuple[int, np.ndarray, np.ndarray]:
        """Integrate with extra observables; returns (offset, estimates, errors)."""
        offset = sum(self.integrator.observable_dims)
        for obs in observables:
            self.integrator.add_observable(obs)
        try:
            est, err = self.integrator.integrate(
                nmc, do_find_step=self.do_find_step, do_decorrelation=self.do_decorrelation)
        finally:
            for _ in observables:
                self.integrator.pop_observable()
        self.n_evaluations += 1
        return offset, est, err

    def _regularization(self, vp: np.ndarray) -> float:
        if self.lambda_reg == 0.0 or vp.size == 0:
            return 0.0
        return self.lambda_reg * float(np.dot(vp, vp)) / vp.size

    def _regularization_gradient(self, vp: np.ndarray) -> np.ndarray:
        if self.lambda_reg == 0.0 or vp.size == 0:
            return np.zeros_like(vp)
        return 2.0 * self.lambda_reg * vp / vp.size


class EnergyTargetFunction(_IntegrationTarget):
    """Value-only target ``iota * E + kappa * dE + lambda * |p|^2 / P``."""

    def __init__(
        self,
        wf: WaveFunction,
        ham: Hamiltonian,
        integrator: MCIntegrator,
        *,
        e_nmc: int = 10_000,
        iota: float = 1.0,
        kappa: float = 0.0,
        lambda_reg: float = 0.0,
        **kwargs,
    ):
        super().__init__(wf, ham, integrator, lambda_reg=lambda_reg, **kwargs)
        self.e_nmc = int(e_nmc)
        self.iota = float(iota)
        self.kappa = float(kappa)

    def energy(self, vp) -> Tuple[np.ndarray, np.ndarray]:
        """Energy components ``[total, potential, kinetic, kinetic_jf]`` and errors."""
        self._set_params(vp)
        offset, est, err = self._integrate([self.ham], self.e_nmc)
        return est[offset:offset + self.ham.ndim], err[offset:offset + self.ham.ndim]

    def f(self, vp) -> NoisyValue:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        energy, error = self.energy(vp)
        value = self.iota * energy[0] + self.kappa * error[0] + self._regularization(vp)
        return NoisyValue(value, abs(self.iota) * error[0])


class EnergyGradientTargetFunction(_IntegrationTarget):
    """Energy and its parameter gradient estimated from the same integrator.

    ``grad_i = -2 (<H O_i> - <H><O_i>)`` with ``O_i = -vd1_i``; errors are
    propagated linearly from the block errors of the three averages.
    """

    def __init__(
        self,
        wf: WaveFunction,
        ham: Hamiltonian,
        integrator: MCIntegrator,
        *,
        e_nmc: int = 10_000,
        grad_nmc: int = 10_000,
        lambda_reg: float = 0.0,
        **kwargs,
    ):
        if not wf.has_vd1:
            raise ConstructionError(
                f"{type(wf).__name__} has no parameter derivatives (vd1); cannot build a gradient")
        super().__init__(wf, ham, integrator, lambda_reg=lambda_reg, **kwargs)
        self.e_nmc = int(e_nmc)
        self.grad_nmc = int(grad_nmc)
        self.gradient_observable = self._make_gradient_observable()

    def _make_gradient_observable(self) -> EnergyGradientObservable:
        return EnergyGradientObservable(self.ham, self.wf.nvp)

    def f(self, vp) -> NoisyValue:
        vp = self._set_params(vp)
        offset, est, err = self._integrate([self.ham], self.e_nmc)
        return NoisyValue(est[offset] + self._regularization(vp), err[offset])

    def grad(self, vp) -> NoisyGradient:
        return self.fgrad(vp)[1]

    def _gradient_terms(self, est: np.ndarray, err: np.ndarray, offset: int):
        nvp = self.wf.nvp
        h, dh = est[offset], err[offset]
        start = offset + self.ham.ndim
        o, do = est[start:start + nvp], err[start:start + nvp]
        ho, dho = est[start + nvp:start + 2 * nvp], err[start + nvp:start + 2 * nvp]
        grad = -2.0 * (ho - h * o)
        grad_err = 2.0 * (dho + np.abs(o) * dh + abs(h) * do)
        return h, dh, o, grad, grad_err

    def fgrad(self, vp) -> Tuple[NoisyValue, NoisyGradient]:
        vp = self._set_params(vp)
        offset, est, err = self._integrate([self.ham, self.gradient_observable], self.grad_nmc)
        h, dh, _, grad, grad_err = self._gradient_terms(est, err, offset)
        value = NoisyValue(h + self._regularization(vp), dh)
        return value, NoisyGradient(grad + self._regularization_gradient(vp), grad_err)


class StochasticReconfigurationTargetFunction(EnergyGradientTargetFunction):
    """Energy gradient preconditioned by the parameter covariance (S-matrix).

    The returned gradient is ``(S + shift * I)^-1 g`` with
    ``S_ij = <O_i O_j> - <O_i><O_j>``. The last S-matrix is kept in
    ``s_matrix``.
    """

    def __init__(self, wf, ham, integrator, *, sr_shift: float = 1e-3, **kwargs):
        super().__init__(wf, ham, integrator, **kwargs)
        self.sr_shift = float(sr_shift)
        self.s_matrix: Optional[np.ndarray] = None

    def _make_gradient_observable(self) -> EnergyGradientObservable:
        return StochasticReconfigurationObservable(self.ham, self.wf.nvp)

    def fgrad(self, vp) -> Tuple[NoisyValue, NoisyGradient]:
        vp = self._set_params(vp)
        nvp = self.wf.nvp
        offset, est, err = self._integrate([self.ham, self.gradient_observable], self.grad_nmc)
        h, dh, o, grad, grad_err = self._gradient_terms(est, err, offset)
        grad = grad + self._regularization_gradient(vp)

        start = offset + self.ham.ndim + 2 * nvp
        oo = est[start:start + nvp * nvp].reshape(nvp, nvp)
        s_matrix = oo - np.outer(o, o)
        self.s_matrix = s_matrix
        shifted = s_matrix + self.sr_shift * np.eye(nvp)
        delta = np.linalg.solve(shifted, grad)
        delta_err = np.abs(np.linalg.inv(shifted)) @ grad_err
        return NoisyValue(h + self._regularization(vp), dh), NoisyGradient(delta, delta_err)
