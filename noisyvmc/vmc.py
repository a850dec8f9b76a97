from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .derivative_free import NelderMeadSimplex, SimulatedAnnealing
from .hamiltonians import Hamiltonian
from .optimizer import Adam, ConjugateGradient, DynamicDescent, OptimizerState
from .sampling import MCIntegrator
from .target import (
    EnergyGradientTargetFunction,
    EnergyTargetFunction,
    StochasticReconfigurationTargetFunction,
)
from .wavefunctions import WaveFunction


OPTIMIZER_REGISTRY = {
    "cg": ConjugateGradient,
    "adam": Adam,
    "dynamic_descent": DynamicDescent,
    "simulated_annealing": SimulatedAnnealing,
    "simplex": NelderMeadSimplex,
}


@dataclass
class VMCResult:
    avg_energy: float
    std_energy: float
    acceptance: float
    parameters: np.ndarray
    mean_history: np.ndarray
    std_history: np.ndarray
    state: Optional[OptimizerState] = None


def _make_integrator(wf: WaveFunction, *, n_walkers: int, seed: int, **integrator_kwargs) -> MCIntegrator:
    return MCIntegrator(wf.ndim, n_walkers=n_walkers, seed=seed, **integrator_kwargs)


def compute_variational_energy(
    wf: WaveFunction,
    ham: Hamiltonian,
    *,
    nmc: int = 10_000,
    n_walkers: int = 4,
    seed: int = 1,
    verbose: bool = True,
    **integrator_kwargs,
) -> VMCResult:
    """Estimate the energy of ``wf`` at its current parameters."""
    integrator = _make_integrator(wf, n_walkers=n_walkers, seed=seed, **integrator_kwargs)
    target = EnergyTargetFunction(wf, ham, integrator, e_nmc=nmc)
    energy, error = target.energy(wf.get_vp())
    if verbose:
        print(
            f"[VMC] Energy = {energy[0]:.6f} ± {error[0]:.6f} | "
            f"Potential = {energy[1]:.6f} | Kinetic = {energy[2]:.6f} | "
            f"Acceptance = {integrator.acceptance_rate:.3f}"
        )
    return VMCResult(
        avg_energy=float(energy[0]),
        std_energy=float(error[0]),
        acceptance=integrator.acceptance_rate,
        parameters=wf.get_vp(),
        mean_history=np.array([energy[0]]),
        std_history=np.array([error[0]]),
    )


def optimize_wavefunction(
    wf: WaveFunction,
    ham: Hamiltonian,
    *,
    optimizer_type: str = "adam",
    e_nmc: int = 10_000,
    grad_nmc: int = 10_000,
    n_walkers: int = 4,
    seed: int = 1,
    lambda_reg: float = 0.0,
    use_sr: bool = False,
    sr_shift: float = 1e-3,
    verbose: bool = True,
    integrator_kwargs: Optional[dict] = None,
    **optimizer_kwargs,
) -> VMCResult:
    """Optimise the variational parameters of ``wf`` and store the result in it."""
    optimizer_type = optimizer_type.lower()
    optimizer_cls = OPTIMIZER_REGISTRY.get(optimizer_type)
    if optimizer_cls is None:
        raise ValueError(f"Unknown optimizer type: {optimizer_type}")

    integrator = _make_integrator(wf, n_walkers=n_walkers, seed=seed, **(integrator_kwargs or {}))
    if not optimizer_cls.uses_gradient:
        target = EnergyTargetFunction(wf, ham, integrator, e_nmc=e_nmc, lambda_reg=lambda_reg)
    elif use_sr:
        target = StochasticReconfigurationTargetFunction(
            wf, ham, integrator, e_nmc=e_nmc, grad_nmc=grad_nmc, lambda_reg=lambda_reg, sr_shift=sr_shift)
    else:
        target = EnergyGradientTargetFunction(
            wf, ham, integrator, e_nmc=e_nmc, grad_nmc=grad_nmc, lambda_reg=lambda_reg)

    optimizer = optimizer_cls(target, wf.get_vp(), verbose=verbose, **optimizer_kwargs)
    result = optimizer.find_min()
    wf.set_vp(result.x)
    if verbose:
        print(f"[VMC] Optimised parameters = {np.array2string(result.x, precision=6)}")
    return VMCResult(
        avg_energy=result.value.val,
        std_energy=result.value.err,
        acceptance=integrator.acceptance_rate,
        parameters=result.x,
        mean_history=np.asarray(result.value_history),
        std_history=np.asarray(result.error_history),
        state=result.state,
    )
