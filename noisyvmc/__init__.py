"""JAX toolkit for variational Monte Carlo optimisation under statistical noise."""

import jax

jax.config.update("jax_enable_x64", True)

from .derivatives import Derivatives
from .derivative_free import NelderMeadSimplex, SimulatedAnnealing
from .errors import ConstructionError, NumericalFailure
from .hamiltonians import Hamiltonian, HarmonicOscillator
from .jastrow import FlatU2, InversePowerU2, PolynomialU2, TwoBodyJastrow, TwoBodyPseudoPotential
from .multicomponent import MultiComponentWaveFunction
from .noisy import NoisyGradient, NoisyValue, StepOutcome, classify_step, is_significant_improvement
from .observables import EnergyGradientObservable, Observable, StochasticReconfigurationObservable
from .optimizer import (
    Adam,
    ConjugateGradient,
    DynamicDescent,
    NoisyOptimizer,
    OptimizationResult,
    OptimizerState,
)
from .sampling import MCIntegrator, average_walkers
from .shadow import ShadowWaveFunction
from .symmetrizer import PairSymmetrizerWaveFunction, SymmetrizerWaveFunction
from .target import (
    EnergyGradientTargetFunction,
    EnergyTargetFunction,
    StochasticReconfigurationTargetFunction,
)
from .vmc import OPTIMIZER_REGISTRY, VMCResult, compute_variational_energy, optimize_wavefunction
from .wavefunctions import (
    ConstNormGaussianOrbital,
    DisplacedGaussianOrbital,
    GaussianOrbital,
    WaveFunction,
)

__all__ = [
    "Adam",
    "ConjugateGradient",
    "ConstNormGaussianOrbital",
    "ConstructionError",
    "Derivatives",
    "DisplacedGaussianOrbital",
    "DynamicDescent",
    "EnergyGradientObservable",
    "EnergyGradientTargetFunction",
    "EnergyTargetFunction",
    "FlatU2",
    "GaussianOrbital",
    "Hamiltonian",
    "HarmonicOscillator",
    "InversePowerU2",
    "MCIntegrator",
    "MultiComponentWaveFunction",
    "NelderMeadSimplex",
    "NoisyGradient",
    "NoisyOptimizer",
    "NoisyValue",
    "NumericalFailure",
    "Observable",
    "OPTIMIZER_REGISTRY",
    "OptimizationResult",
    "OptimizerState",
    "PairSymmetrizerWaveFunction",
    "PolynomialU2",
    "ShadowWaveFunction",
    "SimulatedAnnealing",
    "StepOutcome",
    "StochasticReconfigurationObservable",
    "StochasticReconfigurationTargetFunction",
    "SymmetrizerWaveFunction",
    "TwoBodyJastrow",
    "TwoBodyPseudoPotential",
    "VMCResult",
    "WaveFunction",
    "average_walkers",
    "classify_step",
    "compute_variational_energy",
    "is_significant_improvement",
    "optimize_wavefunction",
]
