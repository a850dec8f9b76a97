from __future__ import annotations

from abc import ABC, abstractmethod

import jax.numpy as jnp

from .derivatives import Derivatives


class Observable(ABC):
    """Quantity accumulated by the Monte Carlo integrator at each sample."""

    ndim: int = 1

    @abstractmethod
    def __call__(self, x: jnp.ndarray, derivs: Derivatives) -> jnp.ndarray:
        """Return the local value, shape (ndim,)."""


class EnergyGradientObservable(Observable):
    """Per-sample ``[O_1..O_P, H*O_1..H*O_P]`` with ``O_p = -vd1_p``.

    With this sign the energy gradient is ``-2 (<H O> - <H><O>)``.
    """

    def __init__(self, hamiltonian, nvp: int):
        self.hamiltonian = hamiltonian
        self.nvp = int(nvp)
        self.ndim = 2 * self.nvp

    def _terms(self, x, derivs):
        o = -derivs.vd1
        h = self.hamiltonian.local_energy(x, derivs)[0]
        return o, h

    def __call__(self, x, derivs):
        o, h = self._terms(x, derivs)
        return jnp.concatenate([o, h * o])


class StochasticReconfigurationObservable(EnergyGradientObservable):
    """Adds the products ``O_i O_j`` needed for the S-matrix."""

    def __init__(self, hamiltonian, nvp: int):
        super().__init__(hamiltonian, nvp)
        self.ndim = 2 * self.nvp + self.nvp * self.nvp

    def __call__(self, x, derivs):
        o, h = self._terms(x, derivs)
        return jnp.concatenate([o, h * o, jnp.outer(o, o).reshape(-1)])
