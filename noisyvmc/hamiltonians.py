from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass

import jax.numpy as jnp

from .derivatives import Derivatives
from .observables import Observable


class Hamiltonian(Observable):
    """Local energy of a kinetic term plus a potential.

    The local value is ``[total, potential, kinetic, kinetic_jf]`` where the
    kinetic energy is estimated both from the Laplacian (``-d2/2``) and in the
    Jackson-Feenberg form (``|d1|^2/2``); both have the same expectation.
    """

    ndim = 4

    @abstractmethod
    def local_potential_energy(self, x: jnp.ndarray) -> jnp.ndarray:
        """Potential energy at coordinates ``x``."""

    def local_energy(self, x: jnp.ndarray, derivs: Derivatives) -> jnp.ndarray:
        potential = self.local_potential_energy(x)
        kinetic = -0.5 * jnp.sum(derivs.d2)
        kinetic_jf = 0.5 * jnp.sum(derivs.d1 * derivs.d1)
        return jnp.stack([potential + kinetic, potential, kinetic, kinetic_jf])

    def __call__(self, x, derivs):
        return self.local_energy(x, derivs)


@dataclass
class HarmonicOscillator(Hamiltonian):
    nspacedim: int
    npart: int
    w: float = 1.0

    def local_potential_energy(self, x):
        return 0.5 * self.w * self.w * jnp.sum(x * x)
