from __future__ import annotations

import jax.numpy as jnp
from flax import struct


@struct.dataclass
class Derivatives:
    """Logarithmic derivatives of a wave function at one coordinate vector.

    Every field is divided by the wave-function value:

    * ``d1[i]``       = d psi / dx_i / psi
    * ``d2[i]``       = d^2 psi / dx_i^2 / psi
    * ``vd1[p]``      = d psi / dp / psi
    * ``d1vd1[i, p]`` = d^2 psi / dx_i dp / psi
    * ``d2vd1[i, p]`` = d^3 psi / dx_i^2 dp / psi

    Instances are produced fresh by each derivative computation. Fields for
    capabilities a model does not provide are zeros.
    """

    d1: jnp.ndarray
    d2: jnp.ndarray
    vd1: jnp.ndarray
    d1vd1: jnp.ndarray
    d2vd1: jnp.ndarray

    @classmethod
    def zeros(cls, ndim: int, nvp: int, dtype=jnp.float64) -> "Derivatives":
        return cls(
            d1=jnp.zeros((ndim,), dtype=dtype),
            d2=jnp.zeros((ndim,), dtype=dtype),
            vd1=jnp.zeros((nvp,), dtype=dtype),
            d1vd1=jnp.zeros((ndim, nvp), dtype=dtype),
            d2vd1=jnp.zeros((ndim, nvp), dtype=dtype),
        )

    @property
    def ndim(self) -> int:
        return self.d1.shape[-1]

    @property
    def nvp(self) -> int:
        return self.vd1.shape[-1]

    def masked(self, has_vd1: bool, has_d1vd1: bool, has_d2vd1: bool) -> "Derivatives":
        """Zero the fields a model does not advertise."""
        return self.replace(
            vd1=self.vd1 if has_vd1 else jnp.zeros_like(self.vd1),
            d1vd1=self.d1vd1 if has_d1vd1 else jnp.zeros_like(self.d1vd1),
            d2vd1=self.d2vd1 if has_d2vd1 else jnp.zeros_like(self.d2vd1),
        )
