from __future__ import annotations

from abc import ABC, abstractmethod

import jax.numpy as jnp
import numpy as np

from .derivatives import Derivatives
from .errors import ConstructionError
from .utils import pair_displacements, particle_array
from .wavefunctions import WaveFunction, validate_capabilities


class TwoBodyPseudoPotential(ABC):
    """Pairwise potential u(r; params) with radial and parameter derivatives.

    All methods are pure and vectorised over ``r``. The parameter
    derivatives return arrays of shape ``r.shape + (nvp,)``.
    """

    def __init__(self, nspacedim: int, nvp: int, *, flag_vd1=True, flag_d1vd1=True, flag_d2vd1=True):
        validate_capabilities(flag_vd1, flag_d1vd1, flag_d2vd1, type(self).__name__)
        self._nspacedim = int(nspacedim)
        self._nvp = int(nvp)
        self._flag_vd1 = bool(flag_vd1)
        self._flag_d1vd1 = bool(flag_d1vd1)
        self._flag_d2vd1 = bool(flag_d2vd1)
        self._vp = np.zeros(self._nvp, dtype=np.float64)

    @property
    def nspacedim(self) -> int:
        return self._nspacedim

    @property
    def nvp(self) -> int:
        return self._nvp

    @property
    def has_vd1(self) -> bool:
        return self._flag_vd1

    @property
    def has_d1vd1(self) -> bool:
        return self._flag_d1vd1

    @property
    def has_d2vd1(self) -> bool:
        return self._flag_d2vd1

    def get_vp(self) -> np.ndarray:
        return self._vp.copy()

    def set_vp(self, vp) -> None:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        if vp.shape[0] != self.nvp:
            raise ValueError(f"{type(self).__name__} expects {self.nvp} parameters, got {vp.shape[0]}")
        self._vp = vp.copy()

    @abstractmethod
    def ur(self, params, r):
        """u(r)"""

    @abstractmethod
    def ur_d1(self, params, r):
        """du/dr"""

    @abstractmethod
    def ur_d2(self, params, r):
        """d^2u/dr^2"""

    @abstractmethod
    def ur_vd1(self, params, r):
        """du/dp"""

    @abstractmethod
    def ur_d1vd1(self, params, r):
        """d^2u/dr dp"""

    @abstractmethod
    def ur_d2vd1(self, params, r):
        """d^3u/dr^2 dp"""


class PolynomialU2(TwoBodyPseudoPotential):
    """u(r) = a r^2 + b r^3"""

    def __init__(self, nspacedim: int, a: float, b: float, **flags):
        super().__init__(nspacedim, 2, **flags)
        self._vp = np.array([a, b], dtype=np.float64)

    def ur(self, params, r):
        return params[0] * r ** 2 + params[1] * r ** 3

    def ur_d1(self, params, r):
        return 2.0 * params[0] * r + 3.0 * params[1] * r ** 2

    def ur_d2(self, params, r):
        return 2.0 * params[0] + 6.0 * params[1] * r

    def ur_vd1(self, params, r):
        return jnp.stack([r ** 2, r ** 3], axis=-1)

    def ur_d1vd1(self, params, r):
        return jnp.stack([2.0 * r, 3.0 * r ** 2], axis=-1)

    def ur_d2vd1(self, params, r):
        return jnp.stack([jnp.full_like(r, 2.0), 6.0 * r], axis=-1)


class InversePowerU2(TwoBodyPseudoPotential):
    """Short-range repulsion u(r) = b / r^5."""

    def __init__(self, nspacedim: int, b: float, **flags):
        super().__init__(nspacedim, 1, **flags)
        self._vp = np.array([b], dtype=np.float64)

    def ur(self, params, r):
        return params[0] / r ** 5

    def ur_d1(self, params, r):
        return -5.0 * params[0] / r ** 6

    def ur_d2(self, params, r):
        return 30.0 * params[0] / r ** 7

    def ur_vd1(self, params, r):
        return (1.0 / r ** 5)[..., None]

    def ur_d1vd1(self, params, r):
        return (-5.0 / r ** 6)[..., None]

    def ur_d2vd1(self, params, r):
        return (30.0 / r ** 7)[..., None]


class FlatU2(TwoBodyPseudoPotential):
    """Constant u(r) = k."""

    def __init__(self, nspacedim: int, k: float, **flags):
        super().__init__(nspacedim, 1, **flags)
        self._vp = np.array([k], dtype=np.float64)

    def ur(self, params, r):
        return jnp.full_like(r, 1.0) * params[0]

    def ur_d1(self, params, r):
        return jnp.zeros_like(r)

    def ur_d2(self, params, r):
        return jnp.zeros_like(r)

    def ur_vd1(self, params, r):
        return jnp.ones_like(r)[..., None]

    def ur_d1vd1(self, params, r):
        return jnp.zeros_like(r)[..., None]

    def ur_d2vd1(self, params, r):
        return jnp.zeros_like(r)[..., None]


class TwoBodyJastrow(WaveFunction):
    """J(R) = exp(sum_{i<j} u(r_ij)) for a pairwise pseudo-potential ``u``.

    The proto-value is ``2 * sum_{i<j} u(r_ij)``. Parameters are owned by the
    pseudo-potential; ``get_vp``/``set_vp`` forward to it.
    """

    def __init__(self, npart: int, u2: TwoBodyPseudoPotential):
        validate_capabilities(u2.has_vd1, u2.has_d1vd1, u2.has_d2vd1, type(u2).__name__)
        super().__init__(
            u2.nspacedim, npart, 1, u2.nvp,
            flag_vd1=u2.has_vd1, flag_d1vd1=u2.has_d1vd1, flag_d2vd1=u2.has_d2vd1,
        )
        if npart < 2:
            raise ConstructionError("TwoBodyJastrow needs at least two particles")
        self.u2 = u2

    def get_vp(self) -> np.ndarray:
        return self.u2.get_vp()

    def set_vp(self, vp) -> None:
        self.u2.set_vp(vp)

    def _pairs(self, x):
        return pair_displacements(particle_array(x, self.nspacedim))

    def proto_from_params(self, params, x, aux=()):
        _, r, offdiag = self._pairs(x)
        u = jnp.where(offdiag, self.u2.ur(params, r), 0.0)
        # each unordered pair appears twice in the full matrix
        return jnp.reshape(jnp.sum(u), (1,))

    def acceptance(self, proto_old, proto_new):
        return jnp.exp(proto_new[0] - proto_old[0])

    def value_from_proto(self, params, proto):
        return jnp.exp(0.5 * proto[0])

    def derivatives_from_params(self, params, x, aux=()):
        delta, r, offdiag = self._pairs(x)
        mask = offdiag.astype(x.dtype)
        unit = delta / r[..., None]
        # curvature of r along each axis: (1 - (delta_k / r)^2) / r
        bend = (1.0 - unit * unit) / r[..., None]

        du = self.u2.ur_d1(params, r) * mask
        ddu = self.u2.ur_d2(params, r) * mask
        f_i = jnp.sum(du[..., None] * unit, axis=1).reshape(-1)
        f_ii = jnp.sum(ddu[..., None] * unit * unit + du[..., None] * bend, axis=1).reshape(-1)
        d1 = f_i
        d2 = f_ii + f_i * f_i

        npart, nspacedim, nvp = self.npart, self.nspacedim, self.nvp
        if not self.has_vd1:
            return self._mask(Derivatives.zeros(self.ndim, nvp).replace(d1=d1, d2=d2))

        mask_p = mask[..., None]
        f_p = 0.5 * jnp.sum(self.u2.ur_vd1(params, r) * mask_p, axis=(0, 1))
        dup = self.u2.ur_d1vd1(params, r) * mask_p
        ddup = self.u2.ur_d2vd1(params, r) * mask_p
        # (npart, npart, d, P) -> (npart, d, P)
        f_ip = jnp.sum(dup[:, :, None, :] * unit[..., None], axis=1).reshape(npart * nspacedim, nvp)
        f_iip = jnp.sum(
            ddup[:, :, None, :] * (unit * unit)[..., None] + dup[:, :, None, :] * bend[..., None],
            axis=1,
        ).reshape(npart * nspacedim, nvp)
        d1vd1 = f_ip + d1[:, None] * f_p[None, :]
        d2vd1 = f_iip + 2.0 * d1[:, None] * f_ip + d2[:, None] * f_p[None, :]
        return self._mask(Derivatives(d1=d1, d2=d2, vd1=f_p, d1vd1=d1vd1, d2vd1=d2vd1))
