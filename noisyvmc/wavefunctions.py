from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from .derivatives import Derivatives
from .errors import ConstructionError


def validate_capabilities(flag_vd1: bool, flag_d1vd1: bool, flag_d2vd1: bool, owner: str = "model"):
    """Reject cross-derivative flags requested without their prerequisites."""
    if flag_d1vd1 and not flag_vd1:
        raise ConstructionError(f"{owner}: d1vd1 requires vd1")
    if flag_d2vd1 and not (flag_vd1 and flag_d1vd1):
        raise ConstructionError(f"{owner}: d2vd1 requires vd1 and d1vd1")


class WaveFunction(ABC):
    """Abstract base class for analytically differentiable wave functions.

    Coordinates are flat vectors ``x[i * nspacedim + k]``. Evaluation is
    split into pure functions of ``(params, x, aux)`` that can be traced by
    JAX, and thin convenience wrappers that use the current parameters.
    ``aux`` holds the random draws of stochastic models and is ``()`` for
    deterministic ones.
    """

    def __init__(
        self,
        nspacedim: int,
        npart: int,
        nproto: int,
        nvp: int,
        *,
        flag_vd1: bool = False,
        flag_d1vd1: bool = False,
        flag_d2vd1: bool = False,
    ):
        if nspacedim < 1 or npart < 1:
            raise ConstructionError(
                f"Need at least one dimension and particle, got nspacedim={nspacedim}, npart={npart}")
        validate_capabilities(flag_vd1, flag_d1vd1, flag_d2vd1, type(self).__name__)
        self._nspacedim = int(nspacedim)
        self._npart = int(npart)
        self._nproto = int(nproto)
        self._nvp = int(nvp)
        self._flag_vd1 = bool(flag_vd1)
        self._flag_d1vd1 = bool(flag_d1vd1)
        self._flag_d2vd1 = bool(flag_d2vd1)
        self._vp = np.zeros(self._nvp, dtype=np.float64)

    @property
    def nspacedim(self) -> int:
        return self._nspacedim

    @property
    def npart(self) -> int:
        return self._npart

    @property
    def ndim(self) -> int:
        return self._nspacedim * self._npart

    @property
    def nproto(self) -> int:
        return self._nproto

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

    @property
    def is_stochastic(self) -> bool:
        return False

    def get_vp(self) -> np.ndarray:
        return self._vp.copy()

    def set_vp(self, vp) -> None:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        if vp.shape[0] != self.nvp:
            raise ValueError(f"{type(self).__name__} expects {self.nvp} parameters, got {vp.shape[0]}")
        self._vp = vp.copy()

    def draw(self, key: jax.Array, x: jnp.ndarray) -> Any:
        """Draw the random numbers a stochastic model needs at ``x``."""
        return ()

    @abstractmethod
    def proto_from_params(self, params: jnp.ndarray, x: jnp.ndarray, aux: Any = ()) -> jnp.ndarray:
        """Return the proto-value vector (length ``nproto``)."""

    @abstractmethod
    def acceptance(self, proto_old: jnp.ndarray, proto_new: jnp.ndarray) -> jnp.ndarray:
        """Return the sampling-density ratio new/old from two proto-values."""

    @abstractmethod
    def value_from_proto(self, params: jnp.ndarray, proto: jnp.ndarray) -> jnp.ndarray:
        """Reconstruct the wave-function value from its proto-value."""

    @abstractmethod
    def derivatives_from_params(self, params: jnp.ndarray, x: jnp.ndarray, aux: Any = ()) -> Derivatives:
        """Return fresh logarithmic derivatives at ``x``."""

    def value_from_params(self, params: jnp.ndarray, x: jnp.ndarray, aux: Any = ()) -> jnp.ndarray:
        return self.value_from_proto(params, self.proto_from_params(params, x, aux))

    def _params(self) -> jnp.ndarray:
        return jnp.asarray(self.get_vp(), dtype=jnp.float64)

    def _mask(self, derivs: Derivatives) -> Derivatives:
        return derivs.masked(self.has_vd1, self.has_d1vd1, self.has_d2vd1)

    def proto_value(self, x, aux: Any = ()) -> jnp.ndarray:
        return self.proto_from_params(self._params(), jnp.asarray(x, dtype=jnp.float64), aux)

    def value(self, x, aux: Any = ()) -> jnp.ndarray:
        return self.value_from_params(self._params(), jnp.asarray(x, dtype=jnp.float64), aux)

    def compute_derivatives(self, x, aux: Any = ()) -> Derivatives:
        return self.derivatives_from_params(self._params(), jnp.asarray(x, dtype=jnp.float64), aux)


class _LogDensityOrbital(WaveFunction):
    """Orbital whose single proto-value is ``2 ln psi``."""

    def __init__(self, nspacedim, npart, nvp, *, flag_vd1=True, flag_d1vd1=True, flag_d2vd1=True):
        super().__init__(
            nspacedim, npart, 1, nvp,
            flag_vd1=flag_vd1, flag_d1vd1=flag_d1vd1, flag_d2vd1=flag_d2vd1,
        )

    def acceptance(self, proto_old, proto_new):
        return jnp.exp(proto_new[0] - proto_old[0])

    def value_from_proto(self, params, proto):
        return jnp.exp(0.5 * proto[0])


class GaussianOrbital(_LogDensityOrbital):
    """psi = exp(-b * sum_i (x_i - a_i)^2) with one variational parameter ``b``."""

    def __init__(self, nspacedim: int, npart: int, b: float, centers=None, **flags):
        super().__init__(nspacedim, npart, 1, **flags)
        if centers is None:
            centers = np.zeros(self.ndim)
        centers = np.asarray(centers, dtype=np.float64).reshape(-1)
        if centers.shape[0] != self.ndim:
            raise ConstructionError(f"Expected {self.ndim} centers, got {centers.shape[0]}")
        self.centers = centers
        self._vp = np.array([b], dtype=np.float64)

    def proto_from_params(self, params, x, aux=()):
        u = x - self.centers
        return jnp.reshape(-2.0 * params[0] * jnp.sum(u * u), (1,))

    def derivatives_from_params(self, params, x, aux=()):
        b = params[0]
        u = x - self.centers
        d1 = -2.0 * b * u
        d2 = -2.0 * b + 4.0 * b * b * u * u
        vd1 = jnp.reshape(-jnp.sum(u * u), (1,))
        d1vd1 = d1[:, None] * vd1[None, :] - 2.0 * u[:, None]
        d2vd1 = d2[:, None] * vd1[None, :] + (-2.0 + 8.0 * b * u * u)[:, None]
        return self._mask(Derivatives(d1=d1, d2=d2, vd1=vd1, d1vd1=d1vd1, d2vd1=d2vd1))


class DisplacedGaussianOrbital(_LogDensityOrbital):
    """psi = exp(-b * sum_i (x_i - a)^2); parameters are ``[a, b]``."""

    def __init__(self, nspacedim: int, npart: int, a: float, b: float, **flags):
        super().__init__(nspacedim, npart, 2, **flags)
        self._vp = np.array([a, b], dtype=np.float64)

    def proto_from_params(self, params, x, aux=()):
        u = x - params[0]
        return jnp.reshape(-2.0 * params[1] * jnp.sum(u * u), (1,))

    def derivatives_from_params(self, params, x, aux=()):
        a, b = params[0], params[1]
        u = x - a
        d1 = -2.0 * b * u
        d2 = -2.0 * b + 4.0 * b * b * u * u
        vd1 = jnp.stack([2.0 * b * jnp.sum(u), -jnp.sum(u * u)])
        d1vd1 = d1[:, None] * vd1[None, :] + jnp.stack(
            [jnp.full_like(u, 2.0 * b), -2.0 * u], axis=1)
        d2vd1 = d2[:, None] * vd1[None, :] + jnp.stack(
            [-8.0 * b * b * u, -2.0 + 8.0 * b * u * u], axis=1)
        return self._mask(Derivatives(d1=d1, d2=d2, vd1=vd1, d1vd1=d1vd1, d2vd1=d2vd1))


class ConstNormGaussianOrbital(WaveFunction):
    """Normalised Gaussian psi = a^(D/2) * exp(-a^2 * sum x^2 / 2).

    The proto-value is ``a^2 * sum x^2``; the prefactor only enters
    ``value`` and ``vd1``.
    """

    def __init__(self, nspacedim: int, npart: int, a: float, *, flag_vd1=True, flag_d1vd1=True, flag_d2vd1=True):
        super().__init__(
            nspacedim, npart, 1, 1,
            flag_vd1=flag_vd1, flag_d1vd1=flag_d1vd1, flag_d2vd1=flag_d2vd1,
        )
        self._vp = np.array([a], dtype=np.float64)

    def proto_from_params(self, params, x, aux=()):
        return jnp.reshape(params[0] ** 2 * jnp.sum(x * x), (1,))

    def acceptance(self, proto_old, proto_new):
        return jnp.exp(proto_old[0] - proto_new[0])

    def value_from_proto(self, params, proto):
        a = params[0]
        return a ** (0.5 * self.ndim) * jnp.exp(-0.5 * proto[0])

    def derivatives_from_params(self, params, x, aux=()):
        a = params[0]
        a2 = a * a
        d1 = -a2 * x
        d2 = a2 * a2 * x * x - a2
        vd1 = jnp.reshape(0.5 * self.ndim / a - a * jnp.sum(x * x), (1,))
        d1vd1 = d1[:, None] * vd1[None, :] - (2.0 * a * x)[:, None]
        d2vd1 = d2[:, None] * vd1[None, :] + (4.0 * a2 * a * x * x - 2.0 * a)[:, None]
        return self._mask(Derivatives(d1=d1, d2=d2, vd1=vd1, d1vd1=d1vd1, d2vd1=d2vd1))
