from __future__ import annotations

from typing import List

import jax
import jax.numpy as jnp
import numpy as np

from .derivatives import Derivatives
from .errors import ConstructionError
from .wavefunctions import WaveFunction


class ShadowWaveFunction(WaveFunction):
    """Shadow wave function marginalised over Gaussian auxiliary coordinates.

    psi(x) is proportional to  E_{s ~ N(x, tau/2)} [ Phi(s) ],  with
    Phi = sum of the attached pure shadow wave functions.

    Each evaluation uses ``num_swf_sampling`` shadows for each of two
    independent sets; the proto-value is the product of the two sample means,
    an unbiased estimate of psi^2. The unit normals are drawn once per
    configuration by ``draw`` and passed back as ``aux`` so that the
    proto-value and the derivatives see the same shadows.

    Parameters are ``[tau, pure shadow parameters...]``.
    """

    def __init__(
        self,
        nspacedim: int,
        npart: int,
        tau: float,
        num_swf_sampling: int,
        *,
        flag_vd1: bool = False,
        flag_d1vd1: bool = False,
        flag_d2vd1: bool = False,
    ):
        super().__init__(
            nspacedim, npart, 1, 1,
            flag_vd1=flag_vd1, flag_d1vd1=flag_d1vd1, flag_d2vd1=flag_d2vd1,
        )
        if num_swf_sampling < 1:
            raise ConstructionError(f"num_swf_sampling must be positive, got {num_swf_sampling}")
        self.num_swf_sampling = int(num_swf_sampling)
        self._tau = self._check_tau(tau)
        self._pure: List[WaveFunction] = []
        self._offsets: List[int] = [1]

    @staticmethod
    def _check_tau(tau) -> float:
        tau = float(tau)
        if not tau > 0:
            raise ValueError(f"tau must be positive, got {tau}")
        return tau

    @property
    def is_stochastic(self) -> bool:
        return True

    @property
    def pure_shadows(self) -> List[WaveFunction]:
        return list(self._pure)

    def add_pure_shadow_wave_function(self, wf: WaveFunction) -> None:
        if wf.nspacedim != self.nspacedim or wf.npart != self.npart:
            raise ConstructionError(
                f"Pure shadow has nspacedim={wf.nspacedim}, npart={wf.npart}; "
                f"expected nspacedim={self.nspacedim}, npart={self.npart}")
        if wf.is_stochastic:
            raise ConstructionError("Pure shadow wave functions must be deterministic")
        if self.has_vd1 and not wf.has_vd1:
            raise ConstructionError(f"{type(wf).__name__} lacks required capability vd1")
        self._pure.append(wf)
        self._offsets.append(self._offsets[-1] + wf.nvp)
        self._nvp = self._offsets[-1]

    def get_vp(self) -> np.ndarray:
        return np.concatenate([[self._tau]] + [wf.get_vp() for wf in self._pure])

    def set_vp(self, vp) -> None:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        if vp.shape[0] != self.nvp:
            raise ValueError(f"{type(self).__name__} expects {self.nvp} parameters, got {vp.shape[0]}")
        self._tau = self._check_tau(vp[0])
        for k, wf in enumerate(self._pure):
            wf.set_vp(vp[self._offsets[k]:self._offsets[k + 1]])

    def draw(self, key, x):
        return jax.random.normal(key, (2, self.num_swf_sampling, self.ndim), dtype=jnp.float64)

    def _shadows(self, params, x, aux):
        return x + jnp.sqrt(0.5 * params[0]) * aux

    def _phi(self, params, s):
        """Values of each pure shadow at a single shadow vector, shape (npure,)."""
        return jnp.stack([
            wf.value_from_params(params[self._offsets[k]:self._offsets[k + 1]], s)
            for k, wf in enumerate(self._pure)
        ])

    def proto_from_params(self, params, x, aux=()):
        if not self._pure:
            return jnp.ones((1,), dtype=x.dtype)
        s = self._shadows(params, x, aux)
        phi = jax.vmap(jax.vmap(lambda si: jnp.sum(self._phi(params, si))))(s)
        return jnp.reshape(jnp.mean(phi[0]) * jnp.mean(phi[1]), (1,))

    def acceptance(self, proto_old, proto_new):
        if not self._pure:
            return jnp.asarray(1.0)
        return proto_new[0] / proto_old[0]

    def value_from_proto(self, params, proto):
        return jnp.sqrt(jnp.abs(proto[0]))

    def derivatives_from_params(self, params, x, aux=()):
        out = Derivatives.zeros(self.ndim, self.nvp, dtype=x.dtype)
        if not self._pure:
            return out
        tau = params[0]
        s = self._shadows(params, x, aux).reshape(-1, self.ndim)

        def pure_terms(si):
            phis = self._phi(params, si)
            vd1 = jnp.concatenate([
                wf.derivatives_from_params(params[self._offsets[k]:self._offsets[k + 1]], si).vd1 * phis[k]
                for k, wf in enumerate(self._pure)
            ])
            return jnp.sum(phis), vd1

        phi, phi_vd1 = jax.vmap(pure_terms)(s)
        w = phi / jnp.sum(phi)
        g = phi_vd1 / phi[:, None]

        dx = x[None, :] - s
        k = -2.0 * dx / tau
        lap = k * k - 2.0 / tau
        q = jnp.sum(dx * dx, axis=1) / tau ** 2

        d1 = w @ k
        d2 = w @ lap
        vd1_tau = w @ q
        d1vd1_tau = w @ (k * q[:, None] - k / tau)
        d2vd1_tau = w @ (lap * q[:, None] - 2.0 * k * k / tau + 2.0 / tau ** 2)

        vd1 = jnp.concatenate([jnp.reshape(vd1_tau, (1,)), w @ g])
        d1vd1 = jnp.concatenate([d1vd1_tau[:, None], jnp.einsum("m,mi,mp->ip", w, k, g)], axis=1)
        d2vd1 = jnp.concatenate([d2vd1_tau[:, None], jnp.einsum("m,mi,mp->ip", w, lap, g)], axis=1)
        return self._mask(Derivatives(d1=d1, d2=d2, vd1=vd1, d1vd1=d1vd1, d2vd1=d2vd1))
