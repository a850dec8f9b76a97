from __future__ import annotations

from typing import Iterable, List, Optional

import jax
import jax.numpy as jnp
import numpy as np

from .derivatives import Derivatives
from .errors import ConstructionError
from .wavefunctions import WaveFunction


class MultiComponentWaveFunction(WaveFunction):
    """Product of independent wave functions sharing the same coordinates.

    Each component owns a contiguous slice of the parameter vector and of the
    proto-value vector. Slices are recomputed whenever a component is added.
    """

    def __init__(
        self,
        nspacedim: int,
        npart: int,
        components: Optional[Iterable[WaveFunction]] = None,
        *,
        flag_vd1: bool = False,
        flag_d1vd1: bool = False,
        flag_d2vd1: bool = False,
    ):
        super().__init__(
            nspacedim, npart, 0, 0,
            flag_vd1=flag_vd1, flag_d1vd1=flag_d1vd1, flag_d2vd1=flag_d2vd1,
        )
        self._components: List[WaveFunction] = []
        self._vp_offsets: List[int] = []
        self._proto_offsets: List[int] = []
        for wf in components or ():
            self.add_wave_function(wf)

    @property
    def components(self) -> List[WaveFunction]:
        return list(self._components)

    @property
    def is_stochastic(self) -> bool:
        return any(wf.is_stochastic for wf in self._components)

    def add_wave_function(self, wf: WaveFunction) -> None:
        if wf.nspacedim != self.nspacedim or wf.npart != self.npart:
            raise ConstructionError(
                f"Component has nspacedim={wf.nspacedim}, npart={wf.npart}; "
                f"expected nspacedim={self.nspacedim}, npart={self.npart}")
        missing = [
            name for name, needed, present in (
                ("vd1", self.has_vd1, wf.has_vd1),
                ("d1vd1", self.has_d1vd1, wf.has_d1vd1),
                ("d2vd1", self.has_d2vd1, wf.has_d2vd1),
            ) if needed and not present
        ]
        if missing:
            raise ConstructionError(
                f"{type(wf).__name__} lacks required capabilities: {', '.join(missing)}")
        self._components.append(wf)
        self._recompute_offsets()

    def _recompute_offsets(self) -> None:
        self._vp_offsets = [0]
        self._proto_offsets = [0]
        for wf in self._components:
            self._vp_offsets.append(self._vp_offsets[-1] + wf.nvp)
            self._proto_offsets.append(self._proto_offsets[-1] + wf.nproto)
        self._nvp = self._vp_offsets[-1]
        self._nproto = self._proto_offsets[-1]

    def _vp_slice(self, k: int) -> slice:
        return slice(self._vp_offsets[k], self._vp_offsets[k + 1])

    def _proto_slice(self, k: int) -> slice:
        return slice(self._proto_offsets[k], self._proto_offsets[k + 1])

    def get_vp(self) -> np.ndarray:
        if not self._components:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate([wf.get_vp() for wf in self._components])

    def set_vp(self, vp) -> None:
        vp = np.asarray(vp, dtype=np.float64).reshape(-1)
        if vp.shape[0] != self.nvp:
            raise ValueError(f"{type(self).__name__} expects {self.nvp} parameters, got {vp.shape[0]}")
        for k, wf in enumerate(self._components):
            wf.set_vp(vp[self._vp_slice(k)])

    def draw(self, key, x):
        if not self.is_stochastic:
            return ()
        keys = jax.random.split(key, len(self._components))
        return tuple(wf.draw(keys[k], x) for k, wf in enumerate(self._components))

    def _aux(self, aux, k):
        return aux[k] if aux else ()

    def proto_from_params(self, params, x, aux=()):
        if not self._components:
            return jnp.zeros((0,), dtype=x.dtype)
        return jnp.concatenate([
            wf.proto_from_params(params[self._vp_slice(k)], x, self._aux(aux, k))
            for k, wf in enumerate(self._components)
        ])

    def acceptance(self, proto_old, proto_new):
        ratio = jnp.asarray(1.0)
        for k, wf in enumerate(self._components):
            sl = self._proto_slice(k)
            ratio = ratio * wf.acceptance(proto_old[sl], proto_new[sl])
        return ratio

    def value_from_proto(self, params, proto):
        value = jnp.asarray(1.0)
        for k, wf in enumerate(self._components):
            value = value * wf.value_from_proto(params[self._vp_slice(k)], proto[self._proto_slice(k)])
        return value

    def derivatives_from_params(self, params, x, aux=()):
        children = [
            wf.derivatives_from_params(params[self._vp_slice(k)], x, self._aux(aux, k))
            for k, wf in enumerate(self._components)
        ]
        out = Derivatives.zeros(self.ndim, self.nvp, dtype=x.dtype)
        if not children:
            return out

        d1_tot = sum(c.d1 for c in children)
        d1_sq = sum(c.d1 * c.d1 for c in children)
        # 2 * sum_{k<l} d1_k d1_l == d1_tot^2 - sum_k d1_k^2
        d2_tot = sum(c.d2 for c in children) + d1_tot * d1_tot - d1_sq

        vd1 = jnp.concatenate([c.vd1 for c in children])
        d1vd1_blocks, d2vd1_blocks = [], []
        for c in children:
            # derivatives of the product of all other components
            s1 = d1_tot - c.d1
            r2 = d2_tot - c.d2 - 2.0 * c.d1 * s1
            d1vd1_blocks.append(c.d1vd1 + c.vd1[None, :] * s1[:, None])
            d2vd1_blocks.append(
                c.d2vd1 + 2.0 * c.d1vd1 * s1[:, None] + c.vd1[None, :] * r2[:, None])
        return self._mask(Derivatives(
            d1=d1_tot,
            d2=d2_tot,
            vd1=vd1,
            d1vd1=jnp.concatenate(d1vd1_blocks, axis=1),
            d2vd1=jnp.concatenate(d2vd1_blocks, axis=1),
        ))
