from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np

from .derivatives import Derivatives
from .utils import adjacent_transpositions, coordinate_permutation, permutations_with_parity
from .wavefunctions import WaveFunction

NODE_TOLERANCE = 1e-300


class _PermutationSum(WaveFunction):
    """Signed average of a child wave function over a set of particle permutations.

    psi(x) = 1/n * sum_s sign_s * psi_child(P_s x)

    The proto-value is ``[psi(x)]`` and the sampling density is its square.
    """

    def __init__(self, wf: WaveFunction, perms: np.ndarray, signs: np.ndarray, flag_antisymmetric: bool):
        super().__init__(
            wf.nspacedim, wf.npart, 1, wf.nvp,
            flag_vd1=wf.has_vd1, flag_d1vd1=wf.has_d1vd1, flag_d2vd1=wf.has_d2vd1,
        )
        self.wf = wf
        self.flag_antisymmetric = bool(flag_antisymmetric)
        index = np.stack([coordinate_permutation(p, wf.nspacedim) for p in perms])
        self._index = jnp.asarray(index)
        self._inverse = jnp.asarray(np.argsort(index, axis=1))
        if self.flag_antisymmetric:
            self._signs = jnp.asarray(signs, dtype=jnp.float64)
        else:
            self._signs = jnp.ones(len(perms), dtype=jnp.float64)

    @property
    def npermutations(self) -> int:
        return int(self._index.shape[0])

    @property
    def is_stochastic(self) -> bool:
        return self.wf.is_stochastic

    def get_vp(self) -> np.ndarray:
        return self.wf.get_vp()

    def set_vp(self, vp) -> None:
        self.wf.set_vp(vp)

    def draw(self, key, x):
        return self.wf.draw(key, x)

    def _weights(self, params, x, aux):
        permuted = x[self._index]
        values = jax.vmap(lambda y: self.wf.value_from_params(params, y, aux))(permuted)
        return self._signs * values

    def proto_from_params(self, params, x, aux=()):
        return jnp.reshape(jnp.mean(self._weights(params, x, aux)), (1,))

    def acceptance(self, proto_old, proto_new):
        old, new = proto_old[0], proto_new[0]
        old_node = jnp.abs(old) < NODE_TOLERANCE
        new_node = jnp.abs(new) < NODE_TOLERANCE
        safe_old = jnp.where(old_node, 1.0, old)
        ratio = (new / safe_old) ** 2
        # leaving a node is undefined; staying on one is accepted
        ratio = jnp.where(old_node, jnp.nan, ratio)
        return jnp.where(old_node & new_node, 1.0, ratio)

    def value_from_proto(self, params, proto):
        return proto[0]

    def derivatives_from_params(self, params, x, aux=()):
        permuted = x[self._index]
        weights = self._weights(params, x, aux)
        children = jax.vmap(lambda y: self.wf.derivatives_from_params(params, y, aux))(permuted)

        # coordinate j of x sits in slot inverse[j] of the permuted vector
        def unpermute(field, inverse):
            return field[inverse]

        d1 = jax.vmap(unpermute)(children.d1, self._inverse)
        d2 = jax.vmap(unpermute)(children.d2, self._inverse)
        d1vd1 = jax.vmap(unpermute)(children.d1vd1, self._inverse)
        d2vd1 = jax.vmap(unpermute)(children.d2vd1, self._inverse)

        w = weights / jnp.sum(weights)
        return self._mask(Derivatives(
            d1=jnp.einsum("s,si->i", w, d1),
            d2=jnp.einsum("s,si->i", w, d2),
            vd1=jnp.einsum("s,sp->p", w, children.vd1),
            d1vd1=jnp.einsum("s,sip->ip", w, d1vd1),
            d2vd1=jnp.einsum("s,sip->ip", w, d2vd1),
        ))


class SymmetrizerWaveFunction(_PermutationSum):
    """Full (anti)symmetrisation over all N! particle permutations.

    Cost grows factorially with the particle count, so this is only usable
    for a handful of particles.
    """

    def __init__(self, wf: WaveFunction, flag_antisymmetric: bool = False):
        perms, signs = permutations_with_parity(wf.npart)
        super().__init__(wf, perms, signs, flag_antisymmetric)


class PairSymmetrizerWaveFunction(_PermutationSum):
    """Approximate (anti)symmetrisation using only adjacent-pair swaps (i, i+1)."""

    def __init__(self, wf: WaveFunction, flag_antisymmetric: bool = False):
        perms, signs = adjacent_transpositions(wf.npart)
        super().__init__(wf, perms, signs, flag_antisymmetric)
