from __future__ import annotations

from itertools import permutations
from typing import List, Tuple

import jax
import jax.numpy as jnp
import numpy as np


def set_seed(seed: int) -> jax.Array:
    """Return a JAX PRNG key seeded for reproducibility."""

    return jax.random.PRNGKey(seed)


def particle_array(x: jnp.ndarray, nspacedim: int) -> jnp.ndarray:
    """View a flat coordinate vector ``x[i * d + k]`` as (npart, d)."""

    return jnp.reshape(x, (-1, nspacedim))


def pair_displacements(positions: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Return (delta, r, offdiag) for all ordered particle pairs.

    ``delta[i, j] = r_i - r_j`` has shape (N, N, d). The diagonal distance is
    replaced by 1 so that it can be divided by; ``offdiag`` masks it out.
    """

    npart = positions.shape[0]
    delta = positions[:, None, :] - positions[None, :, :]
    offdiag = ~jnp.eye(npart, dtype=jnp.bool_)
    r2 = jnp.sum(delta * delta, axis=-1)
    r = jnp.sqrt(jnp.where(offdiag, r2, 1.0))
    return delta, r, offdiag


def permutations_with_parity(npart: int) -> Tuple[np.ndarray, np.ndarray]:
    """All permutations of ``range(npart)`` with their signs (+1 even, -1 odd)."""

    perms = np.array(list(permutations(range(npart))), dtype=np.int32)
    signs = np.array([permutation_parity(p) for p in perms], dtype=np.float64)
    return perms, signs


def adjacent_transpositions(npart: int) -> Tuple[np.ndarray, np.ndarray]:
    """Identity plus every swap (i, i + 1), with their signs."""

    perms: List[np.ndarray] = [np.arange(npart, dtype=np.int32)]
    for i in range(npart - 1):
        swap = np.arange(npart, dtype=np.int32)
        swap[i], swap[i + 1] = i + 1, i
        perms.append(swap)
    signs = np.ones(len(perms), dtype=np.float64)
    signs[1:] = -1.0
    return np.stack(perms), signs


def permutation_parity(perm) -> int:
    perm = list(perm)
    sign = 1
    for i in range(len(perm)):
        while perm[i] != i:
            j = perm[i]
            perm[i], perm[j] = perm[j], perm[i]
            sign = -sign
    return sign


def coordinate_permutation(perm: np.ndarray, nspacedim: int) -> np.ndarray:
    """Expand a particle permutation into an index array over flat coordinates.

    ``x[index]`` places particle ``perm[k]`` in slot ``k``.
    """

    perm = np.asarray(perm, dtype=np.int32)
    return (perm[:, None] * nspacedim + np.arange(nspacedim)[None, :]).reshape(-1)
