"""
Reduction of sublattice-resolved correlators to reciprocal-space correlators.
"""
from typing import Optional

import numpy as np
import numpy.typing as npt

from .lattice import Crystal


def phase_averaged_elements(
    data: npt.NDArray[np.complex128],
    q_rlu: npt.NDArray[np.float64],
    crystal: Crystal,
    ff_values: Optional[npt.NDArray[np.float64]] = None,
) -> npt.NDArray[np.complex128]:
    """
    Sum sublattice pairs with the phase exp(i q . (r_j - r_i)).

    Args:
        data: Correlators at each stencil point, shape (nk, npairs, natoms, natoms, nw).
        q_rlu: Wavevectors of the stencil points, shape (nk, 3).
        crystal: Supplies the sublattice positions.
        ff_values: Optional form factors F_i(|q|), shape (nk, natoms). Pair
            (i, j) is weighted by F_i F_j.

    Returns:
        S^{ab}(q, w) for every stored pair, shape (nk, npairs, nw).
    """
    # q . r in RLU x fractional coordinates carries the 2 pi explicitly
    phases = np.exp(2j * np.pi * q_rlu @ crystal.positions.T)
    weights = phases.conj()[:, :, None] * phases[:, None, :]
    if ff_values is not None:
        weights = weights * (ff_values[:, :, None] * ff_values[:, None, :])
    return np.einsum("kpijw,kij->kpw", data, weights)
