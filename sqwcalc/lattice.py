# -*- coding: utf-8 -*-
"""
Crystal description consumed by the structure-factor engine.

Only the pieces the engine needs are provided: sublattice positions,
reciprocal lattice vectors and a symmetry-equivalence oracle backed by spglib.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np
import numpy.typing as npt
import spglib

logger = logging.getLogger(__name__)


def lattice_vectors(
    a: float, b: float, c: float, alpha: float = 90.0, beta: float = 90.0, gamma: float = 90.0
) -> npt.NDArray[np.float64]:
    """
    Build lattice vectors (rows a1, a2, a3) from lattice parameters.

    a1 is placed along x and a2 in the xy-plane. Angles are in degrees.
    """
    alpha_r, beta_r, gamma_r = np.radians([alpha, beta, gamma])
    a1 = np.array([a, 0.0, 0.0])
    a2 = np.array([b * np.cos(gamma_r), b * np.sin(gamma_r), 0.0])
    cx = c * np.cos(beta_r)
    cy = c * (np.cos(alpha_r) - np.cos(beta_r) * np.cos(gamma_r)) / np.sin(gamma_r)
    cz_sq = c**2 - cx**2 - cy**2
    if cz_sq <= 0:
        raise ValueError(
            f"Lattice angles ({alpha}, {beta}, {gamma}) do not describe a valid cell."
        )
    a3 = np.array([cx, cy, np.sqrt(cz_sq)])
    # Clean up round-off such as cos(90 deg) ~ 6e-17
    vectors = np.vstack([a1, a2, a3])
    vectors[np.abs(vectors) < 1e-12] = 0.0
    return vectors


class Crystal:
    """
    Periodic crystal with magnetic sublattices.

    Args:
        lattice_vectors: 3x3 array whose rows are the lattice vectors (Angstrom).
        positions: Fractional coordinates of each sublattice, shape (natoms, 3).
        types: Optional species label per sublattice. Sites with different
            labels are never treated as symmetry equivalent.
        symprec: Tolerance handed to spglib.
    """

    def __init__(
        self,
        lattice_vectors: Sequence[Sequence[float]],
        positions: Sequence[Sequence[float]],
        types: Optional[Sequence[str]] = None,
        symprec: float = 1e-5,
    ):
        self.lattice_vectors = np.array(lattice_vectors, dtype=float)
        if self.lattice_vectors.shape != (3, 3):
            raise ValueError("lattice_vectors must be a 3x3 array (rows a1, a2, a3).")
        if abs(np.linalg.det(self.lattice_vectors)) < 1e-12:
            raise ValueError("lattice_vectors are linearly dependent.")

        self.positions = np.atleast_2d(np.array(positions, dtype=float))
        if self.positions.ndim != 2 or self.positions.shape[1] != 3:
            raise ValueError("positions must have shape (natoms, 3).")

        if types is None:
            types = ["X"] * len(self.positions)
        if len(types) != len(self.positions):
            raise ValueError(
                f"Got {len(types)} types for {len(self.positions)} positions."
            )
        self.types: List[str] = [str(t) for t in types]
        self.symprec = symprec
        self._equivalent_atoms: Optional[npt.NDArray[np.int_]] = None

    @property
    def natoms(self) -> int:
        return len(self.positions)

    @property
    def reciprocal_vectors(self) -> npt.NDArray[np.float64]:
        """Rows b1, b2, b3 with a_i . b_j = 2 pi delta_ij."""
        return 2 * np.pi * np.linalg.inv(self.lattice_vectors).T

    def to_cartesian(self, q_rlu: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Convert wavevectors in reciprocal lattice units to inverse Angstrom."""
        return np.asarray(q_rlu, dtype=float) @ self.reciprocal_vectors

    def to_rlu(self, q_cart: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Convert wavevectors in inverse Angstrom to reciprocal lattice units."""
        return np.asarray(q_cart, dtype=float) @ np.linalg.inv(self.reciprocal_vectors)

    @property
    def equivalent_atoms(self) -> npt.NDArray[np.int_]:
        """Index of the representative atom of each site's symmetry class."""
        if self._equivalent_atoms is None:
            _, numbers = np.unique(self.types, return_inverse=True)
            cell = (self.lattice_vectors, self.positions, numbers + 1)
            dataset = spglib.get_symmetry_dataset(cell, symprec=self.symprec)
            if dataset is None:
                raise ValueError(
                    f"spglib could not determine the symmetry of the crystal (symprec={self.symprec})."
                )
            self._equivalent_atoms = np.array(dataset.equivalent_atoms, dtype=int)
            logger.debug(
                f"Symmetry classes from spacegroup {dataset.international}: {self._equivalent_atoms}"
            )
        return self._equivalent_atoms

    def symmetry_equivalent_sites(self, atom: int) -> List[int]:
        """All sublattices related to `atom` by a space group operation."""
        classes = self.equivalent_atoms
        return [int(i) for i in np.flatnonzero(classes == classes[atom])]
