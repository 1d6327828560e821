# -*- coding: utf-8 -*-
"""
Classical spin system on a periodic lattice.

Two representations are supported:

* ``"dipole"`` - each site carries a classical vector of fixed length.
* ``"SUN"`` - each site carries a normalized coherent state Z in C^N and the
  dipole is the expectation value <Z|S|Z> with spin-(N-1)/2 matrices. Arbitrary
  observables (N x N matrices) can be measured only in this mode.

The Hamiltonian holds isotropic Heisenberg bonds, a uniform
Zeeman term E = -h . S and, in SU(N) mode, an onsite matrix.
"""
import copy
import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError
from .lattice import Crystal

logger = logging.getLogger(__name__)

SYSTEM_MODES = ("dipole", "SUN")

Bond = Tuple[int, Tuple[int, int, int], float]


def spin_matrices(N: int) -> npt.NDArray[np.complex128]:
    """Spin-(N-1)/2 matrices (Sx, Sy, Sz) in the basis m = S, S-1, ..., -S."""
    if N < 2:
        raise ValueError(f"Spin matrices need N >= 2, got N={N}.")
    S = (N - 1) / 2
    m = S - np.arange(N)
    s_plus = np.zeros((N, N), dtype=np.complex128)
    for k in range(N - 1):
        s_plus[k, k + 1] = np.sqrt(S * (S + 1) - m[k + 1] * (m[k + 1] + 1))
    s_minus = s_plus.conj().T
    sx = (s_plus + s_minus) / 2
    sy = (s_plus - s_minus) / 2j
    sz = np.diag(m).astype(np.complex128)
    return np.array([sx, sy, sz])


class SpinSystem:
    """
    Spins on a crystal repeated ``latsize`` times along each lattice vector.

    Args:
        crystal: The underlying crystal.
        latsize: Number of unit cells along a1, a2, a3.
        spin_magnitudes: Dipole length, scalar or one value per sublattice.
            Ignored in SU(N) mode where the length is (N-1)/2.
        mode: ``"dipole"`` or ``"SUN"``.
        N: Local Hilbert space dimension (SU(N) mode only).
        g: g-factor, scalar, 3x3 tensor, or one 3x3 tensor per sublattice.
        seed: Seed for ``randomize_spins``.
    """

    def __init__(
        self,
        crystal: Crystal,
        latsize: Sequence[int],
        spin_magnitudes: Union[float, Sequence[float]] = 1.0,
        mode: str = "dipole",
        N: int = 0,
        g: Union[float, npt.ArrayLike] = 2.0,
        seed: Optional[int] = None,
    ):
        if mode not in SYSTEM_MODES:
            raise ConfigurationError(f"Unknown system mode '{mode}'. Expected one of {SYSTEM_MODES}.")
        latsize = tuple(int(L) for L in latsize)
        if len(latsize) != 3 or any(L < 1 for L in latsize):
            raise ConfigurationError(f"latsize must be three positive integers, got {latsize}.")
        if mode == "SUN" and N < 2:
            raise ConfigurationError("SU(N) mode requires N >= 2.")
        if mode == "dipole" and N != 0:
            raise ConfigurationError("N must be 0 in dipole mode.")

        self.crystal = crystal
        self.latsize: Tuple[int, int, int] = latsize
        self.mode = mode
        self.N = N
        natoms = crystal.natoms

        if mode == "SUN":
            self.kappas = np.full(natoms, (N - 1) / 2)
            self.spin_ops = spin_matrices(N)
            self.onsite = np.zeros((N, N), dtype=np.complex128)
        else:
            self.kappas = np.broadcast_to(np.asarray(spin_magnitudes, dtype=float), (natoms,)).copy()
            self.spin_ops = None
            self.onsite = None

        g_arr = np.asarray(g, dtype=float)
        if g_arr.ndim == 0:
            g_arr = g_arr * np.eye(3)
        self.gs = np.broadcast_to(g_arr, (natoms, 3, 3)).copy()

        self.field = np.zeros(3)
        self._bonds: List[List[Bond]] = [[] for _ in range(natoms)]
        self.rng = np.random.default_rng(seed)

        self.dipoles = np.zeros(latsize + (natoms, 3))
        self.coherents = (
            np.zeros(latsize + (natoms, N), dtype=np.complex128) if mode == "SUN" else None
        )
        self.polarize_spins((0.0, 0.0, 1.0))

    @property
    def natoms(self) -> int:
        return self.crystal.natoms

    # --- Hamiltonian ---

    def add_exchange(self, i: int, j: int, offset: Sequence[int], J: float):
        """Add the isotropic coupling J S_i(r) . S_j(r + offset)."""
        offset = tuple(int(o) for o in offset)
        for atom in (i, j):
            if not 0 <= atom < self.natoms:
                raise ConfigurationError(f"Atom index {atom} out of range for {self.natoms} sublattices.")
        if i == j and offset == (0, 0, 0):
            raise ConfigurationError("A site cannot be coupled to itself.")
        if i == j and all(o % L == 0 for o, L in zip(offset, self.latsize)):
            logger.warning(
                f"Bond {i}->{j} with offset {offset} wraps onto the same site for latsize {self.latsize}."
            )
        self._bonds[i].append((j, offset, float(J)))
        self._bonds[j].append((i, tuple(-o for o in offset), float(J)))

    def set_field(self, h: Sequence[float]):
        """Uniform Zeeman term E = -h . S, with h in energy units."""
        self.field = np.array(h, dtype=float)

    def set_onsite(self, matrix: npt.ArrayLike):
        """Onsite N x N Hermitian matrix added to every site (SU(N) mode)."""
        if self.mode != "SUN":
            raise ConfigurationError("Onsite matrices require an SU(N) system.")
        matrix = np.asarray(matrix, dtype=np.complex128)
        if matrix.shape != (self.N, self.N):
            raise ConfigurationError(f"Onsite matrix must be {self.N}x{self.N}, got {matrix.shape}.")
        if not np.allclose(matrix, matrix.conj().T):
            raise ConfigurationError("Onsite matrix must be Hermitian.")
        self.onsite = matrix

    def energy_gradient(self, dipoles: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """dE/dS at every site for the given dipole configuration."""
        grad = np.zeros_like(dipoles)
        for i, bonds in enumerate(self._bonds):
            for j, offset, J in bonds:
                shift = tuple(-o for o in offset)
                grad[..., i, :] += J * np.roll(dipoles[..., j, :], shift=shift, axis=(0, 1, 2))
        grad -= self.field
        return grad

    def site_gradient(self, idx: Tuple[int, int, int, int]) -> npt.NDArray[np.float64]:
        """dE/dS at the single site ``idx = (x, y, z, atom)``."""
        *cell, atom = idx
        grad = -self.field.copy()
        for j, offset, J in self._bonds[atom]:
            nb = tuple((c + o) % L for c, o, L in zip(cell, offset, self.latsize))
            grad += J * self.dipoles[nb + (j,)]
        return grad

    def local_hamiltonian(self, gradient: npt.NDArray[np.float64]) -> npt.NDArray[np.complex128]:
        """Mean-field N x N Hamiltonian(s) for the given site gradient(s)."""
        return self.onsite + np.einsum("...a,aij->...ij", gradient, self.spin_ops)

    def energy(self) -> float:
        grad = self.energy_gradient(self.dipoles)
        exchange_field = grad + self.field
        E = 0.5 * np.sum(self.dipoles * exchange_field) - np.sum(self.dipoles @ self.field)
        if self.mode == "SUN":
            E += np.sum(np.einsum("...i,ij,...j->...", self.coherents.conj(), self.onsite, self.coherents).real)
        return float(E)

    def site_energy_change(self, idx: Tuple[int, int, int, int], new_state: npt.NDArray) -> float:
        """Energy difference from replacing the state at ``idx`` by ``new_state``."""
        grad = self.site_gradient(idx)
        if self.mode == "SUN":
            H = self.local_hamiltonian(grad)
            old = self.coherents[idx]
            e_new = np.vdot(new_state, H @ new_state).real
            e_old = np.vdot(old, H @ old).real
            return float(e_new - e_old)
        return float(grad @ (new_state - self.dipoles[idx]))

    # --- State ---

    def dipoles_from_coherents(self, coherents: npt.NDArray[np.complex128]) -> npt.NDArray[np.float64]:
        return np.einsum("...i,aij,...j->...a", coherents.conj(), self.spin_ops, coherents).real

    def coherent_along(self, direction: npt.ArrayLike) -> npt.NDArray[np.complex128]:
        """Maximal-weight eigenvector of n . S for the unit vector along ``direction``."""
        n = np.asarray(direction, dtype=float)
        n = n / np.linalg.norm(n)
        _, vecs = np.linalg.eigh(np.einsum("a,aij->ij", n, self.spin_ops))
        return vecs[:, -1]

    def set_site(self, idx: Tuple[int, int, int, int], state: npt.NDArray):
        """Overwrite one site with a dipole (dipole mode) or coherent state (SU(N) mode)."""
        if self.mode == "SUN":
            state = state / np.linalg.norm(state)
            self.coherents[idx] = state
            self.dipoles[idx] = self.dipoles_from_coherents(state)
        else:
            self.dipoles[idx] = self.kappas[idx[-1]] * state / np.linalg.norm(state)

    def polarize_spins(self, direction: Sequence[float]):
        n = np.asarray(direction, dtype=float)
        if np.linalg.norm(n) == 0:
            raise ValueError("Cannot polarize spins along a zero vector.")
        n = n / np.linalg.norm(n)
        if self.mode == "SUN":
            self.coherents[...] = self.coherent_along(n)
            self.dipoles[...] = self.dipoles_from_coherents(self.coherents)
        else:
            self.dipoles[...] = self.kappas[:, None] * n

    def randomize_spins(self):
        if self.mode == "SUN":
            z = self.rng.normal(size=self.coherents.shape) + 1j * self.rng.normal(size=self.coherents.shape)
            self.coherents[...] = z / np.linalg.norm(z, axis=-1, keepdims=True)
            self.dipoles[...] = self.dipoles_from_coherents(self.coherents)
        else:
            v = self.rng.normal(size=self.dipoles.shape)
            self.dipoles[...] = self.kappas[:, None] * v / np.linalg.norm(v, axis=-1, keepdims=True)

    def magnetic_moments(self) -> npt.NDArray[np.float64]:
        """g-tensor weighted dipoles, g_i . S_i at every site."""
        return np.einsum("aij,...aj->...ai", self.gs, self.dipoles)

    def expectation(self, observables: npt.ArrayLike) -> npt.NDArray[np.complex128]:
        """
        Expectation values <Z|O_k|Z> at every site.

        Args:
            observables: Array of shape (nobs, N, N).

        Returns:
            Array of shape (Lx, Ly, Lz, natoms, nobs).
        """
        if self.mode != "SUN":
            raise ConfigurationError("Observable matrices can only be measured on an SU(N) system.")
        ops = np.asarray(observables, dtype=np.complex128)
        return np.einsum("...i,kij,...j->...k", self.coherents.conj(), ops, self.coherents)

    def clone(self) -> "SpinSystem":
        """Copy whose spin state can be evolved without touching this system."""
        other = copy.copy(self)
        other.dipoles = self.dipoles.copy()
        other.coherents = None if self.coherents is None else self.coherents.copy()
        other.field = self.field.copy()
        other._bonds = [list(b) for b in self._bonds]
        return other

    def copy_state_from(self, other: "SpinSystem"):
        if other.dipoles.shape != self.dipoles.shape or other.mode != self.mode:
            raise ConfigurationError(
                f"Cannot copy a {other.mode} state of shape {other.dipoles.shape} into a "
                f"{self.mode} system of shape {self.dipoles.shape}."
            )
        np.copyto(self.dipoles, other.dipoles)
        if self.coherents is not None:
            np.copyto(self.coherents, other.coherents)
