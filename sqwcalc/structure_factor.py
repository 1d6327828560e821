# -*- coding: utf-8 -*-
"""
Dynamical structure factor accumulated from classical spin trajectories.

The central object is `StructureFactor`, which owns a 7-dimensional array of
time- and space-Fourier-transformed correlators

    data[slot, i, j, qa, qb, qc, w] = < F_alpha,i(q, w) conj(F_beta,j(q, w)) >

where ``slot`` enumerates the stored (alpha <= beta) observable pairs, ``i``
and ``j`` are sublattices, ``(qa, qb, qc)`` index the discrete wavevectors of
the periodic lattice and ``w`` the frequency bins. Each recorded trajectory is
folded into a running average.
"""
import logging
import threading
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt
from scipy import fft
from tqdm import tqdm

from .errors import ConfigurationError, QueryError
from .system import SpinSystem
from .trajectory import TrajectoryBuffer

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]


class ComponentPairIndex:
    """
    Storage slots for the observable pairs (alpha, beta) that are retained.

    Only alpha <= beta is stored; the lower triangle follows from
    S^{beta alpha} = conj(S^{alpha beta}).

    Args:
        nobs: Number of observables.
        matrix_elements: Pairs to retain, in any order. Defaults to every
            pair with alpha <= beta.
    """

    def __init__(self, nobs: int, matrix_elements: Optional[Sequence[Pair]] = None):
        self.nobs = nobs
        if matrix_elements is None:
            matrix_elements = [(a, b) for a in range(nobs) for b in range(a, nobs)]

        self._slots: Dict[Pair, int] = {}
        for elem in matrix_elements:
            if len(elem) != 2:
                raise ConfigurationError(f"Matrix element {elem} must be a pair of observable indices.")
            a, b = int(elem[0]), int(elem[1])
            if not (0 <= a < nobs and 0 <= b < nobs):
                raise ConfigurationError(
                    f"Matrix element ({a}, {b}) is out of range for {nobs} observables."
                )
            key = (a, b) if a <= b else (b, a)
            if key in self._slots:
                raise ConfigurationError(f"Matrix element {key} requested more than once.")
            self._slots[key] = len(self._slots)

        if not self._slots:
            raise ConfigurationError("At least one matrix element must be retained.")

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Pair]:
        return iter(self._slots)

    def __contains__(self, pair) -> bool:
        a, b = pair
        return (min(a, b), max(a, b)) in self._slots

    def items(self):
        return self._slots.items()

    @property
    def pairs(self) -> List[Pair]:
        return list(self._slots)

    def lookup(self, a: int, b: int) -> Tuple[int, bool]:
        """
        Slot holding S^{ab} and whether it must be conjugated.

        Raises:
            ConfigurationError: If the pair was not retained.
        """
        key = (a, b) if a <= b else (b, a)
        if key not in self._slots:
            raise ConfigurationError(
                f"Matrix element ({a}, {b}) was not saved. Retained pairs: {self.pairs}."
            )
        return self._slots[key], a > b


class StructureFactor:
    """
    Running average of dynamical spin correlations.

    Args:
        system: Template system. It is cloned; the caller's copy is untouched.
        dt: Integration step of the trajectories.
        num_freqs: Number of frequency bins (snapshots per trajectory).
        max_freq: Largest frequency to resolve. Must be below pi/dt.
        observables: Optional operator matrices (SU(N) systems only).
        matrix_elements: Observable pairs to retain. Defaults to all.
        gfactor: Record magnetic moments g.S instead of bare dipoles.
    """

    def __init__(
        self,
        system: SpinSystem,
        dt: float = 0.1,
        num_freqs: int = 100,
        max_freq: Optional[float] = None,
        observables: Optional[npt.ArrayLike] = None,
        matrix_elements: Optional[Sequence[Pair]] = None,
        gfactor: bool = True,
    ):
        nobs = 3 if observables is None else len(observables)
        self.pair_index = ComponentPairIndex(nobs, matrix_elements)
        self.trajectory = TrajectoryBuffer(system, dt, num_freqs, max_freq, observables, gfactor)
        self.crystal = system.crystal
        self.latsize = system.latsize
        self._max_freq = max_freq

        natoms = system.natoms
        self.data = np.zeros(
            (len(self.pair_index), natoms, natoms) + self.latsize + (num_freqs,),
            dtype=np.complex128,
        )
        self.dw = 2 * np.pi / (dt * self.trajectory.measperiod * num_freqs)
        self.num_samples = 0
        self._lock = threading.Lock()

        logger.info(
            f"StructureFactor: latsize={self.latsize}, natoms={natoms}, "
            f"{len(self.pair_index)} matrix elements, {num_freqs} frequencies, "
            f"dw={self.dw:.4g}, measperiod={self.trajectory.measperiod}"
        )

    @property
    def dipole_mode(self) -> bool:
        return self.trajectory.dipole_mode

    @property
    def num_freqs(self) -> int:
        return self.data.shape[-1]

    @property
    def natoms(self) -> int:
        return self.data.shape[1]

    # --- Axes ---

    def frequencies(self, negative_energies: bool = False) -> npt.NDArray[np.float64]:
        """
        Energies of the stored frequency bins.

        Without ``negative_energies`` the non-negative bins 0, dw, ...,
        (num_freqs // 2) dw are returned. Otherwise every bin is returned in
        storage order, the upper half mapped onto negative energies.
        """
        n = self.num_freqs
        if negative_energies:
            return fft.fftfreq(n, d=1.0 / n) * self.dw
        return np.arange(n // 2 + 1) * self.dw

    def qgrid(self, bzsize: Sequence[int] = (1, 1, 1)) -> npt.NDArray[np.float64]:
        """
        Every discrete wavevector (RLU) covering ``bzsize`` Brillouin zones.

        Returns:
            Array of shape (L1*b1, L2*b2, L3*b3, 3), centered on the origin.
        """
        bzsize = tuple(int(b) for b in bzsize)
        if len(bzsize) != 3 or any(b < 1 for b in bzsize):
            raise QueryError(f"bzsize must be three positive integers, got {bzsize}.")
        axes = []
        for L, b in zip(self.latsize, bzsize):
            extent = L * b
            lo = -(extent // 2)
            axes.append(np.arange(lo, lo + extent) / L)
        return np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1)

    # --- Accumulation ---

    def new_buffer(self) -> TrajectoryBuffer:
        """Independent trajectory buffer with this structure factor's settings."""
        buf = self.trajectory
        return TrajectoryBuffer(
            buf.system, buf.dt, buf.num_freqs, self._max_freq, buf.observables, buf.gfactor
        )

    def sample_correlations(self, traj: npt.NDArray[np.complex128]) -> npt.NDArray[np.complex128]:
        """
        Correlations of a single recorded trajectory, shaped like ``data``.
        """
        # Spatial FFT over the cell axes, temporal FFT over snapshots
        F = fft.fftn(traj, axes=(1, 2, 3, 5))
        F = np.moveaxis(F, 4, 1)  # (nobs, natoms, Lx, Ly, Lz, nw)
        sample = np.empty_like(self.data)
        for (a, b), slot in self.pair_index.items():
            sample[slot] = F[a][:, None] * F[b][None, :].conj()
        return sample

    def merge_sample(self, sample: npt.NDArray[np.complex128]):
        """Fold one sample into the running average (thread safe)."""
        if sample.shape != self.data.shape:
            raise ValueError(f"Sample shape {sample.shape} does not match data shape {self.data.shape}.")
        with self._lock:
            n = self.num_samples
            self.data += (sample - self.data) / (n + 1)
            self.num_samples = n + 1

    def compute_sample(self, system: SpinSystem, buffer: Optional[TrajectoryBuffer] = None):
        """Record a trajectory starting from ``system`` and return its correlations."""
        buffer = self.trajectory if buffer is None else buffer
        return self.sample_correlations(buffer.record(system))

    def add_trajectory(self, system: SpinSystem) -> "StructureFactor":
        """
        Record a trajectory from the current state of ``system`` and accumulate it.

        The sample is fully computed before the stored average is touched, so a
        failure leaves previously accumulated data intact.
        """
        sample = self.compute_sample(system)
        self.merge_sample(sample)
        logger.debug(f"Accumulated trajectory {self.num_samples}.")
        return self

    def accumulate(self, system: SpinSystem, sampler, num_samples: int, show_progress: bool = True) -> "StructureFactor":
        """
        Draw ``num_samples`` decorrelated states with ``sampler`` and accumulate each.

        ``system`` is advanced in place by the sampler.
        """
        if num_samples < 1:
            raise ConfigurationError(f"num_samples must be positive, got {num_samples}.")
        for _ in tqdm(range(num_samples), desc="Sampling trajectories", leave=False, disable=not show_progress):
            sampler.sample(system)
            self.add_trajectory(system)
        logger.info(f"Accumulated {num_samples} trajectories ({self.num_samples} total).")
        return self

    def require_samples(self):
        if self.num_samples < 1:
            raise QueryError("No trajectories have been accumulated; call add_trajectory first.")


def calculate_structure_factor(
    system: SpinSystem,
    sampler,
    dt: Optional[float] = None,
    num_freqs: int = 100,
    max_freq: Optional[float] = 10.0,
    num_samples: int = 10,
    observables: Optional[npt.ArrayLike] = None,
    matrix_elements: Optional[Sequence[Pair]] = None,
    gfactor: bool = True,
    show_progress: bool = True,
) -> StructureFactor:
    """
    Build a `StructureFactor` and fill it with ``num_samples`` trajectories.

    If ``dt`` is not given it defaults to twice the sampler's own time step
    when the sampler has one, otherwise 0.1.
    """
    if dt is None:
        sampler_dt = getattr(sampler, "dt", None)
        dt = 2 * sampler_dt if sampler_dt else 0.1
    sf = StructureFactor(
        system,
        dt=dt,
        num_freqs=num_freqs,
        max_freq=max_freq,
        observables=observables,
        matrix_elements=matrix_elements,
        gfactor=gfactor,
    )
    return sf.accumulate(system, sampler, num_samples, show_progress=show_progress)
