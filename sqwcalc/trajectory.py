# -*- coding: utf-8 -*-
"""
Trajectory buffer: evolves a private copy of a spin system and records the
observables needed for time correlations.
"""
import logging
from typing import Optional

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError
from .integrators import ImplicitMidpoint
from .system import SpinSystem

logger = logging.getLogger(__name__)


class TrajectoryBuffer:
    """
    Recorded time series of per-site observables.

    Args:
        system: System whose lattice and Hamiltonian are used. It is cloned and
            never modified.
        dt: Integration step.
        num_freqs: Number of snapshots per trajectory (equals the number of
            frequency bins after the temporal FFT).
        max_freq: Largest frequency that must be resolved. Sets the number of
            integration steps between snapshots.
        observables: Optional operator matrices, shape (nobs, N, N). Defaults
            to the three dipole components.
        gfactor: Record g-weighted dipoles (magnetic moments) in dipole mode.

    Raises:
        ConfigurationError: If ``max_freq`` cannot be resolved with ``dt`` or
            observable matrices are given for a dipole system.
    """

    def __init__(
        self,
        system: SpinSystem,
        dt: float,
        num_freqs: int,
        max_freq: Optional[float] = None,
        observables: Optional[npt.ArrayLike] = None,
        gfactor: bool = True,
    ):
        if dt <= 0:
            raise ConfigurationError(f"Integration step must be positive, got dt={dt}.")
        if num_freqs < 1:
            raise ConfigurationError(f"num_freqs must be positive, got {num_freqs}.")

        if observables is None:
            self.dipole_mode = True
            self.observables = None
            nobs = 3
        else:
            if system.mode != "SUN":
                raise ConfigurationError(
                    "Cannot provide observable matrices for a dipole system; use an SU(N) system."
                )
            ops = np.asarray(observables, dtype=np.complex128)
            if ops.ndim != 3 or ops.shape[1:] != (system.N, system.N):
                raise ConfigurationError(
                    f"observables must have shape (nobs, {system.N}, {system.N}), got {ops.shape}."
                )
            self.dipole_mode = False
            self.observables = ops
            nobs = ops.shape[0]

        if max_freq is None:
            self.measperiod = 1
        else:
            if max_freq <= 0:
                raise ConfigurationError(f"max_freq must be positive, got {max_freq}.")
            max_resolvable = np.pi / dt
            if not max_resolvable > max_freq:
                raise ConfigurationError(
                    f"Maximum resolvable frequency with dt={dt} is {max_resolvable:.4g}. "
                    f"Choose a smaller dt or reduce max_freq={max_freq}."
                )
            self.measperiod = int(np.floor(np.pi / (dt * max_freq)))

        self.integrator = ImplicitMidpoint(dt)
        self.gfactor = gfactor
        self.system = system.clone()
        self.data = np.zeros((nobs,) + system.dipoles.shape[:-1] + (num_freqs,), dtype=np.complex128)

    @property
    def dt(self) -> float:
        return self.integrator.dt

    @property
    def nobs(self) -> int:
        return self.data.shape[0]

    @property
    def num_freqs(self) -> int:
        return self.data.shape[-1]

    def _observe(self, it: int):
        sys = self.system
        if self.dipole_mode:
            values = sys.magnetic_moments() if self.gfactor else sys.dipoles
        else:
            values = sys.expectation(self.observables)
        # (Lx, Ly, Lz, natoms, nobs) -> (nobs, Lx, Ly, Lz, natoms)
        self.data[..., it] = np.moveaxis(values, -1, 0)

    def record(self, source: SpinSystem) -> npt.NDArray[np.complex128]:
        """
        Load the state of ``source`` and record a fresh trajectory.

        Returns:
            The buffer, shape (nobs, Lx, Ly, Lz, natoms, num_freqs). It is
            overwritten by the next call.
        """
        self.system.copy_state_from(source)
        self._observe(0)
        for it in range(1, self.num_freqs):
            for _ in range(self.measperiod):
                self.integrator.step(self.system)
            self._observe(it)
        return self.data
