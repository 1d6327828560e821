# -*- coding: utf-8 -*-
"""
Time integration and Monte Carlo sampling for ``SpinSystem``.
"""
import logging
from typing import Optional

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError
from .system import SpinSystem

logger = logging.getLogger(__name__)

PROPOSALS = ("uniform", "flip", "delta")


class ImplicitMidpoint:
    """
    Implicit midpoint integrator.

    Dipoles follow dS/dt = -S x B with B = -dE/dS. The field is evaluated at
    the midpoint (S + S')/2 and the precession axis is the midpoint rescaled
    to the spin length, so both the spin length and a bilinear energy are
    conserved up to the fixed-point tolerance. SU(N) coherent states follow
    dZ/dt = -i H_loc Z with the mean-field local Hamiltonian.
    """

    def __init__(self, dt: float, atol: float = 1e-12, max_iters: int = 100):
        if dt <= 0:
            raise ConfigurationError(f"Integration step must be positive, got dt={dt}.")
        self.dt = dt
        self.atol = atol
        self.max_iters = max_iters

    def step(self, system: SpinSystem):
        if system.mode == "SUN":
            self._step_coherents(system)
        else:
            self._step_dipoles(system)

    def _step_dipoles(self, system: SpinSystem):
        s = system.dipoles
        kappa = system.kappas[:, None]
        s_tilde = s.copy()
        for _ in range(self.max_iters):
            s_bar = 0.5 * (s + s_tilde)
            s_hat = kappa * s_bar / np.linalg.norm(s_bar, axis=-1, keepdims=True)
            B = -system.energy_gradient(s_bar)
            s_next = s - self.dt * np.cross(s_hat, B)
            if np.allclose(s_next, s_tilde, rtol=0.0, atol=self.atol):
                s[...] = kappa * s_next / np.linalg.norm(s_next, axis=-1, keepdims=True)
                return
            s_tilde = s_next
        raise RuntimeError(
            f"Implicit midpoint failed to converge in {self.max_iters} iterations (dt={self.dt})."
        )

    def _step_coherents(self, system: SpinSystem):
        Z = system.coherents
        Z_tilde = Z.copy()
        for _ in range(self.max_iters):
            Z_bar = 0.5 * (Z + Z_tilde)
            Z_hat = Z_bar / np.linalg.norm(Z_bar, axis=-1, keepdims=True)
            H = system.local_hamiltonian(system.energy_gradient(system.dipoles_from_coherents(Z_hat)))
            Z_next = Z - 1j * self.dt * np.einsum("...ij,...j->...i", H, Z_bar)
            if np.allclose(Z_next, Z_tilde, rtol=0.0, atol=self.atol):
                Z[...] = Z_next / np.linalg.norm(Z_next, axis=-1, keepdims=True)
                system.dipoles[...] = system.dipoles_from_coherents(Z)
                return
            Z_tilde = Z_next
        raise RuntimeError(
            f"Implicit midpoint failed to converge in {self.max_iters} iterations (dt={self.dt})."
        )


class LocalSampler:
    """
    Metropolis sampler with single-site updates.

    Args:
        kT: Temperature in energy units. ``kT == 0`` only accepts moves that do
            not raise the energy.
        nsweeps: Sweeps over the lattice per call to ``sample``.
        propose: ``"uniform"`` (random new state), ``"flip"`` (reverse the
            dipole) or ``"delta"`` (small random perturbation).
        delta: Perturbation scale for ``"delta"``.
        seed: Seed for the sampler's random generator.
    """

    def __init__(
        self,
        kT: float,
        nsweeps: int = 1,
        propose: str = "uniform",
        delta: float = 0.2,
        seed: Optional[int] = None,
    ):
        if kT < 0:
            raise ConfigurationError(f"kT must be non-negative, got {kT}.")
        if propose not in PROPOSALS:
            raise ConfigurationError(f"Unknown proposal '{propose}'. Expected one of {PROPOSALS}.")
        if nsweeps < 1:
            raise ConfigurationError("nsweeps must be at least 1.")
        self.kT = kT
        self.nsweeps = nsweeps
        self.propose = propose
        self.delta = delta
        self.rng = np.random.default_rng(seed)

    def _proposal(self, system: SpinSystem, idx) -> npt.NDArray:
        if system.mode == "SUN":
            z = system.coherents[idx]
            if self.propose == "uniform":
                w = self.rng.normal(size=system.N) + 1j * self.rng.normal(size=system.N)
            elif self.propose == "flip":
                w = system.coherent_along(-system.dipoles[idx])
            else:
                w = z + self.delta * (self.rng.normal(size=system.N) + 1j * self.rng.normal(size=system.N))
            return w / np.linalg.norm(w)

        s = system.dipoles[idx]
        kappa = system.kappas[idx[-1]]
        if self.propose == "uniform":
            v = self.rng.normal(size=3)
        elif self.propose == "flip":
            v = -s
        else:
            v = s + self.delta * kappa * self.rng.normal(size=3)
        return kappa * v / np.linalg.norm(v)

    def sample(self, system: SpinSystem) -> float:
        """Run ``nsweeps`` sweeps in place and return the acceptance rate."""
        accepted = 0
        attempted = 0
        for _ in range(self.nsweeps):
            for idx in np.ndindex(system.dipoles.shape[:-1]):
                new_state = self._proposal(system, idx)
                dE = system.site_energy_change(idx, new_state)
                attempted += 1
                if dE <= 0 or (self.kT > 0 and self.rng.random() < np.exp(-dE / self.kT)):
                    system.set_site(idx, new_state)
                    accepted += 1
        return accepted / attempted
