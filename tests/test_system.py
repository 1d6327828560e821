import numpy as np
import pytest
from numpy.testing import assert_allclose

from sqwcalc.errors import ConfigurationError
from sqwcalc.integrators import ImplicitMidpoint, LocalSampler
from sqwcalc.lattice import Crystal, lattice_vectors
from sqwcalc.system import SpinSystem, spin_matrices


# --- Lattice ---
def test_lattice_vectors_and_reciprocal():
    A = lattice_vectors(2.0, 3.0, 4.0)
    assert_allclose(A, np.diag([2.0, 3.0, 4.0]))
    hex_cell = lattice_vectors(1.0, 1.0, 2.0, gamma=120.0)
    crystal = Crystal(hex_cell, [[0, 0, 0]])
    assert_allclose(crystal.lattice_vectors @ crystal.reciprocal_vectors.T, 2 * np.pi * np.eye(3), atol=1e-12)
    q = np.array([0.3, -0.2, 0.5])
    assert_allclose(crystal.to_rlu(crystal.to_cartesian(q)), q)
    with pytest.raises(ValueError):
        lattice_vectors(1.0, 1.0, 1.0, 150.0, 150.0, 150.0)


def test_crystal_validation():
    with pytest.raises(ValueError):
        Crystal(np.eye(2), [[0, 0, 0]])
    with pytest.raises(ValueError):
        Crystal(np.eye(3), [[0, 0, 0]], types=["a", "b"])


# --- Spin system ---
def test_spin_matrices_commutation():
    for N in (2, 3, 4):
        sx, sy, sz = spin_matrices(N)
        assert_allclose(sx @ sy - sy @ sx, 1j * sz, atol=1e-12)
        S = (N - 1) / 2
        assert_allclose(sx @ sx + sy @ sy + sz @ sz, S * (S + 1) * np.eye(N), atol=1e-12)


def test_system_validation(cubic_crystal):
    with pytest.raises(ConfigurationError):
        SpinSystem(cubic_crystal, (2, 2), mode="dipole")
    with pytest.raises(ConfigurationError):
        SpinSystem(cubic_crystal, (2, 2, 1), mode="quantum")
    with pytest.raises(ConfigurationError):
        SpinSystem(cubic_crystal, (2, 2, 1), mode="SUN", N=1)
    system = SpinSystem(cubic_crystal, (2, 2, 1))
    with pytest.raises(ConfigurationError):
        system.add_exchange(0, 0, (0, 0, 0), 1.0)
    with pytest.raises(ConfigurationError):
        system.add_exchange(0, 1, (1, 0, 0), 1.0)
    with pytest.raises(ConfigurationError):
        system.set_onsite(np.eye(2))


def test_ferromagnet_energy(cubic_crystal):
    system = SpinSystem(cubic_crystal, (3, 3, 1), spin_magnitudes=1.5)
    system.add_exchange(0, 0, (1, 0, 0), -1.0)
    system.set_field((0.0, 0.0, 0.2))
    # 9 bonds of -S^2 plus Zeeman -h S per site
    assert_allclose(system.energy(), 9 * (-1.0 * 1.5**2) - 9 * 0.2 * 1.5)


def test_site_energy_change_matches_total(bct_system):
    idx = (1, 2, 0, 1)
    new = np.array([0.0, 1.0, 0.0])
    before = bct_system.energy()
    dE = bct_system.site_energy_change(idx, new)
    bct_system.set_site(idx, new)
    assert_allclose(bct_system.energy() - before, dE, atol=1e-12)


def test_clone_is_independent(bct_system):
    clone = bct_system.clone()
    clone.randomize_spins()
    clone.set_field((1.0, 0.0, 0.0))
    assert not np.allclose(clone.dipoles, bct_system.dipoles)
    assert_allclose(bct_system.field, 0.0)
    clone.copy_state_from(bct_system)
    assert_allclose(clone.dipoles, bct_system.dipoles)


def test_sun_polarization_and_expectation(cubic_crystal):
    system = SpinSystem(cubic_crystal, (2, 1, 1), mode="SUN", N=3)
    assert_allclose(system.dipoles[..., 2], 1.0, atol=1e-12)
    system.polarize_spins((1.0, 0.0, 0.0))
    values = system.expectation(system.spin_ops)
    assert values.shape == (2, 1, 1, 1, 3)
    assert_allclose(values.real, system.dipoles, atol=1e-12)
    assert_allclose(values[..., 0].real, 1.0, atol=1e-12)

    dipole_system = SpinSystem(cubic_crystal, (2, 1, 1))
    with pytest.raises(ConfigurationError):
        dipole_system.expectation(np.zeros((1, 2, 2)))


# --- Integrator ---
def test_precession_preserves_length_and_parallel_component(cubic_crystal):
    system = SpinSystem(cubic_crystal, (1, 1, 1), spin_magnitudes=2.0)
    system.set_field((0.0, 0.0, 1.0))
    system.polarize_spins((1.0, 0.0, 1.0))
    integrator = ImplicitMidpoint(0.01)
    for _ in range(100):
        integrator.step(system)
    s = system.dipoles[0, 0, 0, 0]
    assert_allclose(np.linalg.norm(s), 2.0)
    assert_allclose(s[2], np.sqrt(2.0), atol=1e-10)
    # Rotated by roughly h t = 1 radian about z
    angle = np.arctan2(s[1], s[0])
    assert_allclose(abs(angle), 1.0, atol=1e-3)


def test_integrator_conserves_energy(bct_system):
    integrator = ImplicitMidpoint(0.02)
    E0 = bct_system.energy()
    for _ in range(50):
        integrator.step(bct_system)
    assert_allclose(bct_system.energy(), E0, rtol=1e-6, atol=1e-6)
    assert_allclose(np.linalg.norm(bct_system.dipoles, axis=-1), 1.0)


def test_integrator_conserves_energy_with_field(bct_system):
    bct_system.set_field((0.3, -0.1, 0.5))
    integrator = ImplicitMidpoint(0.05)
    E0 = bct_system.energy()
    for _ in range(40):
        integrator.step(bct_system)
    assert_allclose(bct_system.energy(), E0, rtol=1e-8, atol=1e-8)


def test_integrator_rejects_bad_step():
    with pytest.raises(ConfigurationError):
        ImplicitMidpoint(0.0)


def test_integrator_failure_is_reported(bct_system):
    with pytest.raises(RuntimeError, match="failed to converge"):
        ImplicitMidpoint(0.05, max_iters=1).step(bct_system)


# --- Sampler ---
def test_zero_temperature_sampler_never_raises_energy(bct_system):
    sampler = LocalSampler(0.0, nsweeps=3, seed=11)
    E0 = bct_system.energy()
    rate = sampler.sample(bct_system)
    assert 0.0 <= rate <= 1.0
    assert bct_system.energy() <= E0 + 1e-12
    assert_allclose(np.linalg.norm(bct_system.dipoles, axis=-1), 1.0)


def test_sampler_proposals(cubic_crystal):
    for propose in ("uniform", "flip", "delta"):
        system = SpinSystem(cubic_crystal, (2, 2, 1), mode="SUN", N=2, seed=2)
        system.set_field((0.0, 0.0, 1.0))
        LocalSampler(1.0, propose=propose, seed=5).sample(system)
        assert_allclose(np.linalg.norm(system.coherents, axis=-1), 1.0)
    with pytest.raises(ConfigurationError):
        LocalSampler(1.0, propose="swap")
    with pytest.raises(ConfigurationError):
        LocalSampler(-1.0)
