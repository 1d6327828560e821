import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from sqwcalc.lattice import Crystal
from sqwcalc.structure_factor import StructureFactor
from sqwcalc.system import SpinSystem


@pytest.fixture
def cubic_crystal():
    return Crystal(np.eye(3), [[0.0, 0.0, 0.0]])


@pytest.fixture
def bct_crystal():
    """Two equivalent sites in a body-centered tetragonal cell."""
    latvecs = np.diag([1.0, 1.0, 1.5])
    return Crystal(latvecs, [[0.0, 0.0, 0.0], [0.5, 0.5, 0.5]], types=["Fe", "Fe"])


@pytest.fixture
def bct_system(bct_crystal):
    system = SpinSystem(bct_crystal, (3, 3, 2), seed=7)
    system.add_exchange(0, 0, (1, 0, 0), 1.0)
    system.add_exchange(0, 1, (0, 0, 0), 0.5)
    system.randomize_spins()
    return system


@pytest.fixture
def sampled_sf(bct_system):
    """Structure factor holding two recorded trajectories from random states."""
    sf = StructureFactor(bct_system, dt=0.05, num_freqs=6, gfactor=False)
    sf.add_trajectory(bct_system)
    bct_system.randomize_spins()
    sf.add_trajectory(bct_system)
    return sf
