"""
sqwcalc: classical dynamical structure factors S(q, w) from spin trajectories.
"""
from .errors import ConfigurationError, QueryError
from .lattice import Crystal, lattice_vectors
from .system import SpinSystem, spin_matrices
from .integrators import ImplicitMidpoint, LocalSampler
from .structure_factor import ComponentPairIndex, StructureFactor, calculate_structure_factor
from .form_factors import FormFactor
from .interpolation import Interpolation
from .retrieval import (
    IntensityResult,
    classical_to_quantum,
    get_intensities,
    get_intensity,
    get_static_intensities,
    get_static_intensity,
    intensity_grid,
    path,
    powder_average,
    static_slice,
)

__version__ = "0.1.0"
