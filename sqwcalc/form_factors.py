import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import numpy.typing as npt

from .errors import QueryError
from .lattice import Crystal

logger = logging.getLogger(__name__)

# Data from International Tables for Crystallography Vol C, Table 4.4.4.1
# Formula for j0(s): j0(s) = A*exp(-a*s^2) + B*exp(-b*s^2) + C*exp(-c*s^2) + D
# s = sin(theta)/lambda = Q / (4*pi)

FORM_FACTOR_COEFFICIENTS = {
    # 3d ions (j0)
    "Ti3+": {"A": 0.4391, "a": 12.1009, "B": 0.5238, "b": 5.1517, "C": 0.0521, "c": 0.1703, "D": -0.0152},
    "V4+":  {"A": 0.4026, "a": 15.6558, "B": 0.5404, "b": 6.3054, "C": 0.0716, "c": 0.2312, "D": -0.0145},
    "V3+":  {"A": 0.3542, "a": 14.8690, "B": 0.5752, "b": 6.1360, "C": 0.0886, "c": 0.1982, "D": -0.0180},
    "V2+":  {"A": 0.2882, "a": 14.2863, "B": 0.6139, "b": 5.9238, "C": 0.1177, "c": 0.1558, "D": -0.0198},
    "Cr3+": {"A": 0.2974, "a": 19.4678, "B": 0.6094, "b": 7.7348, "C": 0.1147, "c": 0.2505, "D": -0.0215},
    "Cr2+": {"A": 0.2223, "a": 18.2325, "B": 0.6553, "b": 7.3341, "C": 0.1481, "c": 0.1915, "D": -0.0257},
    "Mn4+": {"A": 0.2238, "a": 23.4913, "B": 0.6559, "b": 9.2452, "C": 0.1444, "c": 0.3013, "D": -0.0241},
    "Mn3+": {"A": 0.1524, "a": 21.3653, "B": 0.7067, "b": 8.7188, "C": 0.1764, "c": 0.2238, "D": -0.0355},
    "Mn2+": {"A": 0.1084, "a": 20.3547, "B": 0.7410, "b": 8.3619, "C": 0.1989, "c": 0.1805, "D": -0.0483},
    "Fe3+": {"A": 0.0626, "a": 27.2721, "B": 0.7554, "b": 10.3800, "C": 0.2464, "c": 0.2797, "D": -0.0644},
    "Fe2+": {"A": 0.0142, "a": 24.3639, "B": 0.7853, "b": 9.9407, "C": 0.2936, "c": 0.2111, "D": -0.0931},
    "Co2+": {"A": -0.0556, "a": 34.6983, "B": 0.8118, "b": 11.8315, "C": 0.3571, "c": 0.2829, "D": -0.1133},
    "Ni2+": {"A": -0.1986, "a": 54.4373, "B": 0.8647, "b": 13.5654, "C": 0.4578, "c": 0.3805, "D": -0.1239},
    "Cu2+": {"A": -0.1561, "a": 63.3630, "B": 0.8523, "b": 14.8698, "C": 0.4851, "c": 0.5065, "D": -0.1813},
}


def _radial_integral(coeffs: Dict[str, float], s2):
    return (coeffs["A"] * np.exp(-coeffs["a"] * s2) +
            coeffs["B"] * np.exp(-coeffs["b"] * s2) +
            coeffs["C"] * np.exp(-coeffs["c"] * s2) +
            coeffs["D"])


def get_j0(ion, Q_mag):
    """
    Calculate j0(s) for a given ion and Q magnitude.
    s = Q / (4 * pi)
    """
    if ion not in FORM_FACTOR_COEFFICIENTS:
        logger.warning(f"Ion '{ion}' not found in form factor database. Returning 1.0.")
        return np.ones_like(np.asarray(Q_mag, dtype=float))
    s = np.asarray(Q_mag, dtype=float) / (4.0 * np.pi)
    return _radial_integral(FORM_FACTOR_COEFFICIENTS[ion], s**2)


@dataclass(frozen=True)
class FormFactor:
    """
    Magnetic form factor of one sublattice (and, after propagation, of all
    sites symmetry-equivalent to it).

    F(Q) = <j0>(s) + ((2 - g)/g) <j2>(s), s = Q/(4 pi), with
    <j2>(s) = s^2 (A e^{-a s^2} + B e^{-b s^2} + C e^{-c s^2} + D).

    ``j0``/``j2`` take coefficient dicts with keys A, a, B, b, C, c, D and
    override the built-in table looked up by ``ion``.
    """
    atom: int
    ion: Optional[str] = None
    g_lande: float = 2.0
    j0: Optional[Dict[str, float]] = None
    j2: Optional[Dict[str, float]] = None

    def __post_init__(self):
        if self.j0 is None and self.ion not in FORM_FACTOR_COEFFICIENTS:
            logger.warning(f"Ion '{self.ion}' not found in form factor database. Using F(Q) = 1.")
        if self.g_lande != 2.0 and self.j2 is None:
            logger.warning(
                f"g_lande={self.g_lande} for atom {self.atom} but no j2 coefficients given; using j0 only."
            )

    def __call__(self, Q_mag) -> npt.NDArray[np.float64]:
        Q_mag = np.asarray(Q_mag, dtype=float)
        s2 = (Q_mag / (4.0 * np.pi)) ** 2
        if self.j0 is not None:
            value = _radial_integral(self.j0, s2)
        elif self.ion in FORM_FACTOR_COEFFICIENTS:
            value = get_j0(self.ion, Q_mag)
        else:
            return np.ones_like(Q_mag)
        if self.j2 is not None and self.g_lande != 2.0:
            value = value + ((2.0 - self.g_lande) / self.g_lande) * s2 * _radial_integral(self.j2, s2)
        return value


def propagate_form_factors(
    crystal: Crystal, form_factors: Optional[Sequence[FormFactor]]
) -> List[Optional[FormFactor]]:
    """
    Assign each form factor to every sublattice symmetry-equivalent to its atom.

    Raises:
        QueryError: For an atom index outside the crystal or when two entries
            cover symmetry-equivalent sites.
    """
    table: List[Optional[FormFactor]] = [None] * crystal.natoms
    if not form_factors:
        return table
    specified = set()
    for ff in form_factors:
        if not 0 <= ff.atom < crystal.natoms:
            raise QueryError(
                f"There are only {crystal.natoms} atoms. Can't assign a form factor to atom {ff.atom}."
            )
        for site in crystal.symmetry_equivalent_sites(ff.atom):
            if site in specified:
                raise QueryError(
                    f"Provided form factor information for two symmetry equivalent sites (atom {site})."
                )
            specified.add(site)
            table[site] = ff
    return table


def form_factor_values(table: Sequence[Optional[FormFactor]], Q_mag) -> npt.NDArray[np.float64]:
    """F_i(|Q|) for every sublattice, shape Q_mag.shape + (natoms,)."""
    Q_mag = np.asarray(Q_mag, dtype=float)
    return np.stack(
        [np.ones_like(Q_mag) if ff is None else ff(Q_mag) for ff in table], axis=-1
    )
