# -*- coding: utf-8 -*-
"""
Retrieval of scattering intensities from an accumulated `StructureFactor`.

All queries funnel into `get_intensities`, which maps each wavevector onto a
stencil of discrete lattice wavevectors, evaluates basis reduction and
contraction once per run of identical stencils, and interpolates. Grid, path,
slice and powder queries only generate wavevectors and post-process.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np
import numpy.typing as npt
from euphonic.sampling import golden_sphere

from .basis_reduction import phase_averaged_elements
from .contraction import Contraction, Mode, contraction_for
from .errors import ConfigurationError, QueryError
from .form_factors import FormFactor, form_factor_values, propagate_form_factors
from .interpolation import Interpolation, stencil, stencil_keys
from .stencil_cache import broadcast_runs
from .structure_factor import StructureFactor

logger = logging.getLogger(__name__)


@dataclass
class IntensityResult:
    """Intensities together with the wavevectors and energies they were evaluated at."""
    intensities: npt.NDArray
    q_points: npt.NDArray[np.float64]
    energies: npt.NDArray[np.float64]


def classical_to_quantum(omega, temp: float):
    """
    Factor correcting classical intensities toward quantum ones.

    With x = omega / kT the factor is x / (1 - exp(-x)), equal to 1 at
    omega = 0. It satisfies detailed balance f(-w) = exp(-w/kT) f(w), tends
    to 1 for kT -> infinity and grows like omega/kT as kT -> 0.

    Raises:
        ConfigurationError: If ``temp`` is not positive.
    """
    if temp <= 0:
        raise ConfigurationError(f"Temperature (kT) must be positive, got {temp}.")
    x = np.asarray(omega, dtype=float) / temp
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        return np.where(x == 0, 1.0, x / -np.expm1(-x))


def change_basis(q_targets: npt.ArrayLike, newbasis: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Map q onto sum_i q_i * newbasis[i] (rows of ``newbasis`` are the new axes in RLU)."""
    newbasis = np.asarray(newbasis, dtype=float)
    if newbasis.shape != (3, 3):
        raise QueryError(f"newbasis must be a 3x3 matrix, got shape {newbasis.shape}.")
    return np.asarray(q_targets, dtype=float) @ newbasis


def _stencil_intensities(
    sf: StructureFactor,
    ms: npt.NDArray[np.int_],
    omega_idx: npt.NDArray[np.int_],
    omegas: npt.NDArray[np.float64],
    contractor: Contraction,
    temp: Optional[float],
    ff_table: Sequence[Optional[FormFactor]],
) -> npt.NDArray:
    """Contracted intensities at the k discrete points ``ms`` (k, 3), shape (k, nw, *extra)."""
    Ls = np.asarray(sf.latsize)
    cells = np.mod(ms, Ls)
    block = sf.data[:, :, :, cells[:, 0], cells[:, 1], cells[:, 2], :][..., omega_idx]
    block = np.moveaxis(block, 3, 0)  # (k, npairs, natoms, natoms, nw)

    qs = ms / Ls
    q_cart = sf.crystal.to_cartesian(qs)
    ff = None
    if any(f is not None for f in ff_table):
        ff = form_factor_values(ff_table, np.linalg.norm(q_cart, axis=-1))

    elems = phase_averaged_elements(block, qs, sf.crystal, ff)
    intensities = contractor.contract(elems, q_cart)
    if temp is not None:
        factor = classical_to_quantum(omegas, temp)
        intensities = intensities * factor.reshape((1, -1) + (1,) * len(contractor.extra_shape))
    return intensities


def get_intensities(
    sf: StructureFactor,
    q_targets: npt.ArrayLike,
    contraction: Mode = "perp",
    interp: Any = Interpolation.NONE,
    temp: Optional[float] = None,
    form_factors: Optional[Sequence[FormFactor]] = None,
    negative_energies: bool = False,
    newbasis: Optional[npt.ArrayLike] = None,
) -> npt.NDArray:
    """
    Intensities at arbitrary wavevectors.

    Args:
        sf: Structure factor with at least one accumulated trajectory.
        q_targets: Wavevectors in RLU, any shape ending in 3.
        contraction: ``"trace"``, ``"perp"``, ``"full"`` or a pair ``(a, b)``.
        interp: ``"none"`` or ``"linear"``.
        temp: kT for the classical-to-quantum correction (off if None).
        form_factors: Per-atom form factors, propagated to equivalent sites.
        negative_energies: Return every frequency bin instead of the
            non-negative half.
        newbasis: Optional 3x3 matrix whose rows express the query axes in RLU.

    Returns:
        Array of shape ``q_targets.shape[:-1] + (nw,)`` (plus a trailing
        element axis for ``"full"``).
    """
    sf.require_samples()
    q = np.asarray(q_targets, dtype=float)
    if q.ndim == 0 or q.shape[-1] != 3:
        raise QueryError(f"Wavevectors must have a trailing dimension of 3, got shape {q.shape}.")
    if newbasis is not None:
        q = change_basis(q, newbasis)
    q_shape = q.shape[:-1]
    flat = q.reshape(-1, 3)
    if flat.shape[0] == 0:
        raise QueryError("At least one wavevector is required.")

    interp = Interpolation.parse(interp)
    contractor = contraction_for(contraction, sf.pair_index, sf.dipole_mode)
    if temp is not None and temp <= 0:
        raise ConfigurationError(f"Temperature (kT) must be positive, got {temp}.")
    ff_table = propagate_form_factors(sf.crystal, form_factors)

    omegas = sf.frequencies(negative_energies)
    omega_idx = np.arange(len(omegas))
    ms, weights = stencil(flat, sf.latsize, interp)
    keys = stencil_keys(ms)

    out = np.zeros((flat.shape[0], len(omegas)) + contractor.extra_shape, dtype=contractor.dtype)
    nruns = 0
    runs = broadcast_runs(
        keys,
        lambda i: _stencil_intensities(sf, ms[i], omega_idx, omegas, contractor, temp, ff_table),
    )
    for run, local in runs:
        out[run] = np.einsum("nk,k...->n...", weights[run], local)
        nruns += 1
    logger.debug(f"{flat.shape[0]} wavevectors evaluated over {nruns} stencil regions.")

    return out.reshape(q_shape + out.shape[1:])


def get_intensity(sf: StructureFactor, q: Sequence[float], **kwargs) -> npt.NDArray:
    """Intensities at a single wavevector, shape (nw,)."""
    if len(q) != 3:
        raise QueryError(f"A wavevector must have three components, got {len(q)}.")
    return get_intensities(sf, np.asarray(q, dtype=float), **kwargs)


def get_static_intensity(sf: StructureFactor, q: Sequence[float], **kwargs):
    """Energy-integrated intensity at a single wavevector."""
    return np.sum(get_intensity(sf, q, **kwargs), axis=0)


def get_static_intensities(sf: StructureFactor, q_targets: npt.ArrayLike, **kwargs) -> npt.NDArray:
    """Energy-integrated intensities, shaped like ``q_targets`` without the last axis."""
    q = np.asarray(q_targets, dtype=float)
    if q.ndim < 2 or int(np.prod(q.shape[:-1])) < 2:
        raise QueryError("get_static_intensities needs at least 2 wavevectors; use get_static_intensity.")
    intensities = get_intensities(sf, q, **kwargs)
    return np.sum(intensities, axis=q.ndim - 1)


def intensity_grid(
    sf: StructureFactor,
    bzsize: Sequence[int] = (1, 1, 1),
    negative_energies: bool = False,
    index_labels: bool = False,
    **kwargs,
):
    """Intensities at every discrete wavevector of ``bzsize`` Brillouin zones."""
    q_points = sf.qgrid(bzsize)
    intensities = get_intensities(sf, q_points, negative_energies=negative_energies, **kwargs)
    if index_labels:
        return IntensityResult(intensities, q_points, sf.frequencies(negative_energies))
    return intensities


def path_points(points: npt.ArrayLike, density: float) -> npt.NDArray[np.float64]:
    """
    Sample the polyline through ``points`` (RLU) at ``density`` points per RLU.

    Each leg contributes at least one point (its start); the final waypoint is
    appended.
    """
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise QueryError(f"Path waypoints must have shape (n, 3), got {pts.shape}.")
    if len(pts) < 2:
        raise QueryError("A path needs at least two waypoints.")
    if density <= 0:
        raise QueryError(f"Path density must be positive, got {density}.")

    legs: List[npt.NDArray[np.float64]] = []
    for p1, p2 in zip(pts[:-1], pts[1:]):
        npts = max(1, int(np.floor(np.linalg.norm(p2 - p1) * density)))
        t = (np.arange(npts) / npts)[:, None]
        legs.append((1 - t) * p1 + t * p2)
    legs.append(pts[-1:])
    return np.vstack(legs)


def path(
    sf: StructureFactor,
    points: npt.ArrayLike,
    density: float = 10,
    index_labels: bool = False,
    **kwargs,
):
    """Intensities along a piecewise linear path through ``points``."""
    q_points = path_points(points, density)
    intensities = get_intensities(sf, q_points, **kwargs)
    if index_labels:
        return IntensityResult(intensities, q_points, sf.frequencies(kwargs.get("negative_energies", False)))
    return intensities


def static_slice_points(
    p1: Sequence[float], p2: Sequence[float], z: float, density: float
) -> npt.NDArray[np.float64]:
    """Rectangular grid in the plane q_3 = z spanned by the corners p1 and p2."""
    dx, dy = p2[0] - p1[0], p2[1] - p1[1]
    nx, ny = int(round(dx * density)), int(round(dy * density))
    if nx < 1 or ny < 1 or nx * ny < 2:
        raise QueryError(
            f"Slice from {p1} to {p2} at density {density} gives a {nx}x{ny} grid; need at least 2 points."
        )
    tx = (np.arange(nx) / nx)[:, None]
    ty = (np.arange(ny) / ny)[None, :]
    points = np.empty((nx, ny, 3))
    points[..., 0] = (1 - tx) * p1[0] + tx * p2[0]
    points[..., 1] = (1 - ty) * p1[1] + ty * p2[1]
    points[..., 2] = z
    return points


def static_slice(
    sf: StructureFactor,
    p1: Sequence[float],
    p2: Sequence[float],
    z: float = 0.0,
    density: float = 10,
    index_labels: bool = False,
    **kwargs,
):
    """Energy-integrated intensities on a 2D slice of reciprocal space."""
    q_points = static_slice_points(p1, p2, z, density)
    intensities = get_static_intensities(sf, q_points, **kwargs)
    if index_labels:
        return IntensityResult(intensities, q_points, sf.frequencies(kwargs.get("negative_energies", False)))
    return intensities


def spherical_shell(radius: float, density: float) -> npt.NDArray[np.float64]:
    """
    Golden-sphere points (inverse Angstrom) with ``density`` points per unit area.

    A shell of positive radius always carries at least one point on the
    sphere; only ``radius == 0`` collapses to the origin.
    """
    if radius < 0:
        raise QueryError(f"Powder radius must be non-negative, got {radius}.")
    if radius == 0:
        return np.zeros((1, 3))
    n = max(1, int(round(4 * np.pi * radius**2 * density)))
    return radius * np.array(list(golden_sphere(n)))


def powder_average(
    sf: StructureFactor,
    radii: npt.ArrayLike,
    density: float,
    **kwargs,
) -> npt.NDArray:
    """
    Spherically averaged intensities.

    Args:
        radii: |Q| values in inverse Angstrom.
        density: Points per unit area on each sphere.

    Returns:
        Array of shape (len(radii), nw, ...).
    """
    if density <= 0:
        raise QueryError(f"Powder density must be positive, got {density}.")
    radii = np.atleast_1d(np.asarray(radii, dtype=float))
    averages = []
    for r in radii:
        shell = sf.crystal.to_rlu(spherical_shell(r, density))
        averages.append(np.mean(get_intensities(sf, shell, **kwargs), axis=0))
    logger.info(f"Powder average over {len(radii)} shells complete.")
    return np.stack(averages)
