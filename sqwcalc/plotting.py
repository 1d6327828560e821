import numpy as np
import matplotlib.pyplot as plt
from matplotlib.colors import LogNorm
import logging
import os
from typing import Optional, List

from .lattice import Crystal

logger = logging.getLogger(__name__)


def path_length(q_points: np.ndarray, crystal: Optional[Crystal] = None) -> np.ndarray:
    """Cumulative distance along a path of q-points (inverse Angstrom if a crystal is given)."""
    if len(q_points) == 0:
        return np.array([])
    q = crystal.to_cartesian(q_points) if crystal is not None else np.asarray(q_points)
    dists = np.linalg.norm(np.diff(q, axis=0), axis=1)
    return np.concatenate(([0], np.cumsum(dists)))


def _intensity_map(
    x_vals: np.ndarray,
    energies: np.ndarray,
    intensities: np.ndarray,
    save_filename: Optional[str],
    title: str,
    xlabel: str,
    ylim: Optional[List[float]],
    cmap: str,
    log_scale: bool,
    show_plot: bool,
):
    if np.iscomplexobj(intensities):
        raise ValueError("Only real intensities can be plotted; use a 'trace' or 'perp' contraction.")

    order = np.argsort(energies)
    data = np.asarray(intensities)[:, order].T
    norm = None
    if log_scale:
        positive = data[data > 0]
        vmin = positive.min() if positive.size else 1e-6
        norm = LogNorm(vmin=vmin, vmax=max(data.max(), vmin * 10))

    plt.figure(figsize=(8, 6))
    mesh = plt.pcolormesh(x_vals, energies[order], data, shading="auto", cmap=cmap, norm=norm)
    plt.colorbar(mesh, label="Intensity (arb. units)")
    plt.title(title)
    plt.xlabel(xlabel)
    plt.ylabel("Energy")
    if ylim:
        plt.ylim(ylim)

    if save_filename:
        os.makedirs(os.path.dirname(os.path.abspath(save_filename)), exist_ok=True)
        plt.savefig(save_filename, dpi=150)
        logger.info(f"Plot saved to {save_filename}")
    if show_plot:
        plt.show()
    plt.close()


def plot_path_intensities(
    q_points: np.ndarray,
    energies: np.ndarray,
    intensities: np.ndarray,
    save_filename: Optional[str],
    crystal: Optional[Crystal] = None,
    title: str = "S(Q,w)",
    ylim: Optional[List[float]] = None,
    cmap: str = 'PuBu_r',
    log_scale: bool = False,
    show_plot: bool = False,
):
    """
    Plots intensities along a q-path as a color map of path length vs energy.
    """
    xlabel = r"Q Path Length ($\AA^{-1}$)" if crystal is not None else "Q Path Length (r.l.u.)"
    _intensity_map(
        path_length(q_points, crystal), energies, intensities, save_filename,
        title, xlabel, ylim, cmap, log_scale, show_plot,
    )


def plot_powder_intensities(
    radii: np.ndarray,
    energies: np.ndarray,
    intensities: np.ndarray,
    save_filename: Optional[str],
    title: str = "Powder S(|Q|,w)",
    ylim: Optional[List[float]] = None,
    cmap: str = 'PuBu_r',
    log_scale: bool = False,
    show_plot: bool = False,
):
    """
    Plots powder-averaged intensities as a color map of |Q| vs energy.
    """
    _intensity_map(
        np.asarray(radii), energies, intensities, save_filename,
        title, r"|Q| ($\AA^{-1}$)", ylim, cmap, log_scale, show_plot,
    )
