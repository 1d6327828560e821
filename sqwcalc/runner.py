import os
import logging
from typing import Any, Dict, List

import numpy as np

from .config_loader import load_config
from .form_factors import FormFactor
from .integrators import LocalSampler
from .lattice import Crystal, lattice_vectors
from .plotting import plot_path_intensities, plot_powder_intensities
from .retrieval import path, powder_average
from .schema import CrystalConfig, SqwCalcConfig, SystemConfig
from .structure_factor import StructureFactor, calculate_structure_factor
from .system import SpinSystem

logger = logging.getLogger(__name__)


def build_crystal(conf: CrystalConfig) -> Crystal:
    if conf.lattice_vectors is not None:
        latvecs = np.array(conf.lattice_vectors, dtype=float)
    else:
        p = conf.lattice_parameters
        latvecs = lattice_vectors(p.a, p.b, p.c, p.alpha, p.beta, p.gamma)
    positions = [atom.pos for atom in conf.atoms]
    types = [atom.type or atom.label for atom in conf.atoms]
    return Crystal(latvecs, positions, types=types, symprec=conf.symprec)


def build_system(conf: SystemConfig, crystal_conf: CrystalConfig, crystal: Crystal) -> SpinSystem:
    labels = [atom.label for atom in crystal_conf.atoms]
    spins = [atom.spin_S for atom in crystal_conf.atoms]
    system = SpinSystem(
        crystal, conf.latsize, spin_magnitudes=spins, mode=conf.mode,
        N=conf.N if conf.mode == 'SUN' else 0, g=conf.g, seed=conf.seed,
    )
    for bond in conf.exchange:
        try:
            i, j = labels.index(bond.pair[0]), labels.index(bond.pair[1])
        except ValueError:
            raise ValueError(f"Exchange pair {bond.pair} refers to an unknown atom label.") from None
        system.add_exchange(i, j, bond.offset, bond.J)
    system.set_field(conf.field)
    if conf.mode == 'SUN' and conf.easy_axis_anisotropy != 0.0:
        sz = system.spin_ops[2]
        system.set_onsite(conf.easy_axis_anisotropy * sz @ sz)
    if conf.randomize:
        system.randomize_spins()
    else:
        system.polarize_spins(conf.initial_direction)
    return system


def save_results(filename: str, results_dict: Dict[str, Any]):
    """
    Save calculation results to a compressed NumPy (.npz) file.

    Raises:
        TypeError: If results_dict is not a dictionary.
        ValueError: If filename is empty.
        IOError: If there is an error writing the file.
    """
    if not isinstance(results_dict, dict):
        raise TypeError("results_dict must be a dictionary.")
    if not filename:
        raise ValueError("filename cannot be empty.")

    logger.info(f"Saving results to '{filename}'...")
    try:
        np.savez_compressed(filename, **results_dict)
        logger.info(f"Results successfully saved to '{filename}'.")
    except (IOError, OSError) as e:
        logger.error(f"Failed to save results to '{filename}': {e}")
        raise IOError(f"File saving failed: {e}") from e


def _resolve(config_dir: str, filename: str) -> str:
    return filename if os.path.isabs(filename) else os.path.join(config_dir, filename)


def _should_plot(plot, intensities) -> bool:
    if not (plot.save_plot or plot.show_plot):
        return False
    if np.iscomplexobj(intensities):
        logger.warning("Skipping plot: the requested contraction returns complex intensities.")
        return False
    return True


def run_structure_factor(config: SqwCalcConfig, show_progress: bool = True) -> StructureFactor:
    """Build the model described by ``config``, thermalize and accumulate trajectories."""
    crystal = build_crystal(config.crystal)
    system = build_system(config.system, config.crystal, crystal)
    logger.info(f"Built {system.mode} system with latsize {system.latsize} and {crystal.natoms} sublattices.")

    samp = config.sampling
    if samp.thermalize_sweeps > 0:
        thermalizer = LocalSampler(samp.kT, nsweeps=samp.thermalize_sweeps, propose=samp.propose, seed=samp.seed)
        rate = thermalizer.sample(system)
        logger.info(f"Thermalized for {samp.thermalize_sweeps} sweeps (acceptance {rate:.2f}).")
    seed = None if samp.seed is None else samp.seed + 1
    sampler = LocalSampler(samp.kT, nsweeps=samp.sweeps_per_sample, propose=samp.propose, seed=seed)

    sfc = config.structure_factor
    return calculate_structure_factor(
        system,
        sampler,
        dt=sfc.dt,
        num_freqs=sfc.num_freqs,
        max_freq=sfc.max_freq,
        num_samples=samp.num_samples,
        matrix_elements=sfc.matrix_elements,
        gfactor=sfc.gfactor,
        show_progress=show_progress,
    )


def run_calculation(config_file: str) -> Dict[str, Any]:
    """
    Main execution logic for a configuration-driven structure factor run.
    """
    if not os.path.exists(config_file):
        logger.error(f"Config file '{config_file}' not found.")
        raise FileNotFoundError(f"Config file '{config_file}' not found.")

    config = load_config(config_file)
    config_dir = os.path.dirname(os.path.abspath(config_file))

    sf = run_structure_factor(config)

    q = config.queries
    contraction = tuple(q.contraction) if isinstance(q.contraction, (list, tuple)) else q.contraction
    form_factors: List[FormFactor] = [FormFactor(**ff.model_dump()) for ff in q.form_factors]
    query_kwargs = dict(
        contraction=contraction,
        interp=q.interpolation,
        temp=q.temperature,
        form_factors=form_factors,
        negative_energies=q.negative_energies,
    )
    plot = config.plotting
    results: Dict[str, Any] = {"structure_factor": sf}

    if q.path is not None:
        waypoints = [q.path.points[label] for label in q.path.labels]
        logger.info(f"Querying path {' -> '.join(q.path.labels)} at density {q.path.density}.")
        res = path(sf, waypoints, density=q.path.density, index_labels=True, **query_kwargs)
        save_results(_resolve(config_dir, config.output.path_data_filename), {
            "q_points": res.q_points,
            "energies": res.energies,
            "intensities": res.intensities,
        })
        if _should_plot(plot, res.intensities):
            plot_path_intensities(
                res.q_points, res.energies, res.intensities,
                _resolve(config_dir, plot.path_plot_filename) if plot.save_plot else None,
                crystal=sf.crystal, title=plot.title, ylim=plot.energy_limits,
                cmap=plot.cmap, log_scale=plot.log_scale, show_plot=plot.show_plot,
            )
        results["path"] = res

    if q.powder is not None:
        radii = np.array(q.powder.radii, dtype=float)
        logger.info(f"Powder averaging over {len(radii)} shells.")
        intensities = powder_average(sf, radii, q.powder.density, **query_kwargs)
        energies = sf.frequencies(q.negative_energies)
        save_results(_resolve(config_dir, config.output.powder_data_filename), {
            "radii": radii,
            "energies": energies,
            "intensities": intensities,
        })
        if _should_plot(plot, intensities):
            plot_powder_intensities(
                radii, energies, intensities,
                _resolve(config_dir, plot.powder_plot_filename) if plot.save_plot else None,
                title=f"Powder {plot.title}", ylim=plot.energy_limits,
                cmap=plot.cmap, log_scale=plot.log_scale, show_plot=plot.show_plot,
            )
        results["powder"] = intensities

    logger.info("Structure factor run completed.")
    return results
