import numpy as np
import pytest
import yaml
from numpy.testing import assert_allclose
from pydantic import ValidationError
from typer.testing import CliRunner

from sqwcalc import runner
from sqwcalc.cli import app
from sqwcalc.config_loader import load_config
from sqwcalc.plotting import path_length
from sqwcalc.schema import CrystalConfig, SqwCalcConfig, SystemConfig

BASE_CONFIG = {
    "crystal": {
        "lattice_parameters": {"a": 1.0, "b": 1.0, "c": 1.5},
        "atoms": [
            {"label": "Fe1", "pos": [0, 0, 0], "spin_S": 1.0},
            {"label": "Fe2", "pos": [0.5, 0.5, 0.5], "type": "Fe", "spin_S": 1.0},
        ],
    },
    "system": {
        "latsize": [2, 2, 1],
        "exchange": [
            {"pair": ["Fe1", "Fe1"], "offset": [1, 0, 0], "J": 1.0},
            {"pair": ["Fe1", "Fe2"], "J": 0.5},
        ],
        "randomize": True,
        "seed": 4,
    },
    "structure_factor": {"dt": 0.05, "num_freqs": 4},
    "sampling": {"kT": 0.5, "num_samples": 2, "sweeps_per_sample": 2, "thermalize_sweeps": 2, "seed": 1},
    "queries": {
        "contraction": "perp",
        "interpolation": "linear",
        "temperature": 0.5,
        "path": {"points": {"G": [0, 0, 0], "X": [0.5, 0, 0]}, "labels": ["G", "X"], "density": 8},
        "powder": {"radii": [0.5, 1.5], "density": 1.0},
    },
}


def write_config(tmp_path, data, name="config.yaml"):
    path = tmp_path / name
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return str(path)


# --- Schema ---
def test_schema_defaults():
    config = SqwCalcConfig.model_validate(BASE_CONFIG)
    assert config.system.mode == "dipole"
    assert config.structure_factor.gfactor is True
    assert config.output.path_data_filename == "sqw_path.npz"
    assert config.plotting.cmap == "PuBu_r"


def test_crystal_needs_lattice_and_atoms():
    with pytest.raises(ValidationError):
        CrystalConfig(atoms=[{"label": "A", "pos": [0, 0, 0]}])
    with pytest.raises(ValidationError):
        CrystalConfig(lattice_parameters={"a": 1, "b": 1, "c": 1})
    with pytest.raises(ValidationError):
        CrystalConfig(
            lattice_vectors=np.eye(3).tolist(),
            atoms=[{"label": "A", "pos": [0, 0, 0]}, {"label": "A", "pos": [0.5, 0, 0]}],
        )


def test_system_mode_checks():
    with pytest.raises(ValidationError):
        SystemConfig(latsize=[2, 2, 2], mode="SUN", N=1)
    with pytest.raises(ValidationError):
        SystemConfig(latsize=[2, 2, 2], easy_axis_anisotropy=0.1)
    assert SystemConfig(latsize=[2, 2, 2], mode="SUN", N=3, easy_axis_anisotropy=0.1).N == 3


def test_path_labels_must_be_defined():
    data = dict(BASE_CONFIG)
    data["queries"] = {"path": {"points": {"G": [0, 0, 0]}, "labels": ["G", "M"]}}
    with pytest.raises(ValidationError):
        SqwCalcConfig.model_validate(data)


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))
    bad = tmp_path / "bad.yaml"
    bad.write_text("crystal: [unclosed")
    with pytest.raises(ValueError):
        load_config(str(bad))
    invalid = write_config(tmp_path, {"crystal": {}}, "invalid.yaml")
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(invalid)


# --- Builders ---
def test_build_crystal_and_system():
    config = SqwCalcConfig.model_validate(BASE_CONFIG)
    crystal = runner.build_crystal(config.crystal)
    assert crystal.types == ["Fe1", "Fe"]
    assert_allclose(crystal.lattice_vectors, np.diag([1.0, 1.0, 1.5]))
    system = runner.build_system(config.system, config.crystal, crystal)
    assert system.latsize == (2, 2, 1)
    assert len(system._bonds[0]) == 3
    assert_allclose(np.linalg.norm(system.dipoles, axis=-1), 1.0)


def test_build_system_unknown_label():
    data = yaml.safe_load(yaml.safe_dump(BASE_CONFIG))
    data["system"]["exchange"].append({"pair": ["Fe1", "Co"], "J": 1.0})
    config = SqwCalcConfig.model_validate(data)
    crystal = runner.build_crystal(config.crystal)
    with pytest.raises(ValueError, match="unknown atom label"):
        runner.build_system(config.system, config.crystal, crystal)


def test_build_sun_system_with_anisotropy():
    data = yaml.safe_load(yaml.safe_dump(BASE_CONFIG))
    data["system"].update({"mode": "SUN", "N": 3, "easy_axis_anisotropy": -0.2, "randomize": False})
    config = SqwCalcConfig.model_validate(data)
    system = runner.build_system(config.system, config.crystal, runner.build_crystal(config.crystal))
    sz = system.spin_ops[2]
    assert_allclose(system.onsite, -0.2 * sz @ sz)
    assert_allclose(system.dipoles[..., 2], 1.0, atol=1e-12)


def test_save_results(tmp_path):
    filename = str(tmp_path / "out.npz")
    runner.save_results(filename, {"a": np.arange(3)})
    with np.load(filename) as data:
        assert_allclose(data["a"], [0, 1, 2])
    with pytest.raises(TypeError):
        runner.save_results(filename, [1, 2])
    with pytest.raises(ValueError):
        runner.save_results("", {})


# --- End to end ---
def test_run_calculation(tmp_path):
    config_file = write_config(tmp_path, BASE_CONFIG)
    results = runner.run_calculation(config_file)

    sf = results["structure_factor"]
    assert sf.num_samples == 2
    path_res = results["path"]
    assert path_res.intensities.shape == (len(path_res.q_points), 3)
    assert results["powder"].shape == (2, 3)

    with np.load(tmp_path / "sqw_path.npz") as data:
        assert_allclose(data["intensities"], path_res.intensities)
        assert_allclose(data["q_points"][-1], [0.5, 0, 0])
    assert (tmp_path / "sqw_powder.npz").exists()
    assert (tmp_path / "sqw_path.png").exists()
    assert (tmp_path / "sqw_powder.png").exists()


def test_run_calculation_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        runner.run_calculation(str(tmp_path / "nope.yaml"))


def test_complex_contraction_skips_plots(tmp_path):
    data = yaml.safe_load(yaml.safe_dump(BASE_CONFIG))
    data["queries"]["contraction"] = [0, 1]
    data["queries"]["temperature"] = None
    del data["queries"]["powder"]
    results = runner.run_calculation(write_config(tmp_path, data))
    assert np.iscomplexobj(results["path"].intensities)
    assert (tmp_path / "sqw_path.npz").exists()
    assert not (tmp_path / "sqw_path.png").exists()


def test_path_length():
    q = np.array([[0, 0, 0], [0.5, 0, 0], [0.5, 0.5, 0]])
    assert_allclose(path_length(q), [0, 0.5, 1.0])
    assert path_length(np.zeros((0, 3))).size == 0


# --- CLI ---
def test_cli_init_and_validate(tmp_path):
    cli = CliRunner()
    target = str(tmp_path / "template.yaml")
    result = cli.invoke(app, ["init", target])
    assert result.exit_code == 0
    assert "Created template config" in result.output

    result = cli.invoke(app, ["validate", target])
    assert result.exit_code == 0
    assert "is valid" in result.output

    bad = write_config(tmp_path, {"crystal": {}}, "bad.yaml")
    result = cli.invoke(app, ["validate", bad])
    assert result.exit_code == 1

    result = cli.invoke(app, ["validate", str(tmp_path / "missing.yaml")])
    assert result.exit_code == 1


def test_cli_run_reports_failure(tmp_path):
    bad = write_config(tmp_path, {"crystal": {}}, "bad.yaml")
    result = CliRunner().invoke(app, ["run", bad])
    assert result.exit_code == 1
    assert "Calculation failed" in result.output
