from typing import List, Dict, Optional, Union, Literal, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator


# --- Primitive Types ---
Vector3 = Union[List[float], Tuple[float, float, float]]
IntVector3 = Union[List[int], Tuple[int, int, int]]


# --- Crystal Structure ---
class LatticeParameters(BaseModel):
    a: float
    b: float
    c: float
    alpha: float = 90.0
    beta: float = 90.0
    gamma: float = 90.0


class AtomConfig(BaseModel):
    label: str
    pos: Vector3
    type: Optional[str] = None  # Species label; defaults to the atom label
    spin_S: float = 1.0


class CrystalConfig(BaseModel):
    lattice_parameters: Optional[LatticeParameters] = None
    # Support raw vector list [[a,0,0], ...]
    lattice_vectors: Optional[List[Vector3]] = None
    atoms: List[AtomConfig] = Field(default_factory=list)
    symprec: float = 1e-5

    @model_validator(mode='after')
    def check_structure_source(self):
        if not (self.lattice_parameters or self.lattice_vectors):
            raise ValueError("Must provide either 'lattice_parameters' or 'lattice_vectors'.")
        if not self.atoms:
            raise ValueError("Must provide at least one entry in 'atoms'.")
        labels = [atom.label for atom in self.atoms]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Atom labels must be unique, got {labels}.")
        return self


# --- Spin System ---
class ExchangeConfig(BaseModel):
    pair: List[str]  # [atom_i, atom_j]
    J: float
    offset: IntVector3 = [0, 0, 0]

    @field_validator('pair')
    @classmethod
    def check_pair(cls, v):
        if len(v) != 2:
            raise ValueError("'pair' must name exactly two atoms.")
        return v


class SystemConfig(BaseModel):
    latsize: IntVector3
    mode: Literal['dipole', 'SUN'] = 'dipole'
    N: int = 0
    g: float = 2.0
    exchange: List[ExchangeConfig] = Field(default_factory=list)
    field: Vector3 = [0.0, 0.0, 0.0]
    easy_axis_anisotropy: float = 0.0  # D Sz^2, SU(N) mode only
    initial_direction: Vector3 = [0.0, 0.0, 1.0]
    randomize: bool = False
    seed: Optional[int] = None

    @model_validator(mode='after')
    def check_mode(self):
        if self.mode == 'SUN' and self.N < 2:
            raise ValueError("SU(N) mode requires N >= 2.")
        if self.mode == 'dipole' and self.easy_axis_anisotropy != 0.0:
            raise ValueError("'easy_axis_anisotropy' is only supported in SU(N) mode.")
        return self


# --- Calculation ---
class StructureFactorConfig(BaseModel):
    dt: float = 0.05
    num_freqs: int = 100
    max_freq: Optional[float] = None
    gfactor: bool = True
    matrix_elements: Optional[List[Tuple[int, int]]] = None


class SamplingConfig(BaseModel):
    kT: float
    num_samples: int = 10
    sweeps_per_sample: int = 100
    thermalize_sweeps: int = 1000
    propose: Literal['uniform', 'flip', 'delta'] = 'uniform'
    seed: Optional[int] = None


class FormFactorConfig(BaseModel):
    atom: int
    ion: Optional[str] = None
    g_lande: float = 2.0


class PathConfig(BaseModel):
    points: Dict[str, Vector3]
    labels: List[str]
    density: float = 10.0

    @model_validator(mode='after')
    def check_labels(self):
        if len(self.labels) < 2:
            raise ValueError("A path needs at least two labels.")
        missing = [label for label in self.labels if label not in self.points]
        if missing:
            raise ValueError(f"Path labels {missing} not defined in 'points'.")
        return self


class PowderConfig(BaseModel):
    radii: List[float]
    density: float = 1.0


class QueriesConfig(BaseModel):
    contraction: Union[str, Tuple[int, int]] = 'perp'
    interpolation: Literal['none', 'linear', 'multilinear'] = 'linear'
    temperature: Optional[float] = None
    negative_energies: bool = False
    form_factors: List[FormFactorConfig] = Field(default_factory=list)
    path: Optional[PathConfig] = None
    powder: Optional[PowderConfig] = None


# --- Other Sections ---
class OutputConfig(BaseModel):
    path_data_filename: str = 'sqw_path.npz'
    powder_data_filename: str = 'sqw_powder.npz'


class PlottingConfig(BaseModel):
    save_plot: bool = True
    show_plot: bool = False
    path_plot_filename: str = 'sqw_path.png'
    powder_plot_filename: str = 'sqw_powder.png'
    title: str = "S(Q,w)"
    energy_limits: Optional[List[float]] = None
    cmap: str = 'PuBu_r'
    log_scale: bool = False


# --- Main Configuration ---
class SqwCalcConfig(BaseModel):
    crystal: CrystalConfig
    system: SystemConfig
    structure_factor: StructureFactorConfig = Field(default_factory=StructureFactorConfig)
    sampling: SamplingConfig
    queries: QueriesConfig = Field(default_factory=QueriesConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    plotting: PlottingConfig = Field(default_factory=PlottingConfig)
