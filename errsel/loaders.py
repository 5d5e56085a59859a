"""
Project loading and validation utilities.

An exported project is a directory holding project.yaml and the CSV tables
the modeling engine wrote: observations, individual predictions and
simulated (replicated) predictions. A loaded Project serves observation and
prediction series to the scoring runtime.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import yaml

from scoring.exceptions import InvalidInput
from scoring.series import ObservationSeries, PredictionSeries

from .schemas import PROJECT_SCHEMA, validate_against_schema

PROJECT_FILE = "project.yaml"
KEY_COLUMNS = ("id", "time")


@dataclass
class OutputSpec:
    """Definition of one observed output."""
    name: str
    prediction: str
    type: str = "continuous"
    error_model: Optional[str] = None
    distribution: str = "normal"
    limits: Optional[Tuple[float, float]] = None
    error_parameters: List[str] = field(default_factory=list)

    @property
    def is_continuous(self) -> bool:
        return self.type == "continuous"


@dataclass
class DataTable:
    """A numeric CSV table with named columns."""
    path: Path
    header: List[str]
    data: np.ndarray

    @property
    def nrows(self) -> int:
        return self.data.shape[0]

    def has_column(self, name: str) -> bool:
        return name in self.header

    def column(self, name: str) -> np.ndarray:
        if name not in self.header:
            raise KeyError(f"Column '{name}' not found in {self.path.name}")
        return self.data[:, self.header.index(name)]


@dataclass
class Project:
    """
    Loaded project with its data tables.

    Implements the prediction source interface used by
    scoring.select_error_models.
    """
    path: Path
    config: Dict[str, Any]
    outputs: List[OutputSpec] = field(default_factory=list)
    observations: Optional[DataTable] = None
    predictions: Optional[DataTable] = None
    simulated_predictions: Optional[DataTable] = None

    # Validation state
    validated: bool = False
    validation_errors: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.config.get("name", "unknown")

    @property
    def version(self) -> str:
        return self.config.get("version", "0.0.0")

    @property
    def population_parameters(self) -> Dict[str, float]:
        return {k: float(v) for k, v in self.config.get("population_parameters", {}).items()}

    @property
    def n_replicates(self) -> int:
        if self.simulated_predictions is None:
            return 0
        return int(np.max(self.simulated_predictions.column("rep")))

    def output(self, name: str) -> OutputSpec:
        for spec in self.outputs:
            if spec.name == name:
                return spec
        raise KeyError(f"Unknown output '{name}'")

    def continuous_outputs(self) -> List[str]:
        return [o.name for o in self.outputs if o.is_continuous]

    def fetch_observations(self, name: str) -> ObservationSeries:
        """Observed values of an output, missing entries dropped."""
        values = self.observations.column(name)
        return ObservationSeries(name=name, values=values[self._observed_mask(name)])

    def fetch_predictions(self, name: str) -> PredictionSeries:
        """Individual predictions of an output (one replicate)."""
        if self.predictions is None:
            raise FileNotFoundError(f"Project '{self.name}' has no individual predictions")
        spec = self.output(name)
        values = self.predictions.column(spec.prediction)
        return PredictionSeries(name=spec.prediction, values=values[self._observed_mask(name)])

    def fetch_simulated_predictions(self, name: str) -> PredictionSeries:
        """Simulated predictions of an output, replicate-major."""
        if self.simulated_predictions is None:
            raise FileNotFoundError(f"Project '{self.name}' has no simulated predictions")
        spec = self.output(name)
        mask = self._observed_mask(name)
        n_rep = self.n_replicates
        blocks = self.simulated_predictions.column(spec.prediction).reshape(n_rep, -1)
        return PredictionSeries(
            name=spec.prediction,
            values=blocks[:, mask].ravel(),
            n_replicates=n_rep
        )

    def _observed_mask(self, name: str) -> np.ndarray:
        return np.isfinite(self.observations.column(name))


def load(project_path: str, validate: bool = True) -> Project:
    """
    Load an exported project from a directory.

    Args:
        project_path: Path to the project directory
        validate: Whether to run validation checks

    Returns:
        Project object

    Raises:
        FileNotFoundError: If required files are missing
        ValueError: If validation fails
    """
    path = Path(project_path)

    if not path.exists():
        raise FileNotFoundError(f"Project directory not found: {project_path}")

    config_path = path / PROJECT_FILE
    if not config_path.exists():
        raise FileNotFoundError(f"Missing required file: {PROJECT_FILE} in {project_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    valid, schema_errors = validate_against_schema(config, PROJECT_SCHEMA)
    if not valid:
        raise ValueError("Project validation failed:\n" + "\n".join(
            f"{PROJECT_FILE}: {e}" for e in schema_errors
        ))

    project = Project(path=path, config=config)
    project.outputs = _parse_outputs(config.get("outputs", []))

    data_spec = config.get("data", {})
    project.observations = _load_table(path, data_spec["observations"])
    if data_spec.get("predictions"):
        project.predictions = _load_table(path, data_spec["predictions"])
    if data_spec.get("simulated_predictions"):
        project.simulated_predictions = _load_table(path, data_spec["simulated_predictions"])

    if validate:
        is_valid, errors = validate_project(project)
        project.validated = is_valid
        project.validation_errors = errors
        if not is_valid:
            raise ValueError("Project validation failed:\n" + "\n".join(errors))

    return project


def _parse_outputs(output_list: List[Dict]) -> List[OutputSpec]:
    """Parse output definitions from project.yaml."""
    outputs = []
    for o in output_list:
        limits = o.get("limits")
        outputs.append(OutputSpec(
            name=o["name"],
            prediction=o["prediction"],
            type=o.get("type", "continuous"),
            error_model=o.get("error_model"),
            distribution=o.get("distribution", "normal"),
            limits=(float(limits[0]), float(limits[1])) if limits else None,
            error_parameters=list(o.get("error_parameters", []))
        ))
    return outputs


def _load_table(project_path: Path, relative: str) -> DataTable:
    """Load a numeric CSV table; empty cells become NaN."""
    path = project_path / relative
    if not path.exists():
        raise FileNotFoundError(f"Missing data file: {relative}")

    with open(path, 'r') as f:
        header = [h.strip() for h in f.readline().strip().split(',')]

    data = np.genfromtxt(path, delimiter=',', skip_header=1, dtype=float)
    data = data.reshape(-1, len(header)) if data.size else np.empty((0, len(header)))

    return DataTable(path=path, header=header, data=data)


def validate_project(project: Project) -> Tuple[bool, List[str]]:
    """
    Validate a loaded project for completeness and consistency.

    Returns:
        (is_valid, list_of_errors)
    """
    errors = []
    obs = project.observations

    # 1. Observation table
    if obs.nrows == 0:
        errors.append("Observation table has no rows")
    for key in KEY_COLUMNS:
        if not obs.has_column(key):
            errors.append(f"Observation table missing column '{key}'")

    # 2. Outputs
    names = [o.name for o in project.outputs]
    duplicates = sorted(set(n for n in names if names.count(n) > 1))
    if duplicates:
        errors.append(f"Duplicate output names: {duplicates}")

    estimates = project.population_parameters
    for spec in project.outputs:
        if not obs.has_column(spec.name):
            errors.append(f"Output '{spec.name}' has no observation column")
        elif spec.is_continuous and not np.any(np.isfinite(obs.column(spec.name))):
            errors.append(f"Output '{spec.name}' has no observed values")
        for table in (project.predictions, project.simulated_predictions):
            if table is not None and not table.has_column(spec.prediction):
                errors.append(f"Prediction '{spec.prediction}' missing from {table.path.name}")
        if spec.distribution == "logitnormal" and spec.limits is None:
            errors.append(f"Output '{spec.name}' is logitnormal but has no limits")
        for pname in spec.error_parameters:
            if pname not in estimates:
                errors.append(f"Error parameter '{pname}' of '{spec.name}' not in population_parameters")

    if not project.continuous_outputs():
        errors.append("Project has no continuous outputs")

    # 3. Prediction tables line up with the observation rows
    if project.predictions is not None:
        errors.extend(_check_alignment(obs, project.predictions, n_rep=1))

    if project.simulated_predictions is not None:
        sim = project.simulated_predictions
        if not sim.has_column("rep"):
            errors.append(f"{sim.path.name} missing column 'rep'")
        else:
            try:
                n_rep = _replicate_blocks(sim.column("rep"), obs.nrows)
            except InvalidInput as e:
                errors.append(f"{sim.path.name}: {e}")
            else:
                errors.extend(_check_alignment(obs, sim, n_rep=n_rep))

    if project.predictions is None and project.simulated_predictions is None:
        errors.append("Project has neither predictions nor simulated_predictions")

    return len(errors) == 0, errors


def _replicate_blocks(rep: np.ndarray, n_rows: int) -> int:
    """Check that rep is 1..R in contiguous blocks of n_rows; return R."""
    if n_rows == 0 or rep.size == 0 or rep.size % n_rows != 0:
        raise InvalidInput(
            f"{rep.size} simulated rows are not a multiple of {n_rows} observation rows"
        )
    n_rep = rep.size // n_rows
    expected = np.repeat(np.arange(1, n_rep + 1), n_rows)
    if not np.array_equal(rep, expected):
        raise InvalidInput("rep column must hold replicates 1..R in contiguous blocks")
    return n_rep


def _check_alignment(obs: DataTable, table: DataTable, n_rep: int) -> List[str]:
    errors = []
    if table.nrows != obs.nrows * n_rep:
        return [f"{table.path.name} has {table.nrows} rows, expected {obs.nrows * n_rep}"]
    for key in KEY_COLUMNS:
        if not (table.has_column(key) and obs.has_column(key)):
            continue
        expected = np.tile(obs.column(key), n_rep)
        if not np.allclose(table.column(key), expected, equal_nan=True):
            errors.append(f"{table.path.name}: column '{key}' does not match the observation rows")
    return errors
