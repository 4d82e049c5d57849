from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Optional

import pytest
import torch

from torch_deepcv.box import BoxSpec
from torch_deepcv.engines.interface import (
    EngineOutput,
    InferenceEngine,
    ScalarEngine,
    ScalarEngineOutput,
)
from torch_deepcv.units import HostUnits, UnitSystem


class FakeHost:
    """In-memory host engine recording every request made to it."""

    def __init__(
        self,
        positions: torch.Tensor,
        box: torch.Tensor | None = None,
        units: HostUnits = UnitSystem.gromacs,
        shift: torch.Tensor | None = None,
    ) -> None:
        self.positions = positions
        self.box = box if box is not None else torch.eye(3, dtype=positions.dtype) * 5.0
        self._units = units
        self.shift = shift
        self.make_whole_calls = 0
        self.requested: list[tuple[int, ...]] = []

    @property
    def n_atoms(self) -> int:
        return len(self.positions)

    @property
    def units(self) -> HostUnits:
        return self._units

    def get_positions(self, indices: Sequence[int]) -> torch.Tensor:
        self.requested.append(tuple(indices))
        return self.positions[list(indices)].clone()

    def get_box(self) -> torch.Tensor:
        return self.box.clone()

    def make_whole(self, positions: torch.Tensor) -> torch.Tensor:
        self.make_whole_calls += 1
        if self.shift is None:
            return positions
        return positions + self.shift


class StubEngine(InferenceEngine):
    """Engine returning buffers produced by ``fn(n_atoms)``, recording its inputs."""

    def __init__(
        self,
        output_dim: int,
        fn: Callable[[int], EngineOutput] | None = None,
        missing_files: bool = False,
    ) -> None:
        self._output_dim = output_dim
        self._fn = fn
        self._missing_files = missing_files
        self.loaded: Path | None = None
        self.calls: list[tuple[torch.Tensor, torch.Tensor, BoxSpec]] = []

    def init(self, model_file: str | Path) -> None:
        if self._missing_files:
            raise FileNotFoundError(f"Model file not found: {model_file}")
        self.loaded = Path(model_file)

    @property
    def output_dim(self) -> int:
        return self._output_dim

    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> EngineOutput:
        self.calls.append((coords.clone(), atom_types.clone(), box))
        n_atoms = coords.numel() // 3
        if self._fn is not None:
            return self._fn(n_atoms)
        dim = self._output_dim
        return EngineOutput(
            output=torch.zeros(dim, dtype=torch.float64),
            force=torch.zeros(dim * n_atoms * 3, dtype=torch.float64),
            virial=torch.zeros(dim * 9, dtype=torch.float64),
        )


class StubScalarEngine(ScalarEngine):
    """Scalar engine returning a fixed energy with zero gradients."""

    def __init__(self, energy: float = 10.0) -> None:
        self.energy = energy
        self.loaded: Path | None = None

    def init(self, model_file: str | Path) -> None:
        self.loaded = Path(model_file)

    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> ScalarEngineOutput:
        n_atoms = coords.numel() // 3
        return ScalarEngineOutput(
            output=self.energy,
            force=torch.zeros(n_atoms * 3, dtype=torch.float64),
            virial=torch.zeros(9, dtype=torch.float64),
        )


class LinearDipole(torch.nn.Module):
    """Point-charge dipole ``sum_i q_i r_i`` with one charge per atom type."""

    def __init__(self, charges: list[float]) -> None:
        super().__init__()
        self.output_dim = 3
        self.register_buffer("charges", torch.tensor(charges, dtype=torch.float64))

    def forward(
        self,
        positions: torch.Tensor,
        atom_types: torch.Tensor,
        cell: Optional[torch.Tensor] = None,  # noqa: UP007
    ) -> torch.Tensor:
        charges = self.charges[atom_types]
        return (charges.unsqueeze(-1) * positions).sum(0)


class HarmonicEnergy(torch.nn.Module):
    """Energy ``k / 2 * sum_i |r_i|^2`` returned as a single output channel."""

    def __init__(self, k: float = 1.0) -> None:
        super().__init__()
        self.output_dim = 1
        self.k = k

    def forward(
        self,
        positions: torch.Tensor,
        atom_types: torch.Tensor,
        cell: Optional[torch.Tensor] = None,  # noqa: UP007
    ) -> torch.Tensor:
        return (0.5 * self.k * (positions**2).sum()).reshape(1)


@pytest.fixture
def device() -> torch.device:
    return torch.device("cpu")


@pytest.fixture
def dtype() -> torch.dtype:
    return torch.float64


@pytest.fixture
def two_atom_host(dtype: torch.dtype) -> FakeHost:
    """Two atoms at fixed positions in a cubic box, GROMACS units."""
    positions = torch.tensor([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]], dtype=dtype)
    return FakeHost(positions)


@pytest.fixture
def water_host(dtype: torch.dtype) -> FakeHost:
    """Six atoms (two water molecules) at distinct positions, GROMACS units."""
    positions = torch.tensor(
        [
            [0.00, 0.00, 0.00],
            [0.08, 0.06, 0.00],
            [-0.08, 0.06, 0.00],
            [0.30, 0.30, 0.30],
            [0.38, 0.36, 0.30],
            [0.22, 0.36, 0.30],
        ],
        dtype=dtype,
    )
    box = torch.tensor([[1.2, 0.0, 0.0], [0.1, 1.3, 0.0], [0.2, 0.3, 1.4]], dtype=dtype)
    return FakeHost(positions, box=box)


@pytest.fixture
def type_file(tmp_path: Path) -> Callable[[Sequence[int]], Path]:
    """Write a type file with the given ids and return its path."""

    def _write(types: Sequence[int]) -> Path:
        path = tmp_path / "type.raw"
        path.write_text(" ".join(str(t) for t in types) + "\n")
        return path

    return _write
