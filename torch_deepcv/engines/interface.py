"""Engine Interface: the contract between model adapters and inference engines.

An inference engine evaluates a trained model on one configuration. It receives
flat buffers and returns flat buffers, all laid out by
:class:`~torch_deepcv.index.IndexConverter`:

* ``coords``: shape ``[n_atoms * 3]``, model length units
* ``output``: shape ``[output_dim]``
* ``force``: shape ``[output_dim * n_atoms * 3]``, the negative gradient of each
  output channel with respect to the coordinates
* ``virial``: shape ``[output_dim * 9]``, one row-major 3x3 block per channel

Example::

    class MyEngine(InferenceEngine):
        def init(self, model_file):
            self._model = load(model_file)

        @property
        def output_dim(self):
            return 3

        def compute(self, coords, atom_types, box):
            return EngineOutput(output, force, virial)

Notes:
    Engines whose model returns a bare scalar (potential energy) implement
    :class:`ScalarEngine` instead and are lifted into the vector-output contract
    by :class:`LiftedScalarEngine`.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple

import torch

from torch_deepcv.box import Aperiodic, BoxSpec, Periodic


class EngineOutput(NamedTuple):
    """Flat result buffers of one engine evaluation."""

    output: torch.Tensor
    force: torch.Tensor
    virial: torch.Tensor


class ScalarEngineOutput(NamedTuple):
    """Result of an engine whose model returns a single scalar."""

    output: float
    force: torch.Tensor
    virial: torch.Tensor


class InferenceEngine(ABC):
    """Abstract base class for vector-output inference engines.

    An engine instance is owned by exactly one adapter for its whole lifetime and
    is never called concurrently.
    """

    @abstractmethod
    def init(self, model_file: str | Path) -> None:
        """Load the serialized model.

        Raises:
            FileNotFoundError: If the model file does not exist.
        """

    @property
    @abstractmethod
    def output_dim(self) -> int:
        """Number of output channels of the loaded model."""

    @abstractmethod
    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> EngineOutput:
        """Evaluate the model on one configuration.

        Args:
            coords (torch.Tensor): Flat coordinates, shape [n_atoms * 3]
            atom_types (torch.Tensor): Model type id of each atom, shape [n_atoms]
            box (BoxSpec): Periodic box in model length units, or Aperiodic

        Returns:
            EngineOutput: Flat output, force and virial buffers
        """


class ScalarEngine(ABC):
    """Abstract base class for engines returning a bare scalar output."""

    @abstractmethod
    def init(self, model_file: str | Path) -> None:
        """Load the serialized model."""

    @abstractmethod
    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> ScalarEngineOutput:
        """Evaluate the model, returning a float output and flat gradients."""


class LiftedScalarEngine(InferenceEngine):
    """Present a :class:`ScalarEngine` as a single-channel :class:`InferenceEngine`.

    The bare scalar output is wrapped into a 1-element vector so that adapters
    handle every model kind through the same vector-output path.
    """

    def __init__(self, engine: ScalarEngine) -> None:
        """Wrap ``engine``."""
        self._engine = engine

    @property
    def engine(self) -> ScalarEngine:
        """The wrapped scalar engine."""
        return self._engine

    def init(self, model_file: str | Path) -> None:
        """Load the model into the wrapped engine."""
        self._engine.init(model_file)

    @property
    def output_dim(self) -> int:
        """Always 1."""
        return 1

    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> EngineOutput:
        """Evaluate the wrapped engine and lift its scalar output."""
        output, force, virial = self._engine.compute(coords, atom_types, box)
        output = torch.as_tensor(output, dtype=force.dtype, device=force.device)
        return EngineOutput(output.reshape(1), force, virial)


def as_inference_engine(engine: InferenceEngine | ScalarEngine) -> InferenceEngine:
    """Lift scalar engines, pass vector engines through unchanged."""
    if isinstance(engine, ScalarEngine):
        return LiftedScalarEngine(engine)
    if isinstance(engine, InferenceEngine):
        return engine
    raise TypeError(
        f"Expected an InferenceEngine or ScalarEngine, got {type(engine).__name__}"
    )


def check_engine_output(result: EngineOutput, output_dim: int, n_atoms: int) -> None:
    """Check the flat buffer sizes of an engine result.

    Raises:
        ValueError: If any buffer does not have the size implied by
            ``output_dim`` and ``n_atoms``.
    """
    expected = {
        "output": output_dim,
        "force": output_dim * n_atoms * 3,
        "virial": output_dim * 9,
    }
    for name, size in expected.items():
        buffer = getattr(result, name)
        if buffer.numel() != size:
            raise ValueError(
                f"Engine returned a {name} buffer of {buffer.numel()} elements, "
                f"expected {size} (output_dim={output_dim}, n_atoms={n_atoms})"
            )


def validate_engine_outputs(
    engine: InferenceEngine,
    device: torch.device,
    dtype: torch.dtype,
    atom_types: torch.Tensor | None = None,
) -> None:
    """Validate an engine implementation against the interface requirements.

    Evaluates a small synthetic configuration with and without a periodic box
    and checks buffer sizes, that inputs are not mutated and that repeated calls
    are deterministic.

    Args:
        engine (InferenceEngine): Engine with a loaded model
        device (torch.device): Device for the synthetic buffers
        dtype (torch.dtype): Floating point type for the synthetic buffers
        atom_types (torch.Tensor | None): Type ids to evaluate. Defaults to four
            atoms of type 0.

    Raises:
        AssertionError: If the engine does not conform to the interface.
    """
    if atom_types is None:
        atom_types = torch.zeros(4, dtype=torch.int64, device=device)
    n_atoms = len(atom_types)
    output_dim = engine.output_dim
    assert isinstance(output_dim, int)
    assert output_dim > 0

    generator = torch.Generator().manual_seed(0)
    coords = (torch.rand(n_atoms * 3, generator=generator, dtype=dtype) * 4.0).to(
        device
    )
    box = Periodic(torch.eye(3, device=device, dtype=dtype) * 10.0)
    og_coords = coords.clone()
    og_types = atom_types.clone()

    for spec in (box, Aperiodic()):
        first = engine.compute(coords, atom_types, spec)
        check_engine_output(first, output_dim, n_atoms)

        # assert engine did not mutate the input
        assert torch.equal(og_coords, coords)
        assert torch.equal(og_types, atom_types)

        second = engine.compute(coords, atom_types, spec)
        for a, b in zip(first, second, strict=True):
            assert torch.allclose(a, b)
