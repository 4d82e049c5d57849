"""Inference engines backed by deepmd-kit frozen models.

* :class:`DeepPotEngine` evaluates a deep potential. Its model returns a bare
  energy, so it is a :class:`~torch_deepcv.engines.interface.ScalarEngine`.
* :class:`DeepDipoleEngine` and :class:`DeepPolarEngine` evaluate global deep
  tensor models with 3 and 9 output channels.

Aperiodic evaluations are signalled to deepmd-kit with ``cells=None``.

Notes:
    This module depends on the deepmd-kit package.
"""

from pathlib import Path

import numpy as np
import torch

from torch_deepcv.box import BoxSpec
from torch_deepcv.engines.interface import (
    EngineOutput,
    InferenceEngine,
    ScalarEngine,
    ScalarEngineOutput,
)


try:
    from deepmd.infer import DeepDipole, DeepPolar, DeepPot

except ImportError:

    class DeepPotEngine:
        """deepmd-kit potential engine.

        This class is a placeholder for the DeepPotEngine class.
        It raises an ImportError if deepmd-kit is not installed.
        """

        def __init__(self, *args, **kwargs) -> None:  # noqa: ARG002
            """Dummy constructor."""
            raise ImportError("deepmd-kit must be installed to use DeepPotEngine.")

    class _DeepTensorEngine:
        """deepmd-kit tensor engine.

        This class is a placeholder for the deep tensor engines.
        It raises an ImportError if deepmd-kit is not installed.
        """

        def __init__(self, *args, **kwargs) -> None:  # noqa: ARG002
            """Dummy constructor."""
            raise ImportError(
                f"deepmd-kit must be installed to use {type(self).__name__}."
            )

    class DeepDipoleEngine(_DeepTensorEngine):
        """deepmd-kit dipole engine placeholder."""

    class DeepPolarEngine(_DeepTensorEngine):
        """deepmd-kit polarizability engine placeholder."""

else:

    def _to_numpy_inputs(
        coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> tuple[np.ndarray, np.ndarray | None, np.ndarray]:
        coord = coords.detach().cpu().numpy().reshape(1, -1)
        cells = None
        if box.is_periodic:
            cells = box.flat().detach().cpu().numpy().reshape(1, 9)
        types = np.asarray(torch.as_tensor(atom_types).cpu(), dtype=np.int32)
        return coord, cells, types

    def _check_model_file(model_file: str | Path) -> str:
        path = Path(model_file)
        if not path.is_file():
            raise FileNotFoundError(f"Model file not found: {path}")
        return str(path)

    class DeepPotEngine(ScalarEngine):
        """Evaluates a deepmd-kit deep potential.

        Attributes:
            dtype (torch.dtype): Floating point type of the returned buffers
        """

        def __init__(
            self, model: str | Path | None = None, dtype: torch.dtype = torch.float64
        ) -> None:
            """Initialize the engine, optionally loading ``model`` right away."""
            self._dtype = dtype
            self._dp = None
            if model is not None:
                self.init(model)

        def init(self, model_file: str | Path) -> None:
            """Load a frozen deep potential model."""
            self._dp = DeepPot(_check_model_file(model_file))

        def compute(
            self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
        ) -> ScalarEngineOutput:
            """Evaluate energy, force and virial of one frame."""
            if self._dp is None:
                raise RuntimeError("No model loaded, call init() first")
            coord, cells, types = _to_numpy_inputs(coords, atom_types, box)
            energy, force, virial = self._dp.eval(coord, cells, types, atomic=False)
            return ScalarEngineOutput(
                output=float(np.asarray(energy).reshape(-1)[0]),
                force=torch.as_tensor(np.asarray(force).reshape(-1), dtype=self._dtype),
                virial=torch.as_tensor(
                    np.asarray(virial).reshape(-1), dtype=self._dtype
                ),
            )

    class _DeepTensorEngine(InferenceEngine):
        """Shared implementation of the global deep tensor engines."""

        model_class: type

        def __init__(
            self, model: str | Path | None = None, dtype: torch.dtype = torch.float64
        ) -> None:
            """Initialize the engine, optionally loading ``model`` right away."""
            self._dtype = dtype
            self._dt = None
            if model is not None:
                self.init(model)

        def init(self, model_file: str | Path) -> None:
            """Load a frozen deep tensor model."""
            self._dt = self.model_class(_check_model_file(model_file))

        @property
        def output_dim(self) -> int:
            """Number of output channels reported by the model."""
            if self._dt is None:
                raise RuntimeError("No model loaded, call init() first")
            return int(self._dt.output_dim)

        def compute(
            self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
        ) -> EngineOutput:
            """Evaluate the global tensor and its per-channel force and virial."""
            if self._dt is None:
                raise RuntimeError("No model loaded, call init() first")
            coord, cells, types = _to_numpy_inputs(coords, atom_types, box)
            tensor, force, virial = self._dt.eval_full(coord, cells, types, atomic=False)
            return EngineOutput(
                *(
                    torch.as_tensor(np.asarray(buf).reshape(-1), dtype=self._dtype)
                    for buf in (tensor, force, virial)
                )
            )

    class DeepDipoleEngine(_DeepTensorEngine):
        """Evaluates a deepmd-kit global dipole model (3 channels)."""

        model_class = DeepDipole

    class DeepPolarEngine(_DeepTensorEngine):
        """Evaluates a deepmd-kit global polarizability model (9 channels)."""

        model_class = DeepPolar
