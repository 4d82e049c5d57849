"""Inference engine for PyTorch models.

Wraps a TorchScript file or a ``torch.nn.Module`` that maps a configuration to a
vector of ``output_dim`` scalars::

    forward(positions: Tensor[n, 3], atom_types: Tensor[n], cell: Tensor[3, 3] | None)
        -> Tensor[output_dim]

The per-channel forces and virials the adapters expect are obtained by automatic
differentiation with respect to the positions and to a strain applied to both
positions and cell.

Example::

    engine = TorchModelEngine("dipole.pt", dtype=torch.float64)
    result = engine.compute(coords, atom_types, Periodic(cell))
"""

from pathlib import Path

import torch

from torch_deepcv.box import BoxSpec
from torch_deepcv.engines.interface import EngineOutput, InferenceEngine
from torch_deepcv.index import IndexConverter


class TorchModelEngine(InferenceEngine):
    """Evaluates a PyTorch model and differentiates every output channel.

    Attributes:
        device (torch.device): Device the model runs on
        dtype (torch.dtype): Floating point type fed to the model
        output_dim (int): Number of output channels declared by the model
    """

    def __init__(
        self,
        model: str | Path | torch.nn.Module | None = None,
        *,
        device: torch.device | str | None = None,
        dtype: torch.dtype = torch.float64,
    ) -> None:
        """Initialize the engine, optionally loading a model right away.

        Args:
            model (str | Path | torch.nn.Module | None): TorchScript file or module.
                If None, :meth:`init` must be called before :meth:`compute`.
            device (torch.device | str | None): Device where the model will run.
                If None, uses "cpu".
            dtype (torch.dtype): Data type for model evaluation. Defaults to
                torch.float64.
        """
        self._device = torch.device(device or "cpu")
        self._dtype = dtype
        self._model: torch.nn.Module | None = None
        self._output_dim: int | None = None
        if isinstance(model, torch.nn.Module):
            self._set_model(model)
        elif model is not None:
            self.init(model)

    @property
    def device(self) -> torch.device:
        """The device of the model."""
        return self._device

    @property
    def dtype(self) -> torch.dtype:
        """The data type of the model."""
        return self._dtype

    def init(self, model_file: str | Path) -> None:
        """Load a TorchScript model from disk.

        Raises:
            FileNotFoundError: If ``model_file`` does not exist.
            ValueError: If the model does not declare an integer ``output_dim``.
        """
        path = Path(model_file)
        if not path.is_file():
            raise FileNotFoundError(f"Model file not found: {path}")
        self._set_model(torch.jit.load(str(path), map_location=self._device))

    def _set_model(self, model: torch.nn.Module) -> None:
        output_dim = getattr(model, "output_dim", None)
        if isinstance(output_dim, bool) or not isinstance(output_dim, int):
            raise ValueError(
                "Model must expose an integer `output_dim` attribute, "
                f"got {output_dim!r}"
            )
        if output_dim <= 0:
            raise ValueError(f"Model output_dim must be positive, got {output_dim}")
        model = model.to(device=self._device, dtype=self._dtype)
        model.eval()
        self._model = model
        self._output_dim = output_dim

    @property
    def output_dim(self) -> int:
        """Number of output channels.

        Raises:
            RuntimeError: If no model has been loaded.
        """
        if self._output_dim is None:
            raise RuntimeError("No model loaded, call init() first")
        return self._output_dim

    def compute(
        self, coords: torch.Tensor, atom_types: torch.Tensor, box: BoxSpec
    ) -> EngineOutput:
        """Evaluate the model and its gradients for every output channel.

        The virial block of channel k is ``W[a, b] = sum_i f_ia r_ib`` stored
        row-major, with ``f`` the channel's force. Hosts expecting
        ``sum_i r_ia f_ib`` must transpose it.
        """
        if self._model is None:
            raise RuntimeError("No model loaded, call init() first")

        positions = (
            coords.detach().to(self._device, self._dtype).reshape(-1, 3).clone()
        )
        positions.requires_grad_(True)
        strain = torch.eye(3, device=self._device, dtype=self._dtype, requires_grad=True)
        strained_positions = positions @ strain
        cell = None
        if box.is_periodic:
            cell = box.box.detach().to(self._device, self._dtype) @ strain
        types = torch.as_tensor(atom_types, device=self._device, dtype=torch.int64)

        output = self._model(strained_positions, types, cell).reshape(-1)
        if output.numel() != self._output_dim:
            raise ValueError(
                f"Model returned {output.numel()} outputs, expected {self._output_dim}"
            )

        forces, virials = [], []
        for k in range(self._output_dim):
            if not output.requires_grad:
                forces.append(torch.zeros_like(positions))
                virials.append(torch.zeros_like(strain))
                continue
            grad_pos, grad_strain = torch.autograd.grad(
                output[k],
                (positions, strain),
                retain_graph=k < self._output_dim - 1,
                allow_unused=True,
            )
            if grad_pos is None:
                grad_pos = torch.zeros_like(positions)
            if grad_strain is None:
                grad_strain = torch.zeros_like(strain)
            forces.append(-grad_pos)
            virials.append(-grad_strain.T)

        force_index = IndexConverter(self._output_dim, len(positions), 3)
        virial_index = IndexConverter(self._output_dim, 3, 3)
        return EngineOutput(
            output=output.detach(),
            force=force_index.scatter(torch.stack(forces)).detach(),
            virial=virial_index.scatter(torch.stack(virials)).detach(),
        )
