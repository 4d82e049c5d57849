"""Generic adapter exposing a deep model as per-step observables of a host engine.

The adapter is parameterized by a :class:`ModelKind` (number of output channels,
their names and the default output unit) and owns one inference engine. On every
call to :meth:`ModelAdapter.calculate` it:

1. gathers the positions of the selected atoms, made whole across periodic images
   unless periodic handling is disabled,
2. converts them into model length units and packs them into a flat buffer,
3. evaluates the engine with the atom types and the (optional) periodic box,
4. converts output, per-atom derivatives and virials back into host units,
5. returns all channels at once as :class:`~torch_deepcv.host.ChannelOutput`.

Example::

    host = AtomsHost(atoms)
    dipole = DeepDipole.from_config(
        DeepCVConfig(model="dipole.pb", atype="type.raw"), host, label="dip"
    )
    channels = dipole.calculate()
    channels["x"].value, channels["x"].derivatives, channels["x"].box_derivatives

Notes:
    Every flat buffer is addressed through :class:`~torch_deepcv.index.IndexConverter`.
    The engine's virial blocks are transposed before being exposed as box
    derivatives.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import ClassVar

import numpy as np
import torch

from torch_deepcv.box import Aperiodic, BoxSpec, Periodic
from torch_deepcv.config import ConfigurationError, DeepCVConfig, load_atom_types
from torch_deepcv.engines.interface import (
    InferenceEngine,
    ScalarEngine,
    as_inference_engine,
    check_engine_output,
)
from torch_deepcv.host import ChannelOutput, HostEngine
from torch_deepcv.index import IndexConverter
from torch_deepcv.typing import ActionName, AtomIndices, AtomTypes, ModelKindName
from torch_deepcv.units import HostUnits, UnitConversion


@dataclass(frozen=True)
class ModelKind:
    """Static description of one kind of deep model observable.

    Attributes:
        name (ModelKindName): Kind identifier
        action (ActionName): Action name used in host input files
        components (tuple[str, ...]): Channel names, one per output channel
        default_unit (float): Default output conversion, in the host reference
            unit system
        energy_like (bool): Whether the default unit is an energy that must be
            expressed in the host's current energy unit
    """

    name: ModelKindName
    action: ActionName
    components: tuple[str, ...]
    default_unit: float
    energy_like: bool = False

    @property
    def odim(self) -> int:
        """Number of output channels."""
        return len(self.components)

    def default_output_unit(self, host_units: HostUnits) -> float:
        """Default host-output per model-output conversion."""
        if self.energy_like:
            return self.default_unit / host_units.energy
        return self.default_unit


class ModelAdapter:
    """Deep model evaluated as a set of scalar observables with derivatives.

    Subclasses only set :attr:`kind` and :attr:`engine_factory`. An adapter is
    fully configured once constructed; construction either succeeds or raises
    :class:`~torch_deepcv.config.ConfigurationError`.

    Attributes:
        host (HostEngine): Host engine providing positions and box
        engine (InferenceEngine): Engine owned by this adapter
        atoms (tuple[int, ...]): Indices of the selected atoms
        atom_types (torch.Tensor): Model type id of each selected atom
        units (UnitConversion): Resolved unit conversion
        pbc (bool): Whether positions are made whole and the box is passed on
        label (str | None): Label used to build host component names
    """

    kind: ClassVar[ModelKind]
    engine_factory: ClassVar[Callable[..., InferenceEngine | ScalarEngine] | None] = (
        None
    )

    def __init__(
        self,
        host: HostEngine,
        engine: InferenceEngine | ScalarEngine,
        atom_types: AtomTypes,
        atoms: AtomIndices | None = None,
        *,
        units: UnitConversion | None = None,
        output_unit: float | None = None,
        virial_unit: float | None = None,
        pbc: bool = True,
        label: str | None = None,
        device: torch.device | str | None = None,
        dtype: torch.dtype = torch.float64,
    ) -> None:
        """Set up the adapter.

        Args:
            host (HostEngine): Host engine
            engine (InferenceEngine | ScalarEngine): Engine with a loaded model.
                Scalar engines are lifted to a single output channel.
            atom_types (AtomTypes): Model type id of each selected atom, in
                selection order
            atoms (AtomIndices | None): Indices of the selected atoms. None or
                empty selects every atom of the host, in index order.
            units (UnitConversion | None): Pre-resolved unit conversion. If None it
                is resolved from the host's units and the overrides below.
            output_unit (float | None): Output unit override, None or negative
                for the model-kind default. Not allowed together with ``units``.
            virial_unit (float | None): Box-derivative scale override, None or
                negative to reuse the output unit. Not allowed with ``units``.
            pbc (bool): Make molecules whole and pass the periodic box. Defaults
                to True.
            label (str | None): Label used for host component names
            device (torch.device | str | None): Device for all buffers. Defaults
                to "cpu".
            dtype (torch.dtype): Floating point type for all buffers. Defaults to
                torch.float64.

        Raises:
            ConfigurationError: If the atom selection is out of range, the number
                of atom types differs from the number of selected atoms, or the
                engine's output dimension does not match the model kind.
        """
        self._device = torch.device(device or "cpu")
        self._dtype = dtype
        self.host = host
        self.label = label
        self.pbc = pbc

        if units is None:
            units = UnitConversion.resolve(
                self.kind, host.units, output_unit=output_unit, virial_unit=virial_unit
            )
        elif output_unit is not None or virial_unit is not None:
            raise ConfigurationError(
                "Pass either a resolved UnitConversion or unit overrides, not both"
            )
        self.units = units

        self.atoms = self._resolve_atoms(atoms)
        self.atom_types = self._resolve_atom_types(atom_types)

        self.engine = as_inference_engine(engine)
        if self.engine.output_dim != self.kind.odim:
            raise ConfigurationError(
                f"Invalid model for {self.kind.action}: the output dimension should "
                f"be {self.kind.odim}, got {self.engine.output_dim}"
            )

        n_atoms = len(self.atoms)
        self._coord_index = IndexConverter.for_atoms(n_atoms, 3)
        self._force_index = IndexConverter(self.kind.odim, n_atoms, 3)
        self._virial_index = IndexConverter(self.kind.odim, 3, 3)

        logging.info(  # noqa: LOG015
            "  using %s boundary conditions", "periodic" if self.pbc else "no periodic"
        )
        logging.info(  # noqa: LOG015
            "  output unit conversion set to %f (length unit %f, virial unit %f)",
            self.units.output_unit,
            self.units.length_unit,
            self.units.virial_unit,
        )

    @classmethod
    def from_config(
        cls,
        config: DeepCVConfig,
        host: HostEngine,
        engine: InferenceEngine | ScalarEngine | None = None,
        **kwargs,
    ) -> "ModelAdapter":
        """Build an adapter from a configuration.

        Loads the atom type file, builds the default engine of this model kind
        when none is given, and loads the model file into the engine.

        Args:
            config (DeepCVConfig): Setup options
            host (HostEngine): Host engine
            engine (InferenceEngine | ScalarEngine | None): Engine to load the model
                into. Defaults to the engine of this model kind.
            **kwargs: Forwarded to the constructor (``label``, ``device``,
                ``dtype``)

        Raises:
            ConfigurationError: If the type file cannot be read, the model file is
                missing or cannot be loaded by the engine, or any of the
                constructor checks fails.
        """
        atom_types = load_atom_types(config.atype)
        if engine is None:
            if cls.engine_factory is None:
                raise ConfigurationError(f"No default engine for {cls.kind.action}")
            engine = cls.engine_factory(dtype=kwargs.get("dtype", torch.float64))
        logging.info("  using graph file:  %s", config.model)  # noqa: LOG015
        try:
            engine.init(config.model)
        except (OSError, RuntimeError, ValueError) as exc:
            raise ConfigurationError(
                f"Cannot load model file {config.model}: {exc}"
            ) from exc
        logging.info(  # noqa: LOG015
            "  %s model initialized successfully", cls.kind.action
        )
        return cls(
            host,
            engine,
            atom_types,
            config.atoms or None,
            output_unit=config.unit_cvt,
            virial_unit=config.virial_cvt,
            pbc=not config.nopbc,
            **kwargs,
        )

    def _resolve_atoms(self, atoms: AtomIndices | None) -> tuple[int, ...]:
        n_system = self.host.n_atoms
        if n_system <= 0:
            raise ConfigurationError("The host system contains no atoms")
        if atoms is None or len(atoms) == 0:
            logging.info("  of all %d atoms in the system", n_system)  # noqa: LOG015
            return tuple(range(n_system))

        resolved = tuple(int(i) for i in np.asarray(atoms).reshape(-1))
        if len(set(resolved)) != len(resolved):
            raise ConfigurationError(f"Atom selection contains duplicates: {resolved}")
        out_of_range = [i for i in resolved if not 0 <= i < n_system]
        if out_of_range:
            raise ConfigurationError(
                f"Selected atoms {out_of_range} are outside the system of "
                f"{n_system} atoms"
            )
        logging.info("  of %d atoms", len(resolved))  # noqa: LOG015
        if len(resolved) != n_system:
            logging.warning(  # noqa: LOG015
                "  # of atoms provided: %d != # of atoms in the system: %d",
                len(resolved),
                n_system,
            )
        return resolved

    def _resolve_atom_types(self, atom_types: AtomTypes) -> torch.Tensor:
        types = torch.as_tensor(np.asarray(atom_types), dtype=torch.int64).reshape(-1)
        if len(types) != len(self.atoms):
            raise ConfigurationError(
                "Invalid atom type file! The number of types "
                f"({len(types)}) should be equal to the number of atoms "
                f"({len(self.atoms)})"
            )
        logging.info(  # noqa: LOG015
            "  assign type to atoms: %s", " ".join(map(str, types.tolist()))
        )
        return types.to(self._device)

    @property
    def device(self) -> torch.device:
        """The device of all buffers."""
        return self._device

    @property
    def dtype(self) -> torch.dtype:
        """The floating point type of all buffers."""
        return self._dtype

    @property
    def n_atoms(self) -> int:
        """Number of selected atoms."""
        return len(self.atoms)

    @property
    def components(self) -> tuple[str, ...]:
        """Channel names in output order."""
        return self.kind.components

    @property
    def labels(self) -> tuple[str, ...]:
        """Host registration names of the channels.

        Channels are registered as ``label.component``, the single channel of a
        scalar model under the bare label.
        """
        label = self.label or self.kind.action.lower()
        if self.kind.odim == 1:
            return (label,)
        return tuple(f"{label}.{c}" for c in self.components)

    def _box(self) -> BoxSpec:
        if not self.pbc:
            return Aperiodic()
        box = torch.as_tensor(self.host.get_box(), device=self._device, dtype=self._dtype)
        return Periodic(self.units.to_model_length(box))

    def calculate(self) -> dict[str, ChannelOutput]:
        """Evaluate the model on the host's current configuration.

        Returns:
            dict[str, ChannelOutput]: One entry per channel, keyed by component
                name, in output order. All channels are computed before any is
                returned.

        Raises:
            ValueError: If the engine returns buffers of the wrong size.
        """
        positions = torch.as_tensor(
            self.host.get_positions(self.atoms), device=self._device, dtype=self._dtype
        )
        if self.pbc:
            positions = torch.as_tensor(
                self.host.make_whole(positions), device=self._device, dtype=self._dtype
            )
        coords = self._coord_index.scatter(self.units.to_model_length(positions))

        result = self.engine.compute(coords, self.atom_types, self._box())
        check_engine_output(result, self.kind.odim, self.n_atoms)

        output_unit = self.units.output_unit
        output = result.output.to(self._device, self._dtype).reshape(-1) * output_unit
        # engine forces are negative gradients, the host expects derivatives
        derivatives = (
            -self._force_index.gather(
                result.force.to(self._device, self._dtype).reshape(-1)
            )
            * output_unit
            / self.units.length_unit
        )
        box_derivatives = (
            self._virial_index.gather(
                result.virial.to(self._device, self._dtype).reshape(-1)
            ).transpose(-1, -2)
            * self.units.virial_unit
        )

        return {
            name: ChannelOutput(
                name=name,
                value=float(output[k]),
                derivatives=derivatives[k],
                box_derivatives=box_derivatives[k],
            )
            for k, name in enumerate(self.components)
        }

    def biasing_forces(
        self,
        channels: Mapping[str, ChannelOutput],
        weights: Mapping[str, float] | Sequence[float] | None = None,
    ) -> torch.Tensor:
        """Forces on the selected atoms from a linear bias on the observables.

        For a bias ``V = sum_k w_k * s_k`` the forces are
        ``-sum_k w_k * ds_k/dr``.

        Args:
            channels (Mapping[str, ChannelOutput]): Result of :meth:`calculate`
            weights (Mapping[str, float] | Sequence[float] | None): Weight of each
                channel, by name or in output order. Defaults to 1 for every
                channel.

        Returns:
            torch.Tensor: Forces with shape (n_atoms, 3)

        Raises:
            ValueError: If a sequence of weights has the wrong length or a mapping
                names a channel this model does not have.
        """
        if weights is None:
            weights = [1.0] * self.kind.odim
        if not isinstance(weights, Mapping):
            if len(weights) != self.kind.odim:
                raise ValueError(
                    f"Expected {self.kind.odim} weights, got {len(weights)}"
                )
            weights = dict(zip(self.components, weights, strict=True))
        unknown = sorted(set(weights) - set(self.components))
        if unknown:
            raise ValueError(
                f"Unknown channels {unknown}, expected a subset of {self.components}"
            )
        forces = torch.zeros(self.n_atoms, 3, device=self._device, dtype=self._dtype)
        for name, weight in weights.items():
            forces -= weight * channels[name].derivatives
        return forces
