"""Interface between a deep-model observable and the host simulation engine.

The host owns positions, the periodic box and the periodic reconstruction of
molecules. It consumes one :class:`ChannelOutput` per scalar output channel after
every evaluation.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import torch

from torch_deepcv.units import HostUnits


@runtime_checkable
class HostEngine(Protocol):
    """What a deep-model observable needs from the host engine.

    Attributes:
        n_atoms (int): Number of atoms in the whole system
        units (HostUnits): The host's current unit system
    """

    @property
    def n_atoms(self) -> int:
        """Number of atoms in the whole system."""
        ...

    @property
    def units(self) -> HostUnits:
        """The host's current unit system."""
        ...

    def get_positions(self, indices: Sequence[int]) -> torch.Tensor:
        """Positions of the given atoms in host length units, shape (n, 3)."""
        ...

    def get_box(self) -> torch.Tensor:
        """Current box in host length units, row vectors, shape (3, 3)."""
        ...

    def make_whole(self, positions: torch.Tensor) -> torch.Tensor:
        """Rebuild an ordered atom selection as one contiguous periodic image."""
        ...


@dataclass(frozen=True)
class ChannelOutput:
    """One scalar observable produced by an evaluation.

    Attributes:
        name (str): Component name used for host registration, e.g. "x" or "xy"
        value (float): Observable value in host units
        derivatives (torch.Tensor): Derivatives with respect to the positions of
            the selected atoms, shape (n_atoms, 3)
        box_derivatives (torch.Tensor): Box derivative (virial) of the observable,
            shape (3, 3)
    """

    name: str
    value: float
    derivatives: torch.Tensor
    box_derivatives: torch.Tensor
