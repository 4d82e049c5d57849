"""Host engine backed by ASE.

:class:`AtomsHost` exposes an ``ase.Atoms`` object through the
:class:`~torch_deepcv.host.HostEngine` protocol so that deep-model observables can
be evaluated outside a full simulation engine, e.g. for post-processing
trajectories or driving ASE dynamics.

Notes:
    - Positions and cell are in Å, energies in eV (the "metal" unit system)
    - The cell is passed on in ASE's row-vector convention
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
import torch
from ase.geometry import find_mic

from torch_deepcv.units import HostUnits, UnitSystem


if TYPE_CHECKING:
    from ase import Atoms


class AtomsHost:
    """Reference host engine for an ``ase.Atoms`` object.

    Attributes:
        atoms (Atoms): The wrapped structure. Positions are read on every call,
            so updating the structure in place is reflected in the next
            evaluation.
        units (HostUnits): Unit system of the structure
    """

    def __init__(
        self,
        atoms: "Atoms",
        units: HostUnits = UnitSystem.metal,
        dtype: torch.dtype = torch.float64,
    ) -> None:
        """Wrap ``atoms``.

        Args:
            atoms (Atoms): Structure to expose
            units (HostUnits): Unit system of the structure. Defaults to metal
                units (Å, eV).
            dtype (torch.dtype): Data type of the returned tensors. Defaults to
                torch.float64.
        """
        self.atoms = atoms
        self._units = units
        self._dtype = dtype

    @property
    def n_atoms(self) -> int:
        """Number of atoms in the structure."""
        return len(self.atoms)

    @property
    def units(self) -> HostUnits:
        """Unit system of the structure."""
        return self._units

    def get_positions(self, indices: Sequence[int]) -> torch.Tensor:
        """Positions of the given atoms, shape (n, 3)."""
        positions = self.atoms.get_positions()[np.asarray(indices, dtype=int)]
        return torch.as_tensor(positions, dtype=self._dtype)

    def get_box(self) -> torch.Tensor:
        """Cell with one lattice vector per row, shape (3, 3)."""
        return torch.as_tensor(self.atoms.cell.array, dtype=self._dtype)

    def make_whole(self, positions: torch.Tensor) -> torch.Tensor:
        """Rebuild an ordered selection as one contiguous image.

        Each atom is placed at the minimum-image position relative to the
        previous atom of the selection, starting from the first atom.
        """
        if len(positions) < 2 or not self.atoms.pbc.any():
            return positions
        pos = positions.detach().cpu().numpy()
        steps, _ = find_mic(np.diff(pos, axis=0), self.atoms.cell, self.atoms.pbc)
        whole = np.vstack([pos[:1], pos[0] + np.cumsum(steps, axis=0)])
        return torch.as_tensor(whole, device=positions.device, dtype=positions.dtype)
