"""Periodicity of the simulation box as seen by an inference engine.

An aperiodic evaluation is a distinct contract from a periodic one with a zero
box, so the two cases are carried as separate types instead of being inferred
from buffer contents.
"""

from dataclasses import dataclass

import torch


@dataclass(frozen=True)
class Periodic:
    """Periodic box with row-vector cell ``box[i]`` of shape (3, 3)."""

    box: torch.Tensor

    def __post_init__(self) -> None:
        """Validate the box shape."""
        if tuple(self.box.shape) != (3, 3):
            raise ValueError(f"Box must have shape (3, 3), got {tuple(self.box.shape)}")

    @property
    def is_periodic(self) -> bool:
        """Always True."""
        return True

    def scaled(self, factor: float) -> "Periodic":
        """Box with every entry multiplied by ``factor``."""
        return Periodic(self.box * factor)

    def flat(self) -> torch.Tensor:
        """Row-major buffer of the 9 box entries."""
        return self.box.reshape(9)


@dataclass(frozen=True)
class Aperiodic:
    """No periodic boundary conditions."""

    @property
    def is_periodic(self) -> bool:
        """Always False."""
        return False

    def scaled(self, factor: float) -> "Aperiodic":  # noqa: ARG002
        """Scaling an aperiodic box is a no-op."""
        return self

    def flat(self) -> torch.Tensor:
        """Zero-length buffer, the conventional "no periodicity" signal."""
        return torch.empty(0)


BoxSpec = Periodic | Aperiodic
