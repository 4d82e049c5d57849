"""Types used across torch-deepcv."""

from collections.abc import Sequence
from typing import Literal

import numpy as np
import torch


ModelKindName = Literal["potential", "dipole", "polarizability"]
ActionName = Literal["DEEPPOTENTIAL", "DEEPDIPOLE", "DEEPPOLAR"]
AtomIndices = Sequence[int] | np.ndarray | torch.Tensor
AtomTypes = Sequence[int] | np.ndarray | torch.Tensor
