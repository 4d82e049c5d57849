"""Dipole moment vector of a system from a deep tensor model."""

from torch_deepcv.engines.deepmd import DeepDipoleEngine
from torch_deepcv.models.adapter import ModelAdapter, ModelKind
from torch_deepcv.units import MODEL_DIPOLE_UNIT


DIPOLE = ModelKind(
    name="dipole",
    action="DEEPDIPOLE",
    components=("x", "y", "z"),
    default_unit=MODEL_DIPOLE_UNIT,
)


class DeepDipole(ModelAdapter):
    """Dipole observable with components x, y and z (3 channels)."""

    kind = DIPOLE
    engine_factory = DeepDipoleEngine
