"""Polarizability tensor of a system from a deep tensor model.

Channels are the tensor components in row-major order, ``xx, xy, ..., zz``.
"""

from itertools import product

from torch_deepcv.engines.deepmd import DeepPolarEngine
from torch_deepcv.models.adapter import ModelAdapter, ModelKind
from torch_deepcv.units import MODEL_POLAR_UNIT


POLARIZABILITY = ModelKind(
    name="polarizability",
    action="DEEPPOLAR",
    components=tuple(a + b for a, b in product("xyz", repeat=2)),
    default_unit=MODEL_POLAR_UNIT,
)


class DeepPolar(ModelAdapter):
    """Polarizability observable with components xx to zz (9 channels)."""

    kind = POLARIZABILITY
    engine_factory = DeepPolarEngine
