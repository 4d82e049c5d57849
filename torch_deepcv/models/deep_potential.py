"""Potential energy of a system from a deep potential model.

The model returns a bare energy, which is lifted into a single output channel.
Its output defaults to the model's eV expressed in the host's energy unit.

Example::

    config = DeepCVConfig(model="graph.pb", atype="type.raw", unit_cvt=96.487)
    dp = DeepPotential.from_config(config, host, label="dp")
    energy = dp.calculate()["energy"].value
"""

from torch_deepcv.engines.deepmd import DeepPotEngine
from torch_deepcv.models.adapter import ModelAdapter, ModelKind
from torch_deepcv.units import MODEL_ENERGY_UNIT


POTENTIAL = ModelKind(
    name="potential",
    action="DEEPPOTENTIAL",
    components=("energy",),
    default_unit=MODEL_ENERGY_UNIT,
    energy_like=True,
)


class DeepPotential(ModelAdapter):
    """Potential energy observable (1 channel)."""

    kind = POTENTIAL
    engine_factory = DeepPotEngine
