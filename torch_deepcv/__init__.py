"""torch-deepcv package base module."""

# ruff: noqa: F401

from torch_deepcv import box, config, engines, host, index, io, models, units
from torch_deepcv.box import Aperiodic, Periodic
from torch_deepcv.config import (
    ConfigurationError,
    DeepCVConfig,
    load_atom_types,
    parse_action,
)
from torch_deepcv.engines import InferenceEngine, ScalarEngine, TorchModelEngine
from torch_deepcv.host import ChannelOutput, HostEngine
from torch_deepcv.index import IndexConverter
from torch_deepcv.io import AtomsHost
from torch_deepcv.models import (
    DeepDipole,
    DeepPolar,
    DeepPotential,
    ModelAdapter,
    build_from_action,
)
from torch_deepcv.units import HostUnits, UnitConversion, UnitSystem


__version__ = "0.1.0"
