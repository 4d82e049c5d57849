"""Inference engines for torch-deepcv."""

# ruff: noqa: F401

from torch_deepcv.engines.deepmd import DeepDipoleEngine, DeepPolarEngine, DeepPotEngine
from torch_deepcv.engines.interface import (
    EngineOutput,
    InferenceEngine,
    LiftedScalarEngine,
    ScalarEngine,
    ScalarEngineOutput,
    as_inference_engine,
    validate_engine_outputs,
)
from torch_deepcv.engines.torch_module import TorchModelEngine
