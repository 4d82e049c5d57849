"""Deep model observables for torch-deepcv."""

from torch_deepcv.config import ConfigurationError, parse_action
from torch_deepcv.engines.interface import InferenceEngine, ScalarEngine
from torch_deepcv.host import HostEngine
from torch_deepcv.models.adapter import ModelAdapter, ModelKind
from torch_deepcv.models.deep_dipole import DIPOLE, DeepDipole
from torch_deepcv.models.deep_polar import POLARIZABILITY, DeepPolar
from torch_deepcv.models.deep_potential import POTENTIAL, DeepPotential


ACTIONS: dict[str, type[ModelAdapter]] = {
    cls.kind.action: cls for cls in (DeepPotential, DeepDipole, DeepPolar)
}


def build_from_action(
    line: str,
    host: HostEngine,
    engine: InferenceEngine | ScalarEngine | None = None,
    **kwargs,
) -> ModelAdapter:
    """Build an observable from an action line such as
    ``dip: DEEPDIPOLE MODEL=dipole.pb ATYPE=type.raw``.

    Args:
        line (str): Action line
        host (HostEngine): Host engine
        engine (InferenceEngine | ScalarEngine | None): Engine to load the model
            into. Defaults to the engine of the action's model kind.
        **kwargs: Forwarded to :meth:`ModelAdapter.from_config`

    Raises:
        ConfigurationError: If the action is unknown or its setup fails.
    """
    label, name, config = parse_action(line)
    try:
        cls = ACTIONS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown action {name}, expected one of {', '.join(ACTIONS)}"
        ) from None
    kwargs.setdefault("label", label)
    return cls.from_config(config, host, engine, **kwargs)


__all__ = [
    "ACTIONS",
    "DIPOLE",
    "POLARIZABILITY",
    "POTENTIAL",
    "DeepDipole",
    "DeepPolar",
    "DeepPotential",
    "ModelAdapter",
    "ModelKind",
    "build_from_action",
]
