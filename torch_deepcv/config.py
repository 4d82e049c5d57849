"""Configuration of a deep-model observable.

Options follow the host's action-line syntax::

    dp: DEEPPOTENTIAL MODEL=graph.pb ATYPE=type.raw UNIT_CVT=96.487
    dipole: DEEPDIPOLE ATOMS=1-192 MODEL=dipole.pb ATYPE=type.raw NOPBC

Recognized keywords are ``ATOMS``, ``MODEL``, ``ATYPE``, ``UNIT_CVT``,
``VIRIAL_CVT`` and the ``NOPBC`` flag. Atom serials in ``ATOMS`` are 1-based
and are stored as 0-based indices.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np


class ConfigurationError(ValueError):
    """Raised when an observable cannot be set up from its configuration."""


@dataclass(frozen=True)
class DeepCVConfig:
    """Setup options of a deep-model observable.

    Attributes:
        atoms (tuple[int, ...]): 0-based indices of the selected atoms, in the
            order they are fed to the model. Empty selects every atom.
        model (Path): Serialized inference-engine model
        atype (Path): Whitespace separated model type ids, one per selected atom
        unit_cvt (float | None): Output unit override. None or negative selects
            the model-kind default.
        virial_cvt (float | None): Box-derivative scale override. None or
            negative reuses the resolved output unit.
        nopbc (bool): Disable periodic reconstruction and send no box
    """

    atoms: tuple[int, ...] = ()
    model: Path = Path("graph.pb")
    atype: Path = Path("type.raw")
    unit_cvt: float | None = None
    virial_cvt: float | None = None
    nopbc: bool = False

    def __post_init__(self) -> None:
        """Normalize paths and validate atom indices."""
        object.__setattr__(self, "atoms", tuple(int(i) for i in self.atoms))
        object.__setattr__(self, "model", Path(self.model))
        object.__setattr__(self, "atype", Path(self.atype))
        if any(i < 0 for i in self.atoms):
            raise ConfigurationError(f"Atom indices must be non-negative: {self.atoms}")
        if len(set(self.atoms)) != len(self.atoms):
            raise ConfigurationError(f"Atom indices must be unique: {self.atoms}")


@dataclass
class ActionLine:
    """A parsed action line before its keywords are interpreted."""

    label: str | None
    name: str
    keywords: dict[str, str] = field(default_factory=dict)
    flags: set[str] = field(default_factory=set)


_KEYWORDS = frozenset({"ATOMS", "MODEL", "ATYPE", "UNIT_CVT", "VIRIAL_CVT"})
_FLAGS = frozenset({"NOPBC"})


def parse_atom_list(spec: str) -> tuple[int, ...]:
    """Parse a 1-based atom serial list into 0-based indices.

    Items are separated by commas and may be single serials (``7``), inclusive
    ranges (``1-10``) or strided ranges (``1-10:3``).

    Raises:
        ConfigurationError: On malformed items or non-positive serials.
    """
    indices: list[int] = []
    for item in filter(None, (part.strip() for part in spec.split(","))):
        try:
            if "-" in item:
                bounds, _, stride = item.partition(":")
                start, end = (int(b) for b in bounds.split("-"))
                step = int(stride) if stride else 1
                if step <= 0 or end < start:
                    raise ValueError
                serials = range(start, end + 1, step)
            else:
                serials = [int(item)]
        except ValueError:
            raise ConfigurationError(f"Invalid atom list item {item!r}") from None
        for serial in serials:
            if serial <= 0:
                raise ConfigurationError(f"Atom serials start at 1, got {serial}")
            indices.append(serial - 1)
    return tuple(indices)


def split_action(line: str) -> ActionLine:
    """Tokenize an action line into label, action name, keywords and flags.

    Comments starting with ``#`` are stripped. The label may be given either as
    a ``label:`` prefix or as a ``LABEL=`` keyword.

    Raises:
        ConfigurationError: If the line is empty or a keyword is repeated.
    """
    tokens = shlex.split(line.split("#", 1)[0])
    label = None
    if tokens and tokens[0].endswith(":"):
        label = tokens.pop(0)[:-1]
    if not tokens:
        raise ConfigurationError(f"No action found in line {line!r}")
    action = ActionLine(label=label, name=tokens[0].upper())
    for token in tokens[1:]:
        key, sep, value = token.partition("=")
        key = key.upper()
        if not sep:
            action.flags.add(key)
            continue
        if key == "LABEL":
            if action.label is not None:
                raise ConfigurationError(f"Label given twice in line {line!r}")
            action.label = value
            continue
        if key in action.keywords:
            raise ConfigurationError(f"Keyword {key} given twice in line {line!r}")
        action.keywords[key] = value
    return action


def config_from_action(action: ActionLine) -> DeepCVConfig:
    """Interpret the keywords of a parsed action line.

    Raises:
        ConfigurationError: On unknown keywords or flags, or unparsable values.
    """
    unknown = (set(action.keywords) - _KEYWORDS) | (action.flags - _FLAGS)
    if unknown:
        raise ConfigurationError(
            f"Unknown keywords for {action.name}: {', '.join(sorted(unknown))}"
        )
    kwargs: dict[str, object] = {"nopbc": "NOPBC" in action.flags}
    if "ATOMS" in action.keywords:
        kwargs["atoms"] = parse_atom_list(action.keywords["ATOMS"])
    if "MODEL" in action.keywords:
        kwargs["model"] = Path(action.keywords["MODEL"])
    if "ATYPE" in action.keywords:
        kwargs["atype"] = Path(action.keywords["ATYPE"])
    for key in ("UNIT_CVT", "VIRIAL_CVT"):
        if key in action.keywords:
            try:
                kwargs[key.lower()] = float(action.keywords[key])
            except ValueError:
                raise ConfigurationError(
                    f"{key} must be a number, got {action.keywords[key]!r}"
                ) from None
    return DeepCVConfig(**kwargs)


def parse_action(line: str) -> tuple[str | None, str, DeepCVConfig]:
    """Parse a full action line.

    Returns:
        tuple[str | None, str, DeepCVConfig]: label, upper-cased action name and
            the interpreted configuration
    """
    action = split_action(line)
    return action.label, action.name, config_from_action(action)


def load_atom_types(path: str | Path) -> np.ndarray:
    """Load model type ids from a whitespace separated text file.

    Args:
        path (str | Path): File with one integer per selected atom, in any line
            layout

    Returns:
        np.ndarray: Integer type ids with shape (n_atoms,)

    Raises:
        ConfigurationError: If the file is missing, unreadable, or contains a
            token that is not an integer.
    """
    path = Path(path)
    try:
        tokens = path.read_text().split()
    except OSError as exc:
        raise ConfigurationError(f"Cannot read atom type file {path}: {exc}") from exc
    try:
        return np.array([int(tok) for tok in tokens], dtype=np.int64)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid atom type file {path}: {exc}") from exc
