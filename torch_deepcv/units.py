# ruff: noqa: N815
"""Unit systems and the conversion record shared by the model adapters.

Host engines express their units relative to an internal reference of nm and
kJ/mol, while deep models are trained in Angstrom and eV. The conversion record
resolved here is computed once at setup and passed explicitly to the adapter.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from torch_deepcv.models.adapter import ModelKind


class UnitConversionFactors:
    """Conversion factors into the host reference system (nm, kJ/mol).

    Distance:
    Ang (Angstrom)
    nm (nanometer)

    Energy:
    eV (electron volt)
    kcal_per_mol (kilocalorie per mole)
    """

    # Distance
    Ang_to_nm = 0.1

    # Energy
    eV_to_kJ_per_mol = 96.487
    cal_to_J = 4.184
    kcal_per_mol_to_kJ_per_mol = cal_to_J


uc = UnitConversionFactors


# 1 Angstrom (deep model) = 0.1 nm (host reference)
MODEL_LENGTH_UNIT = uc.Ang_to_nm
# 1 eV (deep model) = 96.487 kJ/mol (host reference)
MODEL_ENERGY_UNIT = uc.eV_to_kJ_per_mol
# dipole and polarizability are passed through unconverted
MODEL_DIPOLE_UNIT = 1.0
MODEL_POLAR_UNIT = 1.0


@dataclass(frozen=True)
class HostUnits:
    """Units of a host engine relative to its reference system.

    Attributes:
        length (float): Size of one host length unit in nm
        energy (float): Size of one host energy unit in kJ/mol
        name (str): Label used in log messages
    """

    length: float = 1.0
    energy: float = 1.0
    name: str = "custom"

    def __post_init__(self) -> None:
        """Validate that both units are strictly positive."""
        if self.length <= 0 or self.energy <= 0:
            raise ValueError(
                f"Host units must be positive, got length={self.length}, "
                f"energy={self.energy}"
            )


class UnitSystem:
    """Container class for unit systems."""

    gromacs = HostUnits(length=1.0, energy=1.0, name="gromacs")
    metal = HostUnits(length=uc.Ang_to_nm, energy=uc.eV_to_kJ_per_mol, name="metal")
    real = HostUnits(
        length=uc.Ang_to_nm, energy=uc.kcal_per_mol_to_kJ_per_mol, name="real"
    )


@dataclass(frozen=True)
class UnitConversion:
    """Immutable unit conversion between a host engine and a deep model.

    Attributes:
        length_unit (float): Host length per model length. Host positions are
            divided by this factor before being passed to the model.
        output_unit (float): Host output per model output. Model outputs and
            their position derivatives are multiplied by this factor.
        virial_unit (float): Scale applied to the per-channel box derivatives.
            Kept independent of ``output_unit`` because the host's box-derivative
            convention need not match its per-atom derivative convention.
    """

    length_unit: float
    output_unit: float
    virial_unit: float

    def __post_init__(self) -> None:
        """Reject unresolved or nonsensical factors."""
        if self.length_unit <= 0:
            raise ValueError(f"length_unit must be positive, got {self.length_unit}")
        if self.output_unit < 0:
            raise ValueError(
                f"output_unit must be resolved to a non-negative value, "
                f"got {self.output_unit}"
            )
        if self.virial_unit < 0:
            raise ValueError(
                f"virial_unit must be resolved to a non-negative value, "
                f"got {self.virial_unit}"
            )

    @classmethod
    def resolve(
        cls,
        kind: "ModelKind",
        host_units: HostUnits,
        output_unit: float | None = None,
        virial_unit: float | None = None,
    ) -> "UnitConversion":
        """Resolve the conversion for a model kind in the host's unit system.

        Args:
            kind (ModelKind): Model kind supplying the default output unit
            host_units (HostUnits): The host's current unit system
            output_unit (float | None): Explicit override. None or a negative value
                selects the model-kind default.
            virial_unit (float | None): Explicit box-derivative scale. None or a
                negative value reuses the resolved ``output_unit``.

        Returns:
            UnitConversion: The resolved, fully concrete conversion
        """
        length_unit = MODEL_LENGTH_UNIT / host_units.length
        if output_unit is None or output_unit < 0:
            output_unit = kind.default_output_unit(host_units)
        if virial_unit is None or virial_unit < 0:
            virial_unit = output_unit
        return cls(
            length_unit=length_unit,
            output_unit=float(output_unit),
            virial_unit=float(virial_unit),
        )

    def to_model_length(self, value):
        """Convert a host length (scalar or tensor) into model length units."""
        return value / self.length_unit

    def from_model_length(self, value):
        """Convert a model length (scalar or tensor) into host length units."""
        return value * self.length_unit
