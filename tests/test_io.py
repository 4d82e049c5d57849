import pytest
import torch
from ase import Atoms

from tests.conftest import LinearDipole
from torch_deepcv.engines import TorchModelEngine
from torch_deepcv.host import HostEngine
from torch_deepcv.io import AtomsHost
from torch_deepcv.models import DeepDipole
from torch_deepcv.units import UnitSystem


@pytest.fixture
def split_pair() -> Atoms:
    """Two atoms on either side of a periodic boundary of a 10 Å cube."""
    return Atoms(
        "HO",
        positions=[[9.5, 1.0, 1.0], [0.5, 1.0, 1.0]],
        cell=[10.0, 10.0, 10.0],
        pbc=True,
    )


def test_atoms_host_protocol(split_pair: Atoms) -> None:
    host = AtomsHost(split_pair)
    assert isinstance(host, HostEngine)
    assert host.n_atoms == 2
    assert host.units == UnitSystem.metal
    torch.testing.assert_close(host.get_box(), torch.eye(3, dtype=torch.float64) * 10.0)


def test_get_positions_selection(split_pair: Atoms) -> None:
    host = AtomsHost(split_pair, dtype=torch.float32)
    positions = host.get_positions([1, 0])
    assert positions.dtype == torch.float32
    torch.testing.assert_close(
        positions, torch.tensor([[0.5, 1.0, 1.0], [9.5, 1.0, 1.0]], dtype=torch.float32)
    )


def test_make_whole_across_boundary(split_pair: Atoms) -> None:
    host = AtomsHost(split_pair)
    whole = host.make_whole(host.get_positions([0, 1]))
    expected = torch.tensor([[9.5, 1.0, 1.0], [10.5, 1.0, 1.0]], dtype=torch.float64)
    torch.testing.assert_close(whole, expected)


def test_make_whole_chain() -> None:
    """Each atom is unwrapped relative to the previous one, not the first."""
    atoms = Atoms(
        "H3",
        positions=[[1.0, 0.0, 0.0], [4.0, 0.0, 0.0], [7.0, 0.0, 0.0]],
        cell=[8.0, 8.0, 8.0],
        pbc=True,
    )
    host = AtomsHost(atoms)
    whole = host.make_whole(host.get_positions([0, 1, 2]))
    expected = torch.tensor([1.0, 4.0, 7.0], dtype=torch.float64)
    torch.testing.assert_close(whole[:, 0], expected)

    whole = host.make_whole(host.get_positions([2, 0]))
    torch.testing.assert_close(whole[:, 0], torch.tensor([7.0, 9.0], dtype=torch.float64))


def test_make_whole_without_pbc(split_pair: Atoms) -> None:
    split_pair.pbc = False
    host = AtomsHost(split_pair)
    positions = host.get_positions([0, 1])
    torch.testing.assert_close(host.make_whole(positions), positions)
    single = host.get_positions([0])
    torch.testing.assert_close(host.make_whole(single), single)


def test_dipole_of_split_molecule(split_pair: Atoms) -> None:
    host = AtomsHost(split_pair)
    engine = TorchModelEngine(LinearDipole([1.0, -1.0]))
    dipole = DeepDipole(host, engine, [0, 1], label="dip")
    channels = dipole.calculate()

    # metal units: no length or output conversion
    assert dipole.units.length_unit == pytest.approx(1.0)
    assert channels["x"].value == pytest.approx(-1.0)
    assert channels["y"].value == pytest.approx(0.0)

    expected = torch.zeros(2, 3, dtype=torch.float64)
    expected[:, 0] = torch.tensor([1.0, -1.0], dtype=torch.float64)
    torch.testing.assert_close(channels["x"].derivatives, expected)

    # box derivative sum_i r_ia f_ib of the x channel is -dipole in column x
    box_derivatives = channels["x"].box_derivatives
    torch.testing.assert_close(
        box_derivatives[:, 0], torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64)
    )
    zeros = torch.zeros(3, 2, dtype=torch.float64)
    torch.testing.assert_close(box_derivatives[:, 1:], zeros)


def test_dipole_follows_atoms_updates(split_pair: Atoms) -> None:
    host = AtomsHost(split_pair)
    engine = TorchModelEngine(LinearDipole([1.0, -1.0]))
    dipole = DeepDipole(host, engine, [0, 1], pbc=False)
    assert dipole.calculate()["x"].value == pytest.approx(9.0)

    split_pair.positions[1, 0] = 9.0
    assert dipole.calculate()["x"].value == pytest.approx(0.5)
