"""Flat buffer addressing shared by every component.

Inference engines exchange one flat buffer per quantity regardless of how many
output channels the model has. This module defines the single addressing law
used to read and write those buffers: a row-major bijection between the linear
range ``[0, nout * natom * ndim)`` and triples ``(iout, iatom, idim)`` with the
channel axis varying slowest.

Example::

    ic = IndexConverter(3, n_atoms, 3)
    ic.ravel(1, 4, 2)  # address of channel 1, atom 4, z component
    ic.unravel(ic.ravel(1, 4, 2))  # (1, 4, 2)

    # whole-buffer views, equivalent to calling ravel on every triple
    force = ic.gather(force_buffer)  # shape (3, n_atoms, 3)
"""

import torch


class IndexConverter:
    """Ravel and unravel ``(channel, atom, dimension)`` indices.

    Negative indices wrap around once (``i < 0`` becomes ``extent + i``). When the
    converter has a single channel the channel axis may be omitted, giving the 2-D
    ``(atom, dimension)`` form. Any index left out of range raises ``IndexError``;
    no clamped address is ever returned.

    Attributes:
        nout (int): Number of output channels
        natom (int): Number of atoms
        ndim (int): Number of spatial dimensions per atom
    """

    def __init__(self, nout: int, natom: int, ndim: int = 3) -> None:
        """Create a converter with fixed, strictly positive extents.

        Args:
            nout (int): Number of output channels
            natom (int): Number of atoms
            ndim (int): Number of spatial dimensions. Defaults to 3.

        Raises:
            ValueError: If any extent is not a positive integer.
        """
        for name, extent in (("nout", nout), ("natom", natom), ("ndim", ndim)):
            if isinstance(extent, bool) or int(extent) != extent or extent <= 0:
                raise ValueError(f"Invalid dimension: {name}={extent!r}")
        self._nout = int(nout)
        self._natom = int(natom)
        self._ndim = int(ndim)

    @classmethod
    def for_atoms(cls, natom: int, ndim: int = 3) -> "IndexConverter":
        """Single-channel converter addressed in the 2-D ``(atom, dim)`` form."""
        return cls(1, natom, ndim)

    @property
    def nout(self) -> int:
        """Number of output channels."""
        return self._nout

    @property
    def natom(self) -> int:
        """Number of atoms."""
        return self._natom

    @property
    def ndim(self) -> int:
        """Number of spatial dimensions."""
        return self._ndim

    @property
    def shape(self) -> tuple[int, int, int]:
        """Extents as ``(nout, natom, ndim)``."""
        return self._nout, self._natom, self._ndim

    @property
    def size(self) -> int:
        """Length of the flat buffer addressed by this converter."""
        return self._nout * self._natom * self._ndim

    def __repr__(self) -> str:
        return (
            f"IndexConverter(nout={self._nout}, natom={self._natom}, ndim={self._ndim})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexConverter):
            return NotImplemented
        return self.shape == other.shape

    def __hash__(self) -> int:
        return hash(self.shape)

    def ravel(self, *indices: int) -> int:
        """Map ``(iatom, idim)`` or ``(iout, iatom, idim)`` to a linear address.

        The 2-D form is shorthand for channel 0 and is only accepted when the
        converter has exactly one channel. A single-channel converter still
        bounds the channel index: only 0 and -1 are accepted, any other ``iout``
        raises.

        Args:
            *indices (int): Either ``(iatom, idim)`` or ``(iout, iatom, idim)``

        Returns:
            int: ``iout * natom * ndim + iatom * ndim + idim``

        Raises:
            IndexError: If any index is out of range after wraparound, or the 2-D
                form is used on a multi-channel converter.
            TypeError: If the number of indices is neither 2 nor 3.
        """
        if len(indices) == 2:
            if self._nout != 1:
                raise IndexError(
                    f"2-D index {indices} is ambiguous with {self._nout} channels"
                )
            iout, (iatom, idim) = 0, indices
        elif len(indices) == 3:
            iout, iatom, idim = indices
        else:
            raise TypeError(f"ravel() takes 2 or 3 indices ({len(indices)} given)")

        io = iout if iout >= 0 else self._nout + iout
        ia = iatom if iatom >= 0 else self._natom + iatom
        idx = idim if idim >= 0 else self._ndim + idim
        if not (0 <= io < self._nout and 0 <= ia < self._natom and 0 <= idx < self._ndim):
            raise IndexError(f"Index out of range: {indices} for {self!r}")
        return io * (self._natom * self._ndim) + ia * self._ndim + idx

    def unravel(
        self, multi_idx: int, *, channel: bool = True
    ) -> tuple[int, int, int] | tuple[int, int]:
        """Map a linear address back to its index triple.

        Args:
            multi_idx (int): Linear address in ``[0, size)``
            channel (bool): Return ``(iout, iatom, idim)`` if True, otherwise the
                channel-free ``(iatom, idim)`` form, which requires the decoded
                channel to be 0. Defaults to True.

        Addresses at or beyond ``size`` are rejected for every converter,
        including single-channel ones, so a single-channel buffer never decodes
        to a channel other than 0.

        Returns:
            tuple: ``(iout, iatom, idim)`` or ``(iatom, idim)``

        Raises:
            IndexError: If the address lies outside the buffer, or a channel-free
                address decodes to a nonzero channel.
        """
        if not 0 <= multi_idx < self.size:
            raise IndexError(f"Index out of range: {multi_idx} for {self!r}")
        iout = multi_idx // (self._natom * self._ndim)
        iatom = (multi_idx // self._ndim) % self._natom
        idim = multi_idx % self._ndim
        if channel:
            return iout, iatom, idim
        if iout != 0:
            raise IndexError(
                f"Address {multi_idx} belongs to channel {iout}, not a 2-D address"
            )
        return iatom, idim

    def ravel_grid(self, device: torch.device | None = None) -> torch.Tensor:
        """Linear addresses of every triple, shape ``(nout, natom, ndim)``.

        Element ``[k, i, j]`` equals ``ravel(k, i, j)``.
        """
        iout = torch.arange(self._nout, device=device).view(-1, 1, 1)
        iatom = torch.arange(self._natom, device=device).view(1, -1, 1)
        idim = torch.arange(self._ndim, device=device).view(1, 1, -1)
        return iout * (self._natom * self._ndim) + iatom * self._ndim + idim

    def gather(self, buffer: torch.Tensor) -> torch.Tensor:
        """Read a flat buffer into shape ``(nout, natom, ndim)``.

        Raises:
            ValueError: If the buffer length does not match ``size``.
        """
        if buffer.ndim != 1 or buffer.numel() != self.size:
            raise ValueError(
                f"Expected a flat buffer of {self.size} elements for {self!r}, "
                f"got shape {tuple(buffer.shape)}"
            )
        return buffer[self.ravel_grid(buffer.device)]

    def scatter(self, values: torch.Tensor) -> torch.Tensor:
        """Write ``values`` into a freshly allocated flat buffer.

        Args:
            values (torch.Tensor): Shape ``(nout, natom, ndim)``, or ``(natom, ndim)``
                for a single-channel converter.

        Returns:
            torch.Tensor: Flat buffer of length ``size``

        Raises:
            ValueError: If the shape of ``values`` does not match the extents.
        """
        if values.ndim == 2 and self._nout == 1:
            values = values.unsqueeze(0)
        if tuple(values.shape) != self.shape:
            raise ValueError(
                f"Expected values of shape {self.shape} for {self!r}, "
                f"got {tuple(values.shape)}"
            )
        buffer = torch.empty(self.size, device=values.device, dtype=values.dtype)
        buffer[self.ravel_grid(values.device)] = values
        return buffer
