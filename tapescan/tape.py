"""Raw C64 tape images: pulse data, pause map and the blocks found in them."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path

SIGNATURE = b"C64-TAPE-RAW"
HEADER_SIZE = 20
DEFAULT_TOLERANCE = 10


class TapeError(ValueError):
    """Raised when data is not a usable TAP image."""


class Endian(enum.IntEnum):
    """Bit order of a byte on tape."""

    LSBF = 0
    MSBF = 1


@dataclass(frozen=True)
class PulseFormat:
    """Pulse widths and marker bytes that describe one loader format."""

    name: str
    endian: Endian = Endian.MSBF
    threshold: int = 0
    short: int = 0
    medium: int = 0
    long: int = 0
    pilot: int = 0
    sync: int = 0
    pilot_min: int = 0
    pilot_max: int = 0


@dataclass
class Block:
    """A block located on the tape, with whatever describing it found out."""

    loader: str
    p1: int
    p2: int
    p3: int
    p4: int
    xi: int = 0
    cs: int = 0
    ce: int = 0
    cx: int = 0
    pilot_len: int = 0
    trail_len: int = 0
    cs_exp: int = -1
    cs_act: int = -1
    rd_err: int = 0
    data: bytes | None = None
    filename: str | None = None
    info: list[str] = field(default_factory=list)


class Tape:
    """A TAP image held in memory, with its pause map and found blocks."""

    def __init__(self, data, tolerance=DEFAULT_TOLERANCE):
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise TapeError(f"TAP data too short: {len(data)} bytes")
        if not data.startswith(SIGNATURE):
            raise TapeError("missing C64-TAPE-RAW signature")
        self.data = data
        self.version = data[12]
        self.declared_length = int.from_bytes(data[16:20], "little")
        self.tolerance = tolerance
        self.blocks: list[Block] = []
        self.read_errors: list[int] = []
        self._pauses = self._map_pauses()

    @classmethod
    def load(cls, path, tolerance=DEFAULT_TOLERANCE):
        """Read a TAP image from a file."""
        return cls(Path(path).read_bytes(), tolerance)

    def __len__(self):
        return len(self.data)

    def __getitem__(self, pos):
        return self.data[pos]

    def _map_pauses(self) -> bytearray:
        size = len(self.data)
        mask = bytearray(size)
        span = 4 if self.version == 1 else 1
        i = HEADER_SIZE
        while i < size:
            if self.data[i] == 0:
                end = min(i + span, size)
                mask[i:end] = b"\x01" * (end - i)
                i = end
            else:
                i += 1
        return mask

    def is_pause(self, pos):
        """True if the byte at ``pos`` belongs to a pause."""
        return 0 <= pos < len(self.data) and bool(self._pauses[pos])

    def add_block(self, loader, sof, sod, eod, eof, xi=0):
        """Record a found block and return it."""
        block = Block(loader, sof, sod, eod, eof, xi)
        self.blocks.append(block)
        return block

    def add_read_error(self, value):
        """Note a pulse (or offset) that could not be read."""
        self.read_errors.append(value)