"""Supertape loader: two-state variable-length bit coding with parity checksums."""

from __future__ import annotations

from tapescan.tape import HEADER_SIZE as TAP_HEADER_SIZE

HEAD_LOADER = "SUPERTAPE_HEAD"
DATA_LOADER = "SUPERTAPE_DATA"

HEADER_BYTES = 27
HEADER_DATA_BYTES = HEADER_BYTES - 2
HEADER_LOAD_ADDRESS = 0x033C
PILOT_BYTE = 0x16
SYNC_MASK = 0xEF
MIN_PILOTS = 10
SEARCH_MARGIN = 100
ERROR_SKIP = 255

_SHORT, _MEDIUM, _LONG = 0, 1, 2

# (bit count, bit value, least significant bit first) for each pulse class.
_STATUS1 = ((1, 0b0), (2, 0b01), (2, 0b11))
_STATUS2 = ((1, 0b0), (1, 0b1), (2, 0b11))


class SupertapeReader:
    """Stateful byte reader; status and leftover bits carry from byte to byte."""

    def __init__(self, tape, fmt):
        self.tape = tape
        self.fmt = fmt
        self.status = 1
        self.clear()

    def set_status(self, status):
        """Force the reader into ``status`` (1 or 2) and empty the bit buffer."""
        if status not in (1, 2):
            raise ValueError(f"reader status must be 1 or 2, got {status}")
        self.status = status
        self.clear()

    def clear(self):
        """Empty the bit buffer, leaving the status as it is."""
        self.bpos = 0
        self.bbuf = 0

    def _classify(self, pulse):
        tol = self.tape.tolerance
        kind = None
        for candidate, width in (
            (_SHORT, self.fmt.short),
            (_MEDIUM, self.fmt.medium),
            (_LONG, self.fmt.long),
        ):
            if width - tol < pulse < width + tol:
                kind = candidate
        return kind

    def read_byte(self, pos):
        """Decode the byte starting at ``pos``.

        Returns ``(value, pulses_used)``, or None when the position is out of
        range, inside a pause, or a pulse fits none of the widths (the last
        case is also noted as a read error on the tape).
        """
        tape = self.tape
        size = len(tape)
        if pos > size - 8 or pos < TAP_HEADER_SIZE or tape.is_pause(pos):
            return None
        pulses = 0
        while True:
            if pos >= size:
                return None
            pulse = tape[pos]
            kind = self._classify(pulse)
            if kind is None:
                tape.add_read_error(pulse)
                return None
            table = _STATUS1 if self.status == 1 else _STATUS2
            bits, value = table[kind]
            if kind == _MEDIUM:
                self.status = 2 if self.status == 1 else 1
            elif kind == _LONG:
                self.status = 1
            self.bbuf |= value << self.bpos
            self.bpos += bits
            pos += 1
            pulses += 1
            if self.bpos >= 8:
                break
        byte = self.bbuf & 0xFF
        self.bbuf >>= 8
        self.bpos -= 8
        return byte, pulses


def _take(reader, pos):
    """Read a byte and step past it: ``(value, next_pos, ok)``.

    A failed read yields 0xFF and skips ERROR_SKIP pulses.
    """
    result = reader.read_byte(pos)
    if result is None:
        return 0xFF, pos + ERROR_SKIP, False
    value, pulses = result
    return value, pos + pulses, True


def _skip_to(reader, start, stop):
    """Read bytes from ``start`` until at or past ``stop``; return the position."""
    pos = start
    while True:
        _value, pos, _ok = _take(reader, pos)
        if pos >= stop:
            return pos


def _trace_header(tape, reader, sof, sod):
    pos = sod
    eod = pos
    for index in range(HEADER_BYTES):
        if index == HEADER_DATA_BYTES:
            eod = pos
        _value, pos, _ok = _take(reader, pos)
    block = tape.add_block(HEAD_LOADER, sof, sod, eod, pos, 0)

    # Replay pilot and sync from a known state before decoding the header.
    reader.set_status(1)
    s = _skip_to(reader, sof, sod)
    s = sod if s < sod else s
    s = sod
    hd = []
    for _ in range(HEADER_BYTES):
        value, s, _ok = _take(reader, s)
        hd.append(value)
    data_size = hd[19] + (hd[20] << 8)
    return block, pos, data_size


def _trace_data(tape, reader, sof, sod, data_size):
    pos = sod
    eod = pos
    for index in range(data_size + 2):
        if index == data_size:
            eod = pos
        _value, pos, _ok = _take(reader, pos)
    return tape.add_block(DATA_LOADER, sof, sod, eod, pos, 0)


def search(tape, head_format, data_format, quiet=False):
    """Find Supertape header and data blocks; return them in tape order."""
    if not quiet:
        print("  Supertape")
    reader = SupertapeReader(tape, head_format)
    found = []
    data_size = 0
    i = TAP_HEADER_SIZE
    while i < len(tape) - SEARCH_MARGIN:
        reader.set_status(1)
        byte, _next, _ok = _take(reader, i)
        if byte == head_format.pilot:
            sof = i
            pilots = 0
            while True:
                pilots += 1
                byte, i, _ok = _take(reader, i)
                if byte != head_format.pilot:
                    break
            if pilots >= MIN_PILOTS:
                byte &= SYNC_MASK
                if byte == head_format.sync:
                    block, i, data_size = _trace_header(tape, reader, sof, i)
                    found.append(block)
                if byte == data_format.sync:
                    found.append(_trace_data(tape, reader, sof, i, data_size))
                    data_size = 0
        i += 1
    return found


def _filename(raw):
    name = bytes(raw).split(b"\x00", 1)[0].rstrip(b" ")
    return "".join(chr(c) if 0x20 <= c < 0x7F else "?" for c in name)


class SupertapeDescriber:
    """Describes found blocks; a data block uses the last header described."""

    def __init__(self, tape, head_format, data_format):
        self.tape = tape
        self.head_format = head_format
        self.data_format = data_format
        self.data_start = 0
        self.data_size = 0
        self.data_end = 0

    def describe(self, block):
        """Fill in addresses, data and checksums of ``block``; return it."""
        if block.loader not in (HEAD_LOADER, DATA_LOADER):
            raise ValueError(f"not a Supertape block: {block.loader}")
        reader = SupertapeReader(self.tape, self.head_format)

        reader.set_status(1)
        _skip_to(reader, block.p1, block.p2)

        if block.loader == HEAD_LOADER:
            self._describe_header(reader, block)
        else:
            block.cs = self.data_start
            block.ce = self.data_end
            block.cx = self.data_size

        pos = block.p1
        count = 0
        reader.set_status(1)
        while True:
            byte, pos, _ok = _take(reader, pos)
            count += 1
            if byte != PILOT_BYTE:
                break
        block.pilot_len = count - 1
        block.trail_len = 0

        data = bytearray()
        ones = 0
        for _ in range(max(block.cx, 0)):
            byte, pos, _ok = _take(reader, pos)
            data.append(byte)
            ones += bin(byte).count("1")
        low, pos, _ok = _take(reader, pos)
        high, pos, _ok = _take(reader, pos)

        block.data = bytes(data)
        block.cs_exp = ones & 0xFFFF
        block.cs_act = low + (high << 8)
        return block

    def _describe_header(self, reader, block):
        pos = block.p2
        block.cs = HEADER_LOAD_ADDRESS
        block.cx = HEADER_DATA_BYTES
        block.ce = block.cs + block.cx - 1

        hd = []
        for _ in range(block.cx):
            value, pos, _ok = _take(reader, pos)
            hd.append(value)

        block.filename = _filename(hd[:16])

        self.data_start = hd[17] + (hd[18] << 8)
        self.data_size = hd[19] + (hd[20] << 8)
        self.data_end = self.data_start + self.data_size

        block.info.append(f"DATA Load address: ${self.data_start:04X}")
        block.info.append(f"DATA File size: {self.data_size} bytes")
        block.info.append(f"DATA End address (calculated): ${self.data_end:04X}")