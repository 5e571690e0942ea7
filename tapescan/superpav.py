"""Super Pavloda loader: variable-length bit coding read with two-state tables."""

from __future__ import annotations

from tapescan.tape import HEADER_SIZE as TAP_HEADER_SIZE

SYNC_BYTES = (0x66, 0x1B)
MIN_PILOT = 4
ERROR_SKIP = 255
HEADER_BYTES = 7
SUB_BLOCK_SIZE = 256

_SHORT, _MEDIUM, _LONG = 0, 1, 2

# (bit count, bit value) for each pulse class, one table per reader status.
_STATUS1 = ((1, 0b1), (2, 0b00), (2, 0b01))
_STATUS2 = ((1, 0b0), (1, 0b1), (2, 0b00))


def loader_names(index):
    """Loader names (data, header) used for threshold type ``index``."""
    return f"SPAV{index}", f"SPAV{index}_HD"


def _check_formats(formats):
    formats = tuple(formats)
    if len(formats) != 2:
        raise ValueError(f"Super Pavloda needs two pulse formats, got {len(formats)}")
    return formats


class SuperPavReader:
    """Stateful byte reader; status and leftover bits carry from byte to byte."""

    def __init__(self, tape, fmt):
        self.tape = tape
        self.fmt = fmt
        self.reset()

    def reset(self):
        """Return to status 1 with an empty bit buffer."""
        self.status = 1
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
        range, inside a pause, or a pulse fits none of the widths.
        """
        tape = self.tape
        if pos > len(tape) - 8 or pos < TAP_HEADER_SIZE or tape.is_pause(pos):
            return None
        pulses = 0
        while True:
            kind = self._classify(tape[pos])
            if kind is None:
                return None
            table = _STATUS1 if self.status == 1 else _STATUS2
            bits, value = table[kind]
            if kind == _MEDIUM:
                self.status = 2 if self.status == 1 else 1
            self.bbuf |= (value << (16 - bits)) >> self.bpos
            self.bpos += bits
            pos += 1
            pulses += 1
            if self.bpos >= 8:
                break
        byte = (self.bbuf & 0xFF00) >> 8
        self.bbuf = (self.bbuf << 8) & 0xFF00
        self.bpos -= 8
        return byte, pulses


def _take(reader, pos):
    """Read a byte and step past it: ``(value, next_pos, ok)``.

    A failed read yields 0xFF and skips ERROR_SKIP pulses, which is how the
    block-length tracing has always treated unreadable bytes.
    """
    result = reader.read_byte(pos)
    if result is None:
        return 0xFF, pos + ERROR_SKIP, False
    value, pulses = result
    return value, pos + pulses, True


def _trace_block(tape, reader, sof, sod, data_name, head_name):
    si = sod
    hd = []
    for _ in range(2):
        value, si, _ok = _take(reader, si)
        hd.append(value)
    if hd[1] == 0:
        for _ in range(HEADER_BYTES - 2):
            value, si, _ok = _take(reader, si)
            hd.append(value)
        count = 256 - hd[5]
        name = head_name
    else:
        count = SUB_BLOCK_SIZE
        name = data_name
    for _ in range(count + 1):
        _value, si, _ok = _take(reader, si)
    return tape.add_block(name, sof, sod, si, si, 0), si


def _search_pass(tape, fmt, data_name, head_name):
    reader = SuperPavReader(tape, fmt)
    tol = tape.tolerance
    size = len(tape)
    found = []

    def is_short(pulse):
        return fmt.short - tol < pulse < fmt.short + tol

    i = TAP_HEADER_SIZE
    while i < size:
        if is_short(tape[i]) and not tape.is_pause(i):
            sof = i
            while True:
                pulse = tape[i]
                i += 1
                if not (is_short(pulse) and i < size and not tape.is_pause(i)):
                    break
            if fmt.medium - tol < pulse < fmt.medium + tol and i - sof > MIN_PILOT:
                reader.reset()
                first, i, _ok = _take(reader, i)
                if first == SYNC_BYTES[0]:
                    second, i, _ok = _take(reader, i)
                    if second == SYNC_BYTES[1]:
                        block, i = _trace_block(tape, reader, sof, i, data_name, head_name)
                        found.append(block)
        i += 1
    return found


def search(tape, formats, quiet=False):
    """Find Super Pavloda blocks for both threshold types; return them."""
    formats = _check_formats(formats)
    found = []
    for index, fmt in enumerate(formats, start=1):
        if not quiet:
            print(f"  Super Pavloda T{index}")
        data_name, head_name = loader_names(index)
        found.extend(_search_pass(tape, fmt, data_name, head_name))
    return found


class SuperPavDescriber:
    """Describes found blocks; sub-blocks load after the last header seen."""

    def __init__(self, tape, formats):
        self.tape = tape
        self._formats = {}
        for index, fmt in enumerate(_check_formats(formats), start=1):
            data_name, head_name = loader_names(index)
            self._formats[data_name] = (fmt, False)
            self._formats[head_name] = (fmt, True)
        self.load_base = 0

    def describe(self, block):
        """Fill in addresses, data and checksums of ``block``; return it."""
        try:
            fmt, is_header = self._formats[block.loader]
        except KeyError:
            raise ValueError(f"not a Super Pavloda block: {block.loader}") from None
        reader = SuperPavReader(self.tape, fmt)
        if is_header:
            self._describe_header(reader, block)
        else:
            self._describe_sub_block(reader, block)
        return block

    def _describe_header(self, reader, block):
        si = block.p2
        hd = []
        for _ in range(HEADER_BYTES):
            value, si, _ok = _take(reader, si)
            hd.append(value)

        block.cs = (hd[2] + (hd[3] << 8) + hd[5]) & 0xFFFF
        block.cx = 256 - hd[5]
        block.ce = block.cs + block.cx - 1
        block.xi = hd[4] * 256 + (256 - hd[5])
        block.pilot_len = block.p2 - block.p1
        block.trail_len = 0
        self.load_base = block.cs + block.cx

        block.info.append(f"Block number: ${hd[0]:02X}")
        block.info.append(f"Sub-block number: ${hd[1]:02X}")
        block.info.append(f"Load address: ${block.cs:04X}")
        block.info.append(f"Total data size: {block.xi} bytes")
        block.info.append(f"Data in this block: {block.cx} bytes")
        block.info.append(f"Total sub-blocks in chain: {hd[4]}")
        expected = (sum(hd[:6]) & 0xFF) + 6
        verdict = "OK" if hd[6] == expected else "FAILED"
        block.info.append(
            f"Header checkbyte: {verdict} (expected=${expected:02X}, actual=${hd[6]:02X})"
        )

        data = bytearray()
        errors = 0
        for _ in range(block.cx):
            value, si, ok = _take(reader, si)
            if not ok:
                errors += 1
            data.append(value)
        checkbyte, si, _ok = _take(reader, si)

        block.data = bytes(data)
        block.cs_exp = (sum(data) + (block.cx & 0xFF)) & 0xFF
        block.cs_act = checkbyte
        block.rd_err = errors

    def _describe_sub_block(self, reader, block):
        si = block.p2
        hd = []
        for _ in range(2):
            value, si, _ok = _take(reader, si)
            hd.append(value)

        block.cs = self.load_base
        block.ce = self.load_base + SUB_BLOCK_SIZE - 1
        block.cx = SUB_BLOCK_SIZE
        block.pilot_len = block.p2 - block.p1
        block.trail_len = 0
        self.load_base += SUB_BLOCK_SIZE

        block.info.append(f"Block number: ${hd[0]:02X}")
        block.info.append(f"Sub-block number: ${hd[1]:02X}")

        data = bytearray()
        for _ in range(block.cx):
            value, si, _ok = _take(reader, si)
            data.append(value)
        checkbyte, si, _ok = _take(reader, si)

        block.data = bytes(data)
        block.cs_exp = (sum(data) + hd[0] + hd[1] + 2) & 0xFF
        block.cs_act = checkbyte
        block.rd_err = 0