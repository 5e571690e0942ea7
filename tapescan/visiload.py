"""Visiload loader: a chain of blocks whose layout is set by the block before."""

from __future__ import annotations

from dataclasses import dataclass

from tapescan.tape import HEADER_SIZE as TAP_HEADER_SIZE
from tapescan.tape import Endian

HEADER_BYTES = 4
SEARCH_MARGIN = 100
MAX_EXTRA = 7
READ_FAILED = 0xFF

# Load addresses of the "modifier" blocks that change the next block's layout.
MOD_BITS_PER_BYTE = 0x034B
MOD_HEADER_BYTES = 0x03A4
MOD_ENDIAN = 0x0347
MOD_PILOT = 0x03BB
ENDIAN_MARK = 0x26

_MODIFIER_TEXT = {
    MOD_BITS_PER_BYTE: "MODIFIER : first data byte holds no. of bits per byte in next block.",
    MOD_HEADER_BYTES: "MODIFIER : first data byte is number of additional header bytes+3 in next.",
    MOD_ENDIAN: "MODIFIER : if first data byte is $26 then next block will be MSbF else LSbF.",
    MOD_PILOT: "MODIFIER : next block (only) will have PILOT tone before it + possibly a pause.",
}
_SAME_FORMAT_TEXT = "Next block will be formatted same as this one."


def read_byte(tape, fmt, pos, endian, extra_bits):
    """Decode a byte at ``pos`` preceded by ``extra_bits`` mandatory 1 bits.

    Returns the byte value, or None if the bits run outside the pulse data,
    into a pause, or a pulse is not a clean 0 or 1 (noted as a read error).
    """
    size = len(tape)
    for offset in range(8 + extra_bits):
        at = pos + offset
        if at < TAP_HEADER_SIZE or at > size - 1 or tape.is_pause(at):
            return None

    tol = tape.tolerance
    for offset in range(extra_bits):
        pulse = tape[pos + offset]
        if pulse < fmt.long - tol or pulse > fmt.long + tol:
            tape.add_read_error(pos + offset)
            return None

    bits = []
    for offset in range(8):
        pulse = tape[pos + extra_bits + offset]
        is_one = fmt.long - tol < pulse < fmt.long + tol
        is_zero = fmt.short - tol < pulse < fmt.short + tol
        if is_one == is_zero:
            tape.add_read_error(pos + offset)
            return None
        bits.append(1 if is_one else 0)

    if endian == Endian.MSBF:
        bits.reverse()
    return sum(bit << index for index, bit in enumerate(bits))


def block_attribute(endian, extra_header, extra_bits):
    """Pack a block's layout: bit 7 endianness, bits 3-5 extra header bytes, bits 0-2 extra bits."""
    for label, value in (("extra header bytes", extra_header), ("extra bits", extra_bits)):
        if not 0 <= value <= MAX_EXTRA:
            raise ValueError(f"{label} must be 0..{MAX_EXTRA}, got {value}")
    return (int(endian) << 7) + (extra_header << 3) + extra_bits


@dataclass
class _Layout:
    endian: Endian = Endian.MSBF
    extra_header: int = 0
    extra_bits: int = 1

    @property
    def step(self):
        return 8 + self.extra_bits

    def read(self, tape, fmt, pos):
        return read_byte(tape, fmt, pos, self.endian, self.extra_bits)


def _say(quiet, *lines):
    if not quiet:
        for line in lines:
            print(line)


def _find_pilot(tape, fmt, layout, j, limit, quiet):
    """Locate a pilot tone and sync from ``j``; return ``(sof, sod)`` or None."""
    while True:
        byte = layout.read(tape, fmt, j)
        j += 1
        if byte == fmt.pilot or j >= limit:
            break
    j -= 1
    sof = j
    while True:
        byte = layout.read(tape, fmt, j)
        j += layout.step
        if byte != fmt.pilot or j >= limit:
            break
    j -= layout.step
    if layout.read(tape, fmt, j) != fmt.sync:
        _say(quiet, f" * Visiload sync byte failed @ {j:04X}, search aborted.")
        return None
    return sof, j + layout.step


def _follow_chain(tape, fmt, layout, sof, sod, found, quiet):
    """Record every block of a chain; return the next position, or None to stop."""
    limit = len(tape) - SEARCH_MARGIN
    j = sod
    needs_pilot = False
    while True:
        if needs_pilot:
            located = _find_pilot(tape, fmt, layout, j, limit, quiet)
            if located is None:
                return None
            sof, sod = located
            needs_pilot = False

        hd = []
        for index in range(HEADER_BYTES + layout.extra_header + 1):
            byte = layout.read(tape, fmt, sod + index * layout.step)
            if byte is None:
                _say(
                    quiet,
                    f"\nFATAL : read error in Visiload header! (${sod + index * layout.step:04X}).",
                    f"header begins at ${sod:04X} and should hold "
                    f"{HEADER_BYTES + layout.extra_header} bytes.",
                    "\nVisiload search was aborted.",
                    "",
                )
                return None
            hd.append(byte)

        ah = layout.extra_header
        start = (hd[2 + ah] << 8) + hd[3 + ah]
        end = (hd[ah] << 8) + hd[1 + ah]
        length = end - start or 1  # a zero-length block still sends one byte
        first_data = hd[HEADER_BYTES + ah]

        eod = sod + (length + HEADER_BYTES + ah - 1) * layout.step
        eof = eod + layout.step - 1
        if eof < sod:
            _say(quiet, f" * Visiload block at ${sod:04X} ends before it starts, search aborted.")
            return None

        attribute = block_attribute(layout.endian, layout.extra_header, layout.extra_bits)
        found.append(tape.add_block(fmt.name, sof, sod, eod, eof, attribute))

        j = eof + 1
        sof = sod = j

        if start == MOD_BITS_PER_BYTE:
            layout.extra_bits = first_data - 8
        if start == MOD_HEADER_BYTES:
            layout.extra_header = first_data - 3
        if start == MOD_ENDIAN:
            layout.endian = Endian.MSBF if first_data == ENDIAN_MARK else Endian.LSBF
        if start == MOD_PILOT:
            needs_pilot = True

        if not (0 <= layout.extra_bits <= MAX_EXTRA and 0 <= layout.extra_header <= MAX_EXTRA):
            _say(quiet, f" * Visiload block layout out of range at ${j:04X}, search aborted.")
            return None

        if j >= limit:
            return j


def search(tape, fmt, quiet=False):
    """Find the Visiload chain(s) on the tape; return the blocks found."""
    _say(quiet, "  Visiload")
    found = []
    layout = _Layout()
    limit = len(tape) - SEARCH_MARGIN
    i = TAP_HEADER_SIZE
    while i < limit:
        if layout.read(tape, fmt, i) == fmt.pilot:
            sof = i
            count = 0
            while layout.read(tape, fmt, i + count * layout.step) == fmt.pilot:
                count += 1
            sync = layout.read(tape, fmt, i + count * layout.step)
            if sync == fmt.sync and count > fmt.pilot_min:
                sod = i + (count + 1) * layout.step
                next_pos = _follow_chain(tape, fmt, layout, sof, sod, found, quiet)
                if next_pos is None:
                    return found
                i = next_pos
        i += 1
    return found


def describe(tape, fmt, block, decode_modifiers=False):
    """Fill in addresses and data of a Visiload ``block``; return it.

    Blocks loading to page 3 only set up the next block; their data is
    decoded only when ``decode_modifiers`` is true.
    """
    if block.loader != fmt.name:
        raise ValueError(f"not a {fmt.name} block: {block.loader}")
    endian = Endian((block.xi & 0x80) >> 7)
    ah = (block.xi & 0x38) >> 3
    ab = block.xi & 0x07
    step = 8 + ab

    hd = []
    for index in range(ah, HEADER_BYTES + ah + 1):
        byte = read_byte(tape, fmt, block.p2 + index * step, endian, ab)
        hd.append(READ_FAILED if byte is None else byte)

    block.cs = (hd[2] << 8) + hd[3]
    block.ce = ((hd[0] << 8) + hd[1]) - 1
    block.cx = (block.ce - block.cs + 1) & 0xFFFF

    block.info.append(_MODIFIER_TEXT.get(block.cs, _SAME_FORMAT_TEXT))
    if block.cs in (MOD_BITS_PER_BYTE, MOD_HEADER_BYTES, MOD_ENDIAN):
        block.info.append(f"First byte ${hd[4]:02X}")
    endian_name = "MSbF" if endian == Endian.MSBF else "LSbF"
    block.info.append(
        f"Bits per byte: {step} | Endianess: {endian_name} | Extra headers bytes: {ah}"
    )

    block.pilot_len = (block.p2 - block.p1) // step
    if block.pilot_len > 0:
        block.pilot_len -= 1  # the sync byte is not pilot
    block.trail_len = 0

    if not decode_modifiers and (block.cs & 0xFF00) == 0x0300:
        return block

    start = block.p2 + (ah + HEADER_BYTES) * step
    data = bytearray()
    errors = 0
    for index in range(block.cx):
        byte = read_byte(tape, fmt, start + index * step, endian, ab)
        if byte is None:
            errors += 1
            byte = READ_FAILED
        data.append(byte)
    block.data = bytes(data)
    block.rd_err = errors
    return block