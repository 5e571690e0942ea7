"""Render TAP pulse data as AU or WAV audio."""

from __future__ import annotations

import argparse
import math
import struct
import sys
from pathlib import Path

from tapescan.tape import Tape, TapeError

FREQ = 44100
C64_CLOCK = 985248.0
AU_HEADER_SIZE = 24
WAV_HEADER_SIZE = 44
PULSE_AMPLITUDE = 127
V0_PAUSE_CYCLES = 20000

_RATIO = FREQ / C64_CLOCK
_RADS = 180 / 3.141592654


def square_wave(length, amp, signed):
    """One square cycle of ``length`` samples, high half first."""
    offset = 0 if signed else 128
    half = length >> 1
    high = (amp + offset) & 0xFF
    low = (-amp + offset) & 0xFF
    return bytes([high]) * half + bytes([low]) * (length - half)


def sine_wave(length, amp, signed):
    """One sine cycle of ``length`` samples."""
    if length <= 0:
        return b""
    offset = 0 if signed else 128
    inc = 360 / length
    return bytes(
        (int(amp * math.sin((x * inc) / _RADS)) + offset) & 0xFF
        for x in range(length)
    )


def _waves(tap, sine, signed):
    data = bytes(tap)
    if len(data) < 20:
        raise ValueError("TAP data too short")
    version = data[12]
    draw = sine_wave if sine else square_wave
    size = len(data)
    i = 20
    while i < size:
        pulse = data[i]
        if pulse == 0:
            if version == 0:
                yield draw(math.floor(V0_PAUSE_CYCLES * _RATIO), 0, signed)
            elif version == 1:
                if i + 3 >= size:
                    raise ValueError(f"truncated pause at offset {i}")
                cycles = int.from_bytes(data[i + 1:i + 4], "little")
                i += 3
                yield draw(math.floor(cycles * _RATIO), 0, signed)
        else:
            yield draw(math.floor(pulse * 8 * _RATIO), PULSE_AMPLITUDE, signed)
        i += 1


def tap_samples(tap, sine=False, signed=False):
    """All 8-bit samples for the pulses of a TAP image."""
    return b"".join(_waves(tap, sine, signed))


def _au_header(total):
    return b".snd" + struct.pack(">IIIII", AU_HEADER_SIZE, total & 0xFFFFFFFF, 2, FREQ, 1)


def _wav_header(total):
    return (
        b"RIFF"
        + struct.pack("<I", (total + WAV_HEADER_SIZE - 8) & 0xFFFFFFFF)
        + b"WAVEfmt "
        + struct.pack("<IHHIIHH", 16, 1, 1, FREQ, FREQ, 1, 8)
        + b"data"
        + struct.pack("<I", total & 0xFFFFFFFF)
    )


def _write(tap, path, sine, signed, header_size, header):
    total = 0
    with open(path, "w+b") as fh:
        fh.write(bytes(header_size))
        for chunk in _waves(tap, sine, signed):
            fh.write(chunk)
            total += len(chunk)
        fh.seek(0)
        fh.write(header(total))
    return total


def write_au(tap, path, sine=False):
    """Write the TAP as a signed 8-bit mono AU file; return the sample count."""
    return _write(tap, path, sine, True, AU_HEADER_SIZE, _au_header)


def write_wav(tap, path, sine=False):
    """Write the TAP as an unsigned 8-bit mono WAV file; return the sample count."""
    return _write(tap, path, sine, False, WAV_HEADER_SIZE, _wav_header)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="tapescan-audio", description="Convert a TAP image to AU or WAV audio."
    )
    parser.add_argument("tap", help="input TAP file")
    parser.add_argument("output", help="output audio file")
    parser.add_argument("--sine", action="store_true", help="draw sine instead of square waves")
    parser.add_argument("--format", choices=("au", "wav"), help="output format (default: by extension)")
    args = parser.parse_args(argv)

    fmt = args.format or ("au" if Path(args.output).suffix.lower() == ".au" else "wav")
    try:
        tape = Tape.load(args.tap)
        writer = write_au if fmt == "au" else write_wav
        writer(tape.data, args.output, sine=args.sine)
    except (OSError, TapeError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())