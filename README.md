# tapescan

Tools for working with Commodore 64 `.tap` tape images: render a tape image
as audio, and locate and decode blocks written by the Super Pavloda,
Supertape and Visiload turbo loaders.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Converting a tape image to audio

The `tapescan-audio` command turns a TAP file (version 0 or 1) into an
8-bit mono 44.1 kHz WAV or Sun AU file, drawing each pulse as one wave
cycle:

```
tapescan-audio game.tap game.wav
tapescan-audio game.tap game.au --sine
tapescan-audio game.tap out.snd --format au
```

- `--sine` draws sine waves instead of square waves.
- `--format {au,wav}` picks the output format; without it an `.au`
  extension gives AU and anything else gives WAV.

The command exits with status 1 and an `error:` message if the input is not
a readable TAP image.

The same is available from Python:

```python
from pathlib import Path
from tapescan.audio import write_wav, write_au, tap_samples

tap = Path("game.tap").read_bytes()
write_wav(tap, "game.wav", sine=False)   # unsigned 8-bit samples
write_au(tap, "game.au", sine=True)      # signed 8-bit samples
samples = tap_samples(tap, sine=False, signed=False)  # bytes, no file written
```

`write_wav` and `write_au` return the number of samples written.
`square_wave(length, amp, signed)` and `sine_wave(length, amp, signed)`
draw a single pulse as bytes.

## Tape images

`tapescan.tape.Tape` holds a TAP image in memory. Build it from bytes with
`Tape(data, tolerance)` or from a file with `Tape.load(path, tolerance)`;
data that is shorter than the 20-byte header or lacks the `C64-TAPE-RAW`
signature raises `TapeError` (a `ValueError`). The tolerance (default 10)
is how far a pulse may stray from a format's nominal width.

`Tape.is_pause(pos)` tells whether a byte belongs to a pause.
`Tape.blocks` collects the `Block` entries added by the scanners, and
`Tape.read_errors` the pulses the Supertape and Visiload readers could not
classify.

Loader timing is given by `PulseFormat` values (name, endian, short,
medium and long pulse widths, pilot and sync bytes, minimum pilot count),
and bit order by the `Endian` enumeration (`LSBF`, `MSBF`), both from
`tapescan.tape`. No pulse formats are built in; the caller supplies the
widths and marker bytes for the tapes at hand.

## Scanning for loader blocks

Each loader module has a `search` function that adds the blocks it finds to
the tape and also returns them, printing a progress line unless
`quiet=True`:

- `tapescan.superpav.search(tape, formats)` takes two `PulseFormat` values,
  one per threshold type, and finds header blocks (`SPAV1_HD`, `SPAV2_HD`)
  and data sub-blocks (`SPAV1`, `SPAV2`). `SuperPavReader` decodes single
  bytes.
- `tapescan.supertape.search(tape, head_format, data_format)` finds
  `SUPERTAPE_HEAD` and `SUPERTAPE_DATA` blocks; the data block's length is
  taken from the header found before it. `SupertapeReader` decodes single
  bytes.
- `tapescan.visiload.search(tape, fmt)` follows whole block chains,
  tracking the changes in bit order, extra bits per byte and extra header
  bytes that each block sets for the next. Blocks are named after
  `fmt.name`, and their layout is packed into `Block.xi` by
  `block_attribute`. `read_byte` decodes a single byte.

To fill in a block's load address, size, extracted data and expected versus
actual checksum, describe it:

- `SuperPavDescriber(tape, formats).describe(block)` — sub-blocks load after
  the last header described with the same describer.
- `SupertapeDescriber(tape, head_format, data_format).describe(block)` —
  sets the file name of header blocks; data blocks use the addresses of the
  last header described. The checksum is the count of 1 bits in the data.
- `tapescan.visiload.describe(tape, fmt, block, decode_modifiers=False)` —
  blocks loading to page 3 only set up the next block, and their data is
  decoded only with `decode_modifiers=True`. Visiload carries no checksum.

Describing appends human-readable lines to `Block.info`.

## What it does not do

There is no command for scanning tapes: scanning is done from Python. Only
the three loaders above are recognised, the standard tape format included
is not, and there is no automatic identification of which loader a tape
uses. Decoded data is left in `Block.data`; nothing is written out as
program files.