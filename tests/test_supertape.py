import pytest

from tapescan.supertape import (
    DATA_LOADER,
    HEAD_LOADER,
    HEADER_LOAD_ADDRESS,
    SupertapeDescriber,
    SupertapeReader,
    search,
)
from tapescan.tape import Block, PulseFormat, Tape

SHORT, MEDIUM, LONG = 30, 50, 70
FILLER = 0x90

HEAD = PulseFormat("SUPERTAPE_HEAD", short=SHORT, medium=MEDIUM, long=LONG, pilot=0x16, sync=0x2A)
DATA = PulseFormat("SUPERTAPE_DATA", short=SHORT, medium=MEDIUM, long=LONG, pilot=0x16, sync=0xC5)

NAME = b"DEMO" + b" " * 12
START = 0x0801
PAYLOAD = bytes([0xA9, 0x00, 0x8D, 0x20, 0xD0, 0x60]) * 5
PILOTS = 20


def encode(stream):
    """Turn bytes into Supertape pulses, starting in status 1."""
    bits = [(b >> k) & 1 for b in stream for k in range(8)]
    pulses = []
    status = 1
    i = 0
    while i < len(bits):
        if bits[i] == 0:
            pulses.append(SHORT)
            i += 1
        elif status == 1:
            following = bits[i + 1] if i + 1 < len(bits) else 0
            if following:
                pulses.append(LONG)
            else:
                pulses.append(MEDIUM)
                status = 2
            i += 2
        else:
            pulses.append(MEDIUM)
            status = 1
            i += 1
    return pulses


def make_tape(pulses, version=1):
    header = b"C64-TAPE-RAW" + bytes([version, 0, 0, 0]) + len(pulses).to_bytes(4, "little")
    return Tape(header + bytes(pulses), tolerance=10)


def parity(data):
    return sum(bin(b).count("1") for b in data).to_bytes(2, "little")


def header_bytes():
    return (
        NAME
        + bytes([1])
        + START.to_bytes(2, "little")
        + len(PAYLOAD).to_bytes(2, "little")
        + bytes(4)
    )


def build_image(data_checksum=None, with_header=True):
    header25 = header_bytes()
    head_stream = bytes([0x16]) * PILOTS + bytes([0x2A]) + header25 + parity(header25)
    checksum = data_checksum if data_checksum is not None else parity(PAYLOAD)
    data_stream = bytes([0x16]) * PILOTS + bytes([0xC5]) + PAYLOAD + checksum
    lead = [FILLER] * 30
    gap = [FILLER] * 30
    tail = [FILLER] * 120
    head_p = encode(head_stream) if with_header else []
    data_p = encode(data_stream)
    pulses = lead + head_p + gap + data_p + tail
    head_at = 20 + len(lead)
    data_at = head_at + len(head_p) + len(gap)
    return make_tape(pulses), head_at, len(head_p), data_at, len(data_p)


def test_reader_round_trip():
    stream = bytes([0x16, 0x2A, 0xFF, 0x00, 0x81, 0x5A, 0xC5])
    pulses = encode(stream)
    tape = make_tape(pulses + [FILLER] * 20)
    reader = SupertapeReader(tape, HEAD)
    reader.set_status(1)
    pos = 20
    decoded = []
    for _ in stream:
        value, used = reader.read_byte(pos)
        decoded.append(value)
        pos += used
    assert bytes(decoded) == stream
    assert pos == 20 + len(pulses)


def test_reader_rejects_out_of_range_and_pause():
    pulses = [SHORT] * 5 + [0, 1, 0, 0] + [SHORT] * 20
    tape = make_tape(pulses)
    reader = SupertapeReader(tape, HEAD)
    assert reader.read_byte(10) is None
    assert reader.read_byte(25) is None
    assert reader.read_byte(len(tape) - 7) is None
    assert tape.read_errors == []


def test_reader_records_bad_pulse():
    tape = make_tape([FILLER] + [SHORT] * 20)
    reader = SupertapeReader(tape, HEAD)
    assert reader.read_byte(20) is None
    assert tape.read_errors == [FILLER]


def test_clear_keeps_status_and_set_status_validates():
    tape = make_tape([SHORT] * 20)
    reader = SupertapeReader(tape, HEAD)
    reader.set_status(2)
    reader.clear()
    assert (reader.status, reader.bpos, reader.bbuf) == (2, 0, 0)
    with pytest.raises(ValueError):
        reader.set_status(3)


def test_search_finds_header_and_data():
    tape, head_at, head_len, data_at, data_len = build_image()
    blocks = search(tape, HEAD, DATA, quiet=True)
    assert [b.loader for b in blocks] == [HEAD_LOADER, DATA_LOADER]
    head, data = blocks
    assert head.p1 == head_at
    assert head.p4 == head_at + head_len
    assert data.p1 == data_at
    assert data.p4 == data_at + data_len
    assert tape.blocks == blocks


def test_search_announces_itself(capsys):
    tape, *_ = build_image()
    search(tape, HEAD, DATA)
    assert capsys.readouterr().out == "  Supertape\n"


def test_search_on_noise_finds_nothing():
    tape = make_tape([FILLER] * 300)
    assert search(tape, HEAD, DATA, quiet=True) == []


def test_data_without_header_has_empty_payload():
    tape, _h, _hl, data_at, _dl = build_image(with_header=False)
    blocks = search(tape, HEAD, DATA, quiet=True)
    assert [b.loader for b in blocks] == [DATA_LOADER]
    assert blocks[0].p1 == data_at
    assert blocks[0].p3 == blocks[0].p2


def test_describe_header():
    tape, *_ = build_image()
    head, _data = search(tape, HEAD, DATA, quiet=True)
    describer = SupertapeDescriber(tape, HEAD, DATA)
    describer.describe(head)
    assert head.cs == HEADER_LOAD_ADDRESS
    assert head.cx == 25
    assert head.data == header_bytes()
    assert head.filename == "DEMO"
    assert head.pilot_len == PILOTS
    assert head.cs_exp == head.cs_act
    assert "DATA Load address: $0801" in head.info
    assert describer.data_start == START
    assert describer.data_size == len(PAYLOAD)


def test_describe_data_after_header():
    tape, *_ = build_image()
    head, data = search(tape, HEAD, DATA, quiet=True)
    describer = SupertapeDescriber(tape, HEAD, DATA)
    describer.describe(head)
    result = describer.describe(data)
    assert result is data
    assert data.cs == START
    assert data.cx == len(PAYLOAD)
    assert data.ce == describer.data_end
    assert data.data == PAYLOAD
    assert data.pilot_len == PILOTS
    assert data.cs_exp == data.cs_act


def test_describe_detects_bad_checksum():
    good_tape, *_ = build_image()
    good = search(good_tape, HEAD, DATA, quiet=True)
    good_describer = SupertapeDescriber(good_tape, HEAD, DATA)
    for block in good:
        good_describer.describe(block)

    bad_tape, *_ = build_image(data_checksum=b"\x34\x12")
    bad = search(bad_tape, HEAD, DATA, quiet=True)
    bad_describer = SupertapeDescriber(bad_tape, HEAD, DATA)
    for block in bad:
        bad_describer.describe(block)

    assert bad[1].cs_act == 0x1234
    assert bad[1].cs_exp == good[1].cs_exp
    assert bad[1].data == PAYLOAD


def test_describe_rejects_other_loader():
    tape, *_ = build_image()
    describer = SupertapeDescriber(tape, HEAD, DATA)
    with pytest.raises(ValueError):
        describer.describe(Block("SPAV1", 20, 30, 40, 50))