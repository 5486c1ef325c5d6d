from datetime import datetime, timezone

import pytest

from hubble.errors import MissingObserverError, UnknownBodyError
from hubble.models import BodyPackage
from hubble.protocol import (
    BODY_NAMES,
    PROTOCOL_V1,
    PROTOCOL_V2,
    SENTINEL_HOUR,
    SENTINEL_MINUTE,
    BitReader,
    BitWriter,
    decode_body_package,
    decode_request,
    encode_body_package,
    encode_request,
    encode_response,
    encode_signed,
    pack_body_package,
)

WHEN = datetime(2025, 6, 21, 12, 0, tzinfo=timezone.utc)


def _package(**overrides) -> BodyPackage:
    fields = dict(
        body_id=3,
        azimuth=200,
        altitude=-12,
        rise_hour=5,
        rise_minute=41,
        set_hour=20,
        set_minute=7,
        luminance_x10=-23,
        phase=0,
    )
    fields.update(overrides)
    return BodyPackage(**fields)


def test_body_table_layout():
    assert len(BODY_NAMES) == 29
    assert BODY_NAMES[0] == "Moon"
    assert BODY_NAMES[9] == "Sun"
    assert BODY_NAMES[10] == "Aries"
    assert BODY_NAMES[21] == "Pisces"
    assert BODY_NAMES[22:] == (
        "Orion",
        "Ursa Major",
        "Ursa Minor",
        "Cassiopeia",
        "Cygnus",
        "Crux",
        "Lyra",
    )


def test_bit_writer_is_lsb_first():
    writer = BitWriter(2)
    writer.write(0b101, 3)
    writer.write(0b11111, 5)
    writer.write(0x1, 1)
    assert writer.getvalue() == bytes([0b11111101, 0b00000001])


def test_bit_writer_rejects_overflow():
    writer = BitWriter(1)
    writer.write(0, 6)
    with pytest.raises(ValueError):
        writer.write(0, 3)


def test_bit_reader_reads_back_writer_fields():
    writer = BitWriter(3)
    for value, width in [(17, 5), (5, 3), (300, 9), (1, 1)]:
        writer.write(value, width)
    reader = BitReader(writer.getvalue())
    assert [reader.read(w) for w in (5, 3, 9, 1)] == [17, 5, 300, 1]


@pytest.mark.parametrize(
    ("value", "expected"),
    [(-90, 166), (-1, 255), (0, 0), (90, 90), (-120, 166), (-0.4, 0), (2.5, 3)],
)
def test_encode_signed_eight_bits(value, expected):
    assert encode_signed(value, 8, -90, 90) == expected


def test_v2_layout_is_eight_bytes_with_trailing_phase():
    data = pack_body_package(_package(body_id=0, phase=5), PROTOCOL_V2)
    assert len(data) == 8
    assert data[0] == 0  # Body id occupies the whole first byte
    # Phase sits at bits 56..58
    assert data[7] & 0b111 == 5
    assert data[7] >> 3 == 0


def test_v1_layout_packs_body_and_phase_in_first_byte():
    data = pack_body_package(_package(body_id=3, phase=6), PROTOCOL_V1)
    assert len(data) == 7
    assert data[0] == 3 | (6 << 5)


@pytest.mark.parametrize("version", [PROTOCOL_V1, PROTOCOL_V2])
def test_decode_recovers_fields(version):
    package = _package(phase=6)
    assert decode_body_package(pack_body_package(package, version)) == package


def test_decode_rejects_bad_length():
    with pytest.raises(ValueError):
        decode_body_package(b"\x00" * 6)


def test_unsupported_version():
    with pytest.raises(ValueError):
        pack_body_package(_package(), version=3)


def test_encode_is_pure_and_repeatable(ephemeris, observer):
    first = encode_body_package(ephemeris, 9, observer, WHEN)
    second = encode_body_package(ephemeris, 9, observer, WHEN)
    assert first == second


def test_encode_uses_local_rise_set_times(ephemeris, observer):
    package = decode_body_package(encode_body_package(ephemeris, 9, observer, WHEN))
    assert package.body_id == 9
    assert (package.azimuth, package.altitude) == (123, 46)
    # Stub Sun rises 09:30 UTC and sets 00:30 UTC; New York is UTC-4 in June
    assert (package.rise_hour, package.rise_minute) == (5, 30)
    assert (package.set_hour, package.set_minute) == (20, 30)
    assert package.luminance_x10 == -10
    assert package.phase == 0


def test_encode_moon_carries_phase(ephemeris, observer):
    ephemeris.moon_angle = 179.0
    package = decode_body_package(encode_body_package(ephemeris, 0, observer, WHEN))
    assert package.phase == 4
    assert package.luminance_x10 == -123


def test_altitude_and_azimuth_are_clamped(ephemeris, observer):
    ephemeris.horizontal = lambda body, obs, when: (-5.0, 95.0)
    clamped = decode_body_package(encode_body_package(ephemeris, 9, observer, WHEN))
    ephemeris.horizontal = lambda body, obs, when: (0.0, 90.0)
    limit = decode_body_package(encode_body_package(ephemeris, 9, observer, WHEN))
    assert clamped.altitude == limit.altitude == 90
    assert clamped.azimuth == 0


def test_no_rise_encodes_sentinels(ephemeris, observer):
    ephemeris.circumpolar.add("Sun")
    package = decode_body_package(encode_body_package(ephemeris, 9, observer, WHEN))
    assert (package.rise_hour, package.rise_minute) == (SENTINEL_HOUR, SENTINEL_MINUTE)
    assert (package.set_hour, package.set_minute) == (SENTINEL_HOUR, SENTINEL_MINUTE)
    assert not package.has_rise
    assert not package.has_set


def test_constellations_skip_rise_set(ephemeris, observer):
    package = decode_body_package(encode_body_package(ephemeris, 22, observer, WHEN))
    assert ephemeris.calls["search_rise_set"] == 0
    assert not package.has_rise
    assert package.azimuth == 123


def test_each_field_degrades_independently(ephemeris, observer):
    ephemeris.failing = {"horizontal", "magnitude", "moon_phase"}
    package = decode_body_package(encode_body_package(ephemeris, 0, observer, WHEN))
    assert (package.azimuth, package.altitude) == (0, 0)
    assert package.luminance_x10 == 0
    assert package.phase == 0
    assert package.has_rise  # Rise/set still computed


def test_unknown_body_raises(ephemeris, observer):
    with pytest.raises(UnknownBodyError):
        encode_body_package(ephemeris, 29, observer, WHEN)
    with pytest.raises(UnknownBodyError):
        encode_body_package(ephemeris, -1, observer, WHEN)


def test_missing_observer_raises(ephemeris):
    with pytest.raises(MissingObserverError):
        encode_body_package(ephemeris, 0, None, WHEN)


@pytest.mark.parametrize("body_id", [0, 9, 28])
def test_request_round_trip(body_id):
    assert decode_request(encode_request(body_id)) == body_id


@pytest.mark.parametrize("payload", [None, {}, {"REQUEST_BODY": None}, {"OTHER": 1}])
def test_request_without_body(payload):
    assert decode_request(payload) is None


def test_request_with_non_integer_is_ignored(caplog):
    assert decode_request({"REQUEST_BODY": "3"}) is None
    assert "non-integer" in caplog.text


def test_response_carries_package_bytes():
    data = pack_body_package(_package(), PROTOCOL_V2)
    assert encode_response(data) == {"BODY_PACKAGE": list(data)}
