import pytest

from user import tl500

from fakes import make_frame


def test_empty_frame_raises_regardless_of_payload():
    buf = bytearray(range(64))
    buf[0] = 0
    buf[1] = 0
    with pytest.raises(tl500.EmptyFrame):
        tl500.decode_frame(bytes(buf))
    with pytest.raises(tl500.FrameError):
        tl500.decode_frame(bytes(64))


def test_frame_with_only_one_marker_byte_is_decoded():
    buf = bytearray(64)
    buf[0] = 0x01
    fields = tl500.decode_frame(bytes(buf))
    assert fields == (0, 0, 0)


def test_decode_field_layout():
    buf = bytearray(64)
    buf[0:10] = bytes([0x00, 0x0a, 0x12, 0x00, 0x02, 0x00,
                       0x01, 0x02, 0x03, 0x04])
    fields = tl500.decode_frame(bytes(buf))
    assert fields.sensor_id == 18
    assert fields.raw_value == 512
    assert fields.elapsed == 0x04030201


def test_decode_sensor_id_high_byte():
    fields = tl500.decode_frame(make_frame(8818, 3095, elapsed=7771))
    assert fields.sensor_id == 8818
    assert fields.raw_value == 3095
    assert fields.elapsed == 7771


def test_decode_max_values():
    buf = bytes([0x00, 0x0a] + [0xff] * 62)
    fields = tl500.decode_frame(buf)
    assert fields.sensor_id == 0xffff
    assert fields.raw_value == 0xffff
    assert fields.elapsed == 0xffffffff


def test_decode_is_pure():
    buf = make_frame(10001, 100, elapsed=42)
    assert tl500.decode_frame(buf) == tl500.decode_frame(buf)


def test_calibrate_base_unit():
    measurement, unit = tl500.calibrate(18, 512)
    assert measurement == pytest.approx(3.9936)
    assert unit == '°C'


def test_calibrate_humidity():
    measurement, unit = tl500.calibrate(10001, 100)
    assert measurement == pytest.approx(3.928)
    assert unit == '%RH'


def test_calibrate_secondary_temperature():
    measurement, unit = tl500.calibrate(10002, 0)
    assert measurement == -39.58
    assert unit == '°C'


def test_calibrate_boundary_at_10000():
    # formula uses the >= 10000 split, label uses the strict > 10000 rule
    measurement, unit = tl500.calibrate(10000, 1000)
    assert measurement == pytest.approx(-39.58 + 10.0)
    assert unit == '°C'
    assert tl500.calibration_class(10000) == tl500.CLASS_TEMPERATURE_SECONDARY


def test_calibrate_just_below_boundary():
    measurement, unit = tl500.calibrate(9999, 1000)
    assert measurement == pytest.approx(7.8)
    assert unit == '°C'
    assert tl500.calibration_class(9999) == tl500.CLASS_BASE_UNIT


@pytest.mark.parametrize('sensor_id, expected', [
    (0, tl500.CLASS_BASE_UNIT),
    (8818, tl500.CLASS_BASE_UNIT),
    (10002, tl500.CLASS_TEMPERATURE_SECONDARY),
    (10003, tl500.CLASS_HUMIDITY),
    (0xffff, tl500.CLASS_HUMIDITY),
])
def test_calibration_class(sensor_id, expected):
    assert tl500.calibration_class(sensor_id) == expected


def test_calibrate_is_pure():
    assert tl500.calibrate(10003, 1234) == tl500.calibrate(10003, 1234)


def test_make_reading():
    buf = make_frame(8818, 3095, elapsed=5)
    reading = tl500.make_reading(buf, ts=1450000000)
    assert reading.sensor_id == 8818
    assert reading.raw_value == 3095
    assert reading.measurement == pytest.approx(24.141)
    assert reading.unit == '°C'
    assert reading.elapsed == 5
    assert reading.captured_at == 1450000000
    assert reading.frame == buf


def test_make_reading_rejects_empty_frame():
    with pytest.raises(tl500.EmptyFrame):
        tl500.make_reading(bytes(64), ts=0)
