import time

from user import tl500

from fakes import make_frame

TS = 1450000000
HEX = '000a72220c170c' + '00' * 57


def reading():
    return tl500.make_reading(make_frame(8818, 3095, elapsed=12), ts=TS)


def test_parse_format():
    assert tl500.ReadingFormatter.parse_format('0') == tl500.FORMAT_VERBOSE
    assert tl500.ReadingFormatter.parse_format('1') == tl500.FORMAT_CSV
    assert tl500.ReadingFormatter.parse_format('2') == tl500.FORMAT_RAW
    assert tl500.ReadingFormatter.parse_format('2x') == tl500.FORMAT_RAW
    assert tl500.ReadingFormatter.parse_format('7') == tl500.FORMAT_VERBOSE
    assert tl500.ReadingFormatter.parse_format('') == tl500.FORMAT_VERBOSE
    assert tl500.ReadingFormatter.parse_format(None) == tl500.FORMAT_VERBOSE


def test_unknown_format_means_verbose():
    assert tl500.ReadingFormatter(9).fmt == tl500.FORMAT_VERBOSE


def test_verbose():
    text = tl500.ReadingFormatter().format(reading())
    first, second = text.split('\n')
    assert first.startswith('Received data %s ' % time.asctime(time.localtime(TS)))
    assert ' 00 0a 72 22 0c 17 0c 00 00 ' in first
    assert second == ('From sensor 8818 we get a raw value 3095. '
                      'We guess this means 24.14 °C. Time: 12')


def test_csv():
    text = tl500.ReadingFormatter(tl500.FORMAT_CSV).format(reading())
    date = time.asctime(time.localtime(TS))
    assert text == '8818, 3095, 24.14, °C, 12, %s, %s' % (date, HEX)


def test_raw():
    text = tl500.ReadingFormatter(tl500.FORMAT_RAW).format(reading())
    assert text == HEX
    assert len(text) == 128


def test_transfer_error():
    err = tl500.IncompleteTransfer(64, 7, 0)
    for fmt in (tl500.FORMAT_VERBOSE, tl500.FORMAT_CSV, tl500.FORMAT_RAW):
        text = tl500.ReadingFormatter(fmt).format(err)
        assert text == ('Something went wrong (r == 0, actual_length == 7 , '
                        'sizeof(data) == 64 ).')
