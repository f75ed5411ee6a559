import pytest

from mcstore.crc32c import POLY, crc32c, crc32c_tables, shift_zeros, zeros_operator

MASK = 0xFFFFFFFF


def test_standard_check_value():
    assert crc32c(b"123456789") == 0xE3069283


def test_thirty_two_zero_bytes():
    assert crc32c(bytes(32)) == 0x8A9136AA


def test_empty_input_returns_previous_crc():
    assert crc32c(b"") == 0
    assert crc32c(b"", 12345) == 12345


def test_incremental_matches_whole():
    data = bytes(range(256)) * 3 + b"tail"
    whole = crc32c(data)
    first = crc32c(data[:101])
    assert crc32c(data[101:], first) == whole


def test_byte_at_a_time_matches_bulk():
    data = bytes((i * 37 + 11) & 0xFF for i in range(77))
    crc = 0
    for byte in data:
        crc = crc32c(bytes([byte]), crc)
    assert crc == crc32c(data)


def test_accepts_bytearray_and_memoryview():
    data = b"hello world, crc"
    assert crc32c(bytearray(data)) == crc32c(data)
    assert crc32c(memoryview(data)) == crc32c(data)


def test_rejects_out_of_range_crc():
    with pytest.raises(ValueError):
        crc32c(b"abc", -1)
    with pytest.raises(ValueError):
        crc32c(b"abc", 1 << 32)


def test_rejects_text():
    with pytest.raises(TypeError):
        crc32c("abc")


def test_tables_shape_and_fixed_entries():
    tables = crc32c_tables()
    assert len(tables) == 8
    assert all(len(table) == 256 for table in tables)
    assert tables[0][0] == 0
    assert tables[0][128] == POLY


def test_zeros_operator_has_32_rows():
    assert len(zeros_operator(8)) == 32


@pytest.mark.parametrize("length", [1, 2, 4, 8, 16, 256, 1024, 8192])
@pytest.mark.parametrize("crc", [0, 1, 0xDEADBEEF, MASK])
def test_shift_matches_crc_of_zeros(length, crc):
    expected = crc32c(bytes(length), crc)
    assert shift_zeros(crc ^ MASK, length) ^ MASK == expected


@pytest.mark.parametrize("length,power", [(3, 2), (100, 64), (300, 256)])
def test_non_power_of_two_uses_lower_power(length, power):
    assert zeros_operator(length) == zeros_operator(power)
    assert shift_zeros(0xCAFEBABE, length) == shift_zeros(0xCAFEBABE, power)


def test_zero_length_acts_as_one():
    assert zeros_operator(0) == zeros_operator(1)


def test_zeros_operator_rejects_negative():
    with pytest.raises(ValueError):
        zeros_operator(-1)


def test_shift_rejects_out_of_range_crc():
    with pytest.raises(ValueError):
        shift_zeros(1 << 32, 8)