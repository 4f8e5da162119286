import pytest

from hidremap.descriptor_parser import ParsedDescriptor, parse_descriptor
from hidremap.types import ReportType

MOUSE = bytes([
    0x05, 0x01, 0x09, 0x02, 0xA1, 0x01, 0x09, 0x01, 0xA1, 0x00,
    0x05, 0x09, 0x19, 0x01, 0x29, 0x03, 0x15, 0x00, 0x25, 0x01,
    0x95, 0x03, 0x75, 0x01, 0x81, 0x02,
    0x95, 0x01, 0x75, 0x05, 0x81, 0x01,
    0x05, 0x01, 0x09, 0x30, 0x09, 0x31, 0x09, 0x38, 0x15, 0x81, 0x25, 0x7F,
    0x75, 0x08, 0x95, 0x03, 0x81, 0x06,
    0xC0, 0xC0,
])

BUTTONS = [(0x09 << 16) | n for n in (1, 2, 3)]
X = (0x01 << 16) | 0x30
Y = (0x01 << 16) | 0x31
WHEEL = (0x01 << 16) | 0x38


@pytest.fixture
def mouse():
    return parse_descriptor(MOUSE)


def test_mouse_usages_found(mouse):
    assert set(mouse.input_usages) == {0}
    assert set(mouse.input_usages[0]) == {*BUTTONS, X, Y, WHEEL}


def test_mouse_relative_and_logical_range(mouse):
    defs = mouse.input_usages[0]
    assert defs[X].is_relative is True
    assert defs[BUTTONS[0]].is_relative is False
    assert defs[X].logical_minimum == -127
    assert defs[X].logical_maximum == 0x7F


def test_mouse_positions(mouse):
    defs = mouse.input_usages[0]
    assert defs[BUTTONS[0]].bitpos == 0
    assert defs[BUTTONS[1]].bitpos - defs[BUTTONS[0]].bitpos == 1
    assert defs[Y].bitpos - defs[X].bitpos == 8
    assert defs[WHEEL].bitpos - defs[Y].bitpos == 8
    assert defs[X].size == 8
    assert defs[BUTTONS[2]].size == 1


def test_mouse_report_size_and_no_report_id(mouse):
    assert mouse.report_sizes == {ReportType.INPUT: {0: 4}}
    assert mouse.has_report_id is False
    assert mouse.output_usages == {}
    assert mouse.feature_usages == {}


def test_trailing_zero_is_ignored(mouse):
    assert parse_descriptor(MOUSE + b"\x00") == mouse


def test_accepts_bytearray(mouse):
    assert parse_descriptor(bytearray(MOUSE)) == mouse


def test_report_id():
    desc = bytes([
        0x05, 0x01, 0x09, 0x06, 0xA1, 0x01, 0x85, 0x02,
        0x05, 0x07, 0x19, 0xE0, 0x29, 0xE7, 0x15, 0x00, 0x25, 0x01,
        0x75, 0x01, 0x95, 0x08, 0x81, 0x02, 0xC0,
    ])
    parsed = parse_descriptor(desc)
    assert parsed.has_report_id is True
    assert list(parsed.input_usages) == [2]
    defs = parsed.input_usages[2]
    assert defs[0x000700E0].bitpos == 0
    assert defs[0x000700E0].report_id == 2
    assert len(defs) == 8
    assert parsed.report_sizes[ReportType.INPUT] == {2: 1}


def test_array_with_usage_range():
    desc = bytes([
        0x05, 0x07, 0x19, 0x01, 0x29, 0x65, 0x15, 0x00, 0x25, 0x65,
        0x75, 0x08, 0x95, 0x06, 0x81, 0x00,
    ])
    parsed = parse_descriptor(desc)
    defs = parsed.input_usages[0]
    assert list(defs) == [0x00070001]
    d = defs[0x00070001]
    assert d.is_array is True
    assert d.count == 6
    assert d.index == 0
    assert d.usage_maximum == 0x00070065
    assert parsed.report_sizes[ReportType.INPUT] == {0: 6}


def test_array_usage_maximum_clipped_by_logical_range():
    desc = bytes([
        0x05, 0x07, 0x19, 0x01, 0x29, 0xFF, 0x15, 0x00, 0x25, 0x10,
        0x75, 0x08, 0x95, 0x01, 0x81, 0x00,
    ])
    d = parse_descriptor(desc).input_usages[0][0x00070001]
    assert d.usage_maximum == 0x00070001 + 0x10


def test_array_with_explicit_usages():
    desc = bytes([
        0x05, 0x01, 0x09, 0x04, 0x09, 0x05, 0x15, 0x00, 0x25, 0x01,
        0x75, 0x08, 0x95, 0x01, 0x81, 0x00,
    ])
    defs = parse_descriptor(desc).input_usages[0]
    assert defs[0x00010004].index == 0
    assert defs[0x00010005].index == 1
    assert defs[0x00010004].is_array and defs[0x00010005].is_array
    assert defs[0x00010004].bitpos == defs[0x00010005].bitpos


def test_output_report():
    desc = bytes([
        0x05, 0x08, 0x19, 0x01, 0x29, 0x05, 0x95, 0x05, 0x75, 0x01, 0x91, 0x02,
        0x95, 0x01, 0x75, 0x03, 0x91, 0x01,
    ])
    parsed = parse_descriptor(desc)
    assert parsed.input_usages == {}
    assert set(parsed.output_usages[0]) == {(0x08 << 16) | n for n in range(1, 6)}
    assert parsed.report_sizes == {ReportType.OUTPUT: {0: 1}}


def test_feature_report():
    desc = bytes([0x06, 0x00, 0xFF, 0x09, 0x01, 0x75, 0x08, 0x95, 0x01, 0xB1, 0x02])
    parsed = parse_descriptor(desc)
    assert list(parsed.feature_usages[0]) == [0xFF000001]
    assert ReportType.INPUT not in parsed.report_sizes


def test_four_byte_usage_ignores_usage_page():
    desc = bytes([
        0x05, 0x09, 0x0B, 0x30, 0x00, 0x01, 0x00,
        0x15, 0x00, 0x25, 0x01, 0x75, 0x01, 0x95, 0x01, 0x81, 0x02,
    ])
    assert list(parse_descriptor(desc).input_usages[0]) == [0x00010030]


def test_two_byte_logical_range_is_signed():
    desc = bytes([
        0x05, 0x01, 0x09, 0x30, 0x16, 0x00, 0x80, 0x26, 0xFF, 0x7F,
        0x75, 0x10, 0x95, 0x01, 0x81, 0x02,
    ])
    d = parse_descriptor(desc).input_usages[0][X]
    assert d.logical_minimum == -0x8000
    assert d.logical_maximum == 0x7FFF


def test_first_definition_of_a_usage_wins():
    desc = bytes([
        0x05, 0x01, 0x09, 0x30, 0x09, 0x30, 0x75, 0x08, 0x95, 0x02, 0x81, 0x02,
    ])
    defs = parse_descriptor(desc).input_usages[0]
    assert defs[X].bitpos == 0
    assert len(defs) == 1


def test_collection_clears_pending_usages():
    desc = bytes([0x05, 0x01, 0x09, 0x30, 0xA1, 0x00, 0x75, 0x08, 0x95, 0x01, 0x81, 0x02])
    parsed = parse_descriptor(desc)
    assert parsed.input_usages == {}
    assert parsed.report_sizes == {ReportType.INPUT: {0: 1}}


def test_usages_past_64_bytes_are_dropped():
    desc = bytes([
        0x05, 0x09, 0x19, 0x01, 0x29, 0x50, 0x15, 0x00, 0x25, 0x01,
        0x75, 0x08, 0x95, 0x50, 0x81, 0x02,
    ])
    parsed = parse_descriptor(desc)
    defs = parsed.input_usages[0]
    assert len(defs) == 64
    assert max(d.bitpos for d in defs.values()) < 64 * 8
    assert parsed.report_sizes[ReportType.INPUT] == {0: 0x50}


def test_reports_with_id_are_limited_to_63_bytes():
    desc = bytes([
        0x85, 0x01, 0x05, 0x09, 0x19, 0x01, 0x29, 0x50, 0x15, 0x00, 0x25, 0x01,
        0x75, 0x08, 0x95, 0x50, 0x81, 0x02,
    ])
    assert len(parse_descriptor(desc).input_usages[1]) == 63


def test_empty_descriptor():
    assert parse_descriptor(b"") == ParsedDescriptor()