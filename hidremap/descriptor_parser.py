"""Parser for HID report descriptors."""

from collections import deque
from dataclasses import dataclass, field

from hidremap.types import ReportType, UsageDef

__all__ = ["ParsedDescriptor", "parse_descriptor"]

HID_INPUT = 0x80
HID_OUTPUT = 0x90
HID_FEATURE = 0xB0
HID_COLLECTION = 0xA0
HID_USAGE_PAGE = 0x04
HID_REPORT_SIZE = 0x74
HID_REPORT_ID = 0x84
HID_REPORT_COUNT = 0x94
HID_USAGE = 0x08
HID_USAGE_MINIMUM = 0x18
HID_USAGE_MAXIMUM = 0x28
HID_LOGICAL_MINIMUM = 0x14
HID_LOGICAL_MAXIMUM = 0x24

_MAIN_ITEMS = {
    HID_INPUT: ReportType.INPUT,
    HID_OUTPUT: ReportType.OUTPUT,
    HID_FEATURE: ReportType.FEATURE,
}

# Reports longer than this are not handled; usages beyond it are dropped.
_MAX_REPORT_BYTES = 64

_U32 = 0xFFFFFFFF
_U16 = 0xFFFF


@dataclass
class ParsedDescriptor:
    """Usages found in a report descriptor, keyed by report ID and usage.

    ``report_sizes`` maps each report type to the size in bytes of every
    report ID that appears for it.
    """

    input_usages: dict = field(default_factory=dict)
    output_usages: dict = field(default_factory=dict)
    feature_usages: dict = field(default_factory=dict)
    has_report_id: bool = False
    report_sizes: dict = field(default_factory=dict)


def _signed(value: int, item_size: int) -> int:
    if item_size == 0:
        return value
    bits = item_size * 8
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


def _mark_usage(
    usage_map,
    usage,
    report_id,
    bitpos,
    size,
    is_relative,
    logical_minimum,
    logical_maximum,
    is_array=False,
    index=0,
    count=0,
    usage_maximum=0,
):
    limit = 8 * (_MAX_REPORT_BYTES if report_id == 0 else _MAX_REPORT_BYTES - 1)
    if bitpos >= limit:
        return
    reports = usage_map.setdefault(report_id, {})
    if usage in reports:
        return
    reports[usage] = UsageDef(
        report_id=report_id,
        size=size & 0xFF,
        bitpos=bitpos,
        is_relative=is_relative,
        logical_minimum=logical_minimum,
        logical_maximum=logical_maximum,
        is_array=is_array,
        index=index,
        count=count,
        usage_maximum=usage_maximum,
    )


def parse_descriptor(report_descriptor) -> ParsedDescriptor:
    """Walk a HID report descriptor and record where each usage lives."""
    data = bytes(report_descriptor)
    result = ParsedDescriptor()
    maps = {
        ReportType.INPUT: result.input_usages,
        ReportType.OUTPUT: result.output_usages,
        ReportType.FEATURE: result.feature_usages,
    }
    bitpos: dict = {}

    report_id = 0
    report_size = 0
    report_count = 0
    usage_page = 0
    usages: deque = deque()
    usage_minimum = 0
    usage_maximum = 0
    logical_minimum = 0
    logical_maximum = 0

    idx = 0
    length = len(data)
    while idx < length:
        if data[idx] == 0 and idx == length - 1:
            break

        prefix = data[idx]
        item = prefix & 0xFC
        item_size = prefix & 0x03
        if item_size == 3:
            item_size = 4
        value = int.from_bytes(data[idx + 1 : idx + 1 + item_size], "little")
        idx += 1 + item_size

        if item in _MAIN_ITEMS:
            report_type = _MAIN_ITEMS[item]
            usage_map = maps[report_type]
            positions = bitpos.setdefault(report_type, {})
            pos = positions.setdefault(report_id, 0)
            relative = bool(value & (1 << 2))
            kind = value & 0x03

            if kind == 0x02:  # variable
                if usage_minimum and usage_maximum:
                    usage = usage_minimum
                    for _ in range(report_count):
                        _mark_usage(
                            usage_map, usage, report_id, pos, report_size,
                            relative, logical_minimum, logical_maximum,
                        )
                        if usage < usage_maximum:
                            usage += 1
                        pos = (pos + report_size) & _U16
                elif usages:
                    usage = 0
                    for _ in range(report_count):
                        if usages:
                            usage = usages.popleft()
                        _mark_usage(
                            usage_map, usage, report_id, pos, report_size,
                            relative, logical_minimum, logical_maximum,
                        )
                        pos = (pos + report_size) & _U16
                else:
                    pos = (pos + report_size * report_count) & _U16
            elif kind == 0x00:  # array
                if usage_minimum and usage_maximum:
                    effective_maximum = min(
                        usage_maximum,
                        (usage_minimum + logical_maximum - logical_minimum) & _U32,
                    )
                    _mark_usage(
                        usage_map, usage_minimum, report_id, pos, report_size,
                        relative, logical_minimum, logical_maximum,
                        True, logical_minimum & _U32, report_count, effective_maximum,
                    )
                elif usages:
                    for index in range(logical_minimum, logical_maximum + 1):
                        usage = usages.popleft()
                        _mark_usage(
                            usage_map, usage, report_id, pos, report_size,
                            relative, logical_minimum, logical_maximum,
                            True, index & _U32, report_count,
                        )
                        if not usages:
                            # Further indices would repeat the last usage,
                            # which is already recorded.
                            break
                pos = (pos + report_size * report_count) & _U16
            else:  # constant
                pos = (pos + report_size * report_count) & _U16

            positions[report_id] = pos
            usages.clear()
            usage_minimum = 0
            usage_maximum = 0
        elif item == HID_COLLECTION:
            usages.clear()
            usage_minimum = 0
            usage_maximum = 0
        elif item == HID_USAGE_PAGE:
            usage_page = value
        elif item == HID_REPORT_SIZE:
            report_size = value
        elif item == HID_REPORT_ID:
            report_id = value & 0xFF
            result.has_report_id = True
        elif item == HID_REPORT_COUNT:
            report_count = value
        elif item in (HID_USAGE, HID_USAGE_MINIMUM, HID_USAGE_MAXIMUM):
            full_usage = ((usage_page << 16) | value) & _U32 if item_size <= 2 else value
            if item == HID_USAGE:
                usages.append(full_usage)
            elif item == HID_USAGE_MINIMUM:
                usage_minimum = full_usage
            else:
                usage_maximum = full_usage
        elif item == HID_LOGICAL_MINIMUM:
            logical_minimum = _signed(value, item_size)
        elif item == HID_LOGICAL_MAXIMUM:
            logical_maximum = _signed(value, item_size)

    result.report_sizes = {
        report_type: {rid: position // 8 for rid, position in positions.items()}
        for report_type, positions in bitpos.items()
    }
    return result