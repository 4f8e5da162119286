"""Saving and loading the remapper configuration as a checksummed block."""

import struct
from dataclasses import dataclass, replace
from typing import Optional

from hidremap.crc import crc32
from hidremap.state import NEXPRESSIONS, NMACROS, NMACROS_8
from hidremap.types import (
    EXPR_VAL,
    MACRO_ITEM,
    MAPPING_CONFIG,
    MAPPING_CONFIG_V10,
    PERSIST_CONFIG,
    PERSIST_CONFIG_V4,
    PERSIST_CONFIG_V5,
    PERSIST_CONFIG_V7,
    PERSIST_CONFIG_V9,
    PERSIST_CONFIG_V10,
    PERSIST_CONFIG_V12,
    QUIRK,
    UINT16_VAL,
    ExprElem,
    MappingConfig,
    Op,
    Quirk,
)

__all__ = [
    "CONFIG_VERSION",
    "ConfigTooBigError",
    "checksum_ok",
    "persisted_version_ok",
    "load_config",
    "persist_config",
]

CONFIG_VERSION = 17
OLDEST_CONFIG_VERSION = 3

FLAG_UNMAPPED_PASSTHROUGH = 0x01
FLAG_UNMAPPED_PASSTHROUGH_MASK = 0b00001111
FLAG_UNMAPPED_PASSTHROUGH_BIT = 0
FLAG_IGNORE_AUTH_DEV_INPUTS_BIT = 4
FLAG_GPIO_OUTPUT_MODE_BIT = 5

_CRC = struct.Struct("<I")
_U8 = 0xFF
_U16 = 0xFFFF
_U32 = 0xFFFFFFFF


class ConfigTooBigError(ValueError):
    """The configuration does not fit in the space reserved for it."""

    def __init__(self, needed: int, available: int):
        super().__init__(
            f"config needs {needed} bytes but only {available} are available"
        )
        self.needed = needed
        self.available = available


def checksum_ok(data) -> bool:
    """Tell whether the trailing CRC-32 matches the rest of the block."""
    data = bytes(data)
    if len(data) < _CRC.size:
        return False
    (stored,) = _CRC.unpack_from(data, len(data) - _CRC.size)
    return crc32(data[: -_CRC.size]) == stored


def persisted_version_ok(data) -> bool:
    """Tell whether the block's version is one this code can load."""
    data = bytes(data)
    return bool(data) and OLDEST_CONFIG_VERSION <= data[0] <= CONFIG_VERSION


_V4_FIELDS = ("version", "flags", "partial_scroll_timeout", "mapping_count", "interval_override")
_V5_FIELDS = _V4_FIELDS + ("tap_hold_threshold",)
_V7_FIELDS = _V5_FIELDS + ("gpio_debounce_time_ms",)
_V9_FIELDS = _V7_FIELDS + ("our_descriptor_number",)
_V10_FIELDS = _V9_FIELDS + ("macro_entry_duration",)
_V12_FIELDS = (
    "version",
    "flags",
    "unmapped_passthrough_layer_mask",
    "partial_scroll_timeout",
    "mapping_count",
    "interval_override",
    "tap_hold_threshold",
    "gpio_debounce_time_ms",
    "our_descriptor_number",
    "macro_entry_duration",
    "quirk_count",
)


@dataclass(frozen=True)
class _Format:
    header: struct.Struct
    names: tuple
    new_mappings: bool
    macro_count: int
    expression_length: Optional[struct.Struct]
    has_quirks: bool


_U8_LEN = struct.Struct("<B")

_FORMATS = {
    3: _Format(PERSIST_CONFIG_V4, _V4_FIELDS, False, 0, None, False),
    4: _Format(PERSIST_CONFIG_V4, _V4_FIELDS, False, NMACROS_8, None, False),
    5: _Format(PERSIST_CONFIG_V5, _V5_FIELDS, False, NMACROS_8, None, False),
    6: _Format(PERSIST_CONFIG_V5, _V5_FIELDS, False, NMACROS_8, _U8_LEN, False),
    7: _Format(PERSIST_CONFIG_V7, _V7_FIELDS, False, NMACROS, _U8_LEN, False),
    8: _Format(PERSIST_CONFIG_V7, _V7_FIELDS, False, NMACROS, _U8_LEN, False),
    9: _Format(PERSIST_CONFIG_V9, _V9_FIELDS, False, NMACROS, _U8_LEN, False),
    10: _Format(PERSIST_CONFIG_V10, _V10_FIELDS, False, NMACROS, _U8_LEN, False),
    11: _Format(PERSIST_CONFIG_V10, _V10_FIELDS, True, NMACROS, _U8_LEN, False),
    12: _Format(PERSIST_CONFIG_V12, _V12_FIELDS, True, NMACROS, _U8_LEN, True),
}
_CURRENT_FORMAT = _Format(PERSIST_CONFIG_V12, _V12_FIELDS, True, NMACROS, UINT16_VAL, True)


class _Reader:
    def __init__(self, data: bytes):
        self._data = data
        self._offset = 0

    def read(self, layout: struct.Struct) -> tuple:
        try:
            values = layout.unpack_from(self._data, self._offset)
        except struct.error:
            raise ValueError(
                f"config block truncated at offset {self._offset}"
            ) from None
        self._offset += layout.size
        return values

    def read_one(self, layout: struct.Struct) -> int:
        return self.read(layout)[0]

    def read_bytes(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ValueError(f"config block truncated at offset {self._offset}")
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk


def _as_op(value: int):
    try:
        return Op(value)
    except ValueError:
        return value


def _apply_header(state, version: int, header: dict) -> None:
    flags = header["flags"]
    if "unmapped_passthrough_layer_mask" in header:
        state.unmapped_passthrough_layer_mask = header["unmapped_passthrough_layer_mask"]
    elif version == 3:
        state.unmapped_passthrough_layer_mask = 1 if flags & FLAG_UNMAPPED_PASSTHROUGH else 0
    else:
        state.unmapped_passthrough_layer_mask = (
            flags & FLAG_UNMAPPED_PASSTHROUGH_MASK
        ) >> FLAG_UNMAPPED_PASSTHROUGH_BIT
    if version >= 9:
        state.ignore_auth_dev_inputs = bool(flags & (1 << FLAG_IGNORE_AUTH_DEV_INPUTS_BIT))
    if version >= 10:
        state.gpio_output_mode = int(bool(flags & (1 << FLAG_GPIO_OUTPUT_MODE_BIT)))
    state.partial_scroll_timeout = header["partial_scroll_timeout"]
    if "tap_hold_threshold" in header:
        state.tap_hold_threshold = header["tap_hold_threshold"]
    if "gpio_debounce_time_ms" in header:
        state.gpio_debounce_time = header["gpio_debounce_time_ms"] * 1000
    state.interval_override = header["interval_override"]
    # The set of emulated descriptors is defined elsewhere; the number is kept as stored.
    if "our_descriptor_number" in header:
        state.our_descriptor_number = header["our_descriptor_number"]
    if "macro_entry_duration" in header:
        state.macro_entry_duration = header["macro_entry_duration"]


def load_config(state, data) -> bool:
    """Load a persisted block into ``state``.

    Returns False, leaving ``state`` untouched, when the checksum or the
    version is not acceptable.
    """
    data = bytes(data)
    if not checksum_ok(data) or not persisted_version_ok(data):
        return False

    version = data[0]
    fmt = _FORMATS.get(version, _CURRENT_FORMAT)
    reader = _Reader(data)
    header = dict(zip(fmt.names, reader.read(fmt.header)))

    mapping_layout = MAPPING_CONFIG if fmt.new_mappings else MAPPING_CONFIG_V10
    mappings = []
    for _ in range(header["mapping_count"]):
        raw = reader.read_bytes(mapping_layout.size)
        mapping = MappingConfig.unpack(raw) if fmt.new_mappings else MappingConfig.unpack_v10(raw)
        if version == 3:
            mapping = replace(mapping, layer_mask=(1 << mapping.layer_mask) & _U8)
        mappings.append(mapping)

    macros = []
    for _ in range(fmt.macro_count):
        entries = []
        for _ in range(reader.read_one(_U8_LEN)):
            entry_len = reader.read_one(_U8_LEN)
            entries.append([reader.read_one(MACRO_ITEM) for _ in range(entry_len)])
        macros.append(entries)

    expressions = []
    if fmt.expression_length is not None:
        for _ in range(NEXPRESSIONS):
            elems = []
            for _ in range(reader.read_one(fmt.expression_length)):
                op = reader.read_one(_U8_LEN)
                val = 0
                if op in (Op.PUSH, Op.PUSH_USAGE):
                    val = reader.read_one(EXPR_VAL)
                elems.append(ExprElem(_as_op(op), val))
            expressions.append(elems)

    quirks = []
    if fmt.has_quirks:
        quirks = [
            Quirk.unpack(reader.read_bytes(QUIRK.size))
            for _ in range(header["quirk_count"])
        ]

    with state.lock:
        _apply_header(state, version, header)
        state.config_mappings.extend(mappings)
        for i, entries in enumerate(macros):
            state.macros[i] = entries
        for i, elems in enumerate(expressions):
            state.expressions[i] = elems
        state.quirks.extend(quirks)
    return True


def persist_config(state, size: int) -> bytes:
    """Serialize ``state`` into a block of exactly ``size`` bytes.

    Raises ConfigTooBigError when the configuration does not fit.
    """
    with state.lock:
        mappings = list(state.config_mappings)
        macros = [[list(entry) for entry in macro] for macro in state.macros[:NMACROS]]
        expressions = [list(expr) for expr in state.expressions[:NEXPRESSIONS]]
        quirks = list(state.quirks)
        flags = (
            (int(state.ignore_auth_dev_inputs) << FLAG_IGNORE_AUTH_DEV_INPUTS_BIT)
            | (int(state.gpio_output_mode) << FLAG_GPIO_OUTPUT_MODE_BIT)
        ) & _U8
        mapping_count = len(mappings) & _U16
        header = PERSIST_CONFIG.pack(
            CONFIG_VERSION,
            flags,
            state.unmapped_passthrough_layer_mask & _U8,
            state.partial_scroll_timeout & _U32,
            mapping_count,
            state.interval_override & _U8,
            state.tap_hold_threshold & _U32,
            (state.gpio_debounce_time // 1000) & _U8,
            state.our_descriptor_number & _U8,
            state.macro_entry_duration & _U8,
            len(quirks) & _U16,
        )

    body = bytearray(header)
    for mapping in mappings[:mapping_count]:
        body += mapping.pack()
    for macro in macros:
        body.append(len(macro) & _U8)
        for entry in macro:
            body.append(len(entry) & _U8)
            for usage in entry:
                body += MACRO_ITEM.pack(usage & _U32)
    for expr in expressions:
        body += UINT16_VAL.pack(len(expr) & _U16)
        for elem in expr:
            body.append(int(elem.op) & _U8)
            if elem.has_value():
                body += EXPR_VAL.pack(elem.val & _U32)
    for quirk in quirks:
        body += quirk.pack()

    needed = len(body) + _CRC.size
    if needed > size:
        raise ConfigTooBigError(needed, size)

    body += bytes(size - needed)
    body += _CRC.pack(crc32(body))
    return bytes(body)