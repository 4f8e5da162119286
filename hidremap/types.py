"""Shared enums, records and wire layouts of the remapper configuration."""

import struct
from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "ConfigCommand",
    "Op",
    "PersistConfigReturnCode",
    "ReportType",
    "UsageDef",
    "MappingConfig",
    "Quirk",
    "ExprElem",
    "UsageRle",
]


class ConfigCommand(IntEnum):
    NO_COMMAND = 0
    RESET_INTO_BOOTSEL = 1
    SET_CONFIG = 2
    GET_CONFIG = 3
    CLEAR_MAPPING = 4
    ADD_MAPPING = 5
    GET_MAPPING = 6
    PERSIST_CONFIG = 7
    GET_OUR_USAGES = 8
    GET_THEIR_USAGES = 9
    SUSPEND = 10
    RESUME = 11
    PAIR_NEW_DEVICE = 12
    CLEAR_BONDS = 13
    FLASH_B_SIDE = 14
    CLEAR_MACROS = 15
    APPEND_TO_MACRO = 16
    GET_MACRO = 17
    INVALID_COMMAND = 18
    CLEAR_EXPRESSIONS = 19
    APPEND_TO_EXPRESSION = 20
    GET_EXPRESSION = 21
    SET_MONITOR_ENABLED = 22
    CLEAR_QUIRKS = 23
    ADD_QUIRK = 24
    GET_QUIRK = 25


class Op(IntEnum):
    PUSH = 0
    PUSH_USAGE = 1
    INPUT_STATE = 2
    ADD = 3
    MUL = 4
    EQ = 5
    TIME = 6
    MOD = 7
    GT = 8
    NOT = 9
    INPUT_STATE_BINARY = 10
    ABS = 11
    DUP = 12
    SIN = 13
    COS = 14
    DEBUG = 15
    AUTO_REPEAT = 16
    RELU = 17
    CLAMP = 18
    SCALING = 19
    LAYER_STATE = 20
    STICKY_STATE = 21
    TAP_STATE = 22
    HOLD_STATE = 23
    BITWISE_OR = 24
    BITWISE_AND = 25
    BITWISE_NOT = 26
    PREV_INPUT_STATE = 27
    PREV_INPUT_STATE_BINARY = 28
    STORE = 29
    RECALL = 30
    SQRT = 31
    ATAN2 = 32
    ROUND = 33
    PORT = 34
    DPAD = 35
    EOL = 36
    INPUT_STATE_FP32 = 37
    PREV_INPUT_STATE_FP32 = 38
    MIN = 39
    MAX = 40
    IFTE = 41
    DIV = 42
    SWAP = 43
    MONITOR = 44
    SIGN = 45
    SUB = 46
    PRINT_IF = 47
    TIME_SEC = 48
    LT = 49
    PLUGGED_IN = 50
    INPUT_STATE_SCALED = 51
    PREV_INPUT_STATE_SCALED = 52
    DEADZONE = 53
    DEADZONE2 = 54


class PersistConfigReturnCode(IntEnum):
    UNKNOWN = 0
    SUCCESS = 1
    CONFIG_TOO_BIG = 2


class ReportType(IntEnum):
    INPUT = 0
    OUTPUT = 1
    FEATURE = 2


QUIRK_FLAG_RELATIVE_MASK = 0b10000000
QUIRK_FLAG_SIGNED_MASK = 0b01000000
QUIRK_SIZE_MASK = 0b00111111

MACRO_ITEMS_IN_PACKET = 6
NUSAGES_IN_PACKET = 3

# Packed little-endian layouts of the configuration structures.
SET_FEATURE = struct.Struct("<Bb26sI")
GET_FEATURE = struct.Struct("<28sI")
FEATURE_REPORT_SIZE = SET_FEATURE.size

MAPPING_CONFIG_V10 = struct.Struct("<IIiBB")
MAPPING_CONFIG = struct.Struct("<IIiBBB")

PERSIST_CONFIG_V4 = struct.Struct("<BBIIB")
PERSIST_CONFIG_V5 = struct.Struct("<BBIIBI")
PERSIST_CONFIG_V6 = PERSIST_CONFIG_V5
PERSIST_CONFIG_V7 = struct.Struct("<BBIIBIB")
PERSIST_CONFIG_V9 = struct.Struct("<BBIIBIBB")
PERSIST_CONFIG_V10 = struct.Struct("<BBIIBIBBB")
PERSIST_CONFIG_V11 = PERSIST_CONFIG_V10
PERSIST_CONFIG_V12 = struct.Struct("<BBBIHBIBBBH")
PERSIST_CONFIG_V13 = PERSIST_CONFIG_V12
PERSIST_CONFIG = PERSIST_CONFIG_V13

GET_CONFIG = struct.Struct("<BBBIHIIBIBBBH")
SET_CONFIG = struct.Struct("<BBIBIBBB")
GET_INDEXED = struct.Struct("<I")
APPEND_TO_MACRO = struct.Struct(f"<BB{MACRO_ITEMS_IN_PACKET}I")
GET_MACRO = struct.Struct("<II")
GET_MACRO_RESPONSE = struct.Struct(f"<B{MACRO_ITEMS_IN_PACKET}I")
MACRO_ITEM = struct.Struct("<I")
USAGE_RLE = struct.Struct("<II")
EXPR_VAL = struct.Struct("<I")
GET_EXPR = struct.Struct("<II")
APPEND_TO_EXPR = struct.Struct("<BB24s")
GET_EXPR_RESPONSE = struct.Struct("<B27s")
PERSIST_CONFIG_RESPONSE = struct.Struct("<b")
MONITOR = struct.Struct("<B")
MONITOR_REPORT_ITEM = struct.Struct("<IiB")
UINT16_VAL = struct.Struct("<H")
QUIRK = struct.Struct("<HHBBIHB")


def _require(data, layout: struct.Struct, what: str) -> bytes:
    data = bytes(data)
    if len(data) < layout.size:
        raise ValueError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return data


@dataclass
class UsageDef:
    """Where a usage lives inside a report and how its value is interpreted."""

    report_id: int
    size: int
    bitpos: int
    is_relative: bool
    logical_minimum: int
    logical_maximum: int
    is_array: bool = False
    should_be_scaled: bool = False
    index: int = 0
    count: int = 0
    usage_maximum: int = 0
    index_mask: int = 0


@dataclass(frozen=True)
class MappingConfig:
    """One configured mapping from a source usage to a target usage."""

    target_usage: int
    source_usage: int
    scaling: int = 1000
    layer_mask: int = 1
    flags: int = 0
    hub_ports: int = 0

    def pack(self) -> bytes:
        return MAPPING_CONFIG.pack(
            self.target_usage,
            self.source_usage,
            self.scaling,
            self.layer_mask,
            self.flags,
            self.hub_ports,
        )

    @classmethod
    def unpack(cls, data) -> "MappingConfig":
        data = _require(data, MAPPING_CONFIG, "mapping")
        return cls(*MAPPING_CONFIG.unpack_from(data))

    @classmethod
    def unpack_v10(cls, data) -> "MappingConfig":
        """Decode the older layout that has no hub port field."""
        data = _require(data, MAPPING_CONFIG_V10, "mapping")
        return cls(*MAPPING_CONFIG_V10.unpack_from(data), hub_ports=0)


@dataclass(frozen=True)
class Quirk:
    """A manual override of a usage's position in a device's report."""

    vendor_id: int
    product_id: int
    interface: int
    report_id: int
    usage: int
    bitpos: int
    size_flags: int

    @property
    def relative(self) -> bool:
        return bool(self.size_flags & QUIRK_FLAG_RELATIVE_MASK)

    @property
    def signed(self) -> bool:
        return bool(self.size_flags & QUIRK_FLAG_SIGNED_MASK)

    @property
    def size(self) -> int:
        return self.size_flags & QUIRK_SIZE_MASK

    def pack(self) -> bytes:
        return QUIRK.pack(
            self.vendor_id,
            self.product_id,
            self.interface,
            self.report_id,
            self.usage,
            self.bitpos,
            self.size_flags,
        )

    @classmethod
    def unpack(cls, data) -> "Quirk":
        data = _require(data, QUIRK, "quirk")
        return cls(*QUIRK.unpack_from(data))


@dataclass(frozen=True)
class ExprElem:
    """One element of an expression: an opcode and, for pushes, a value."""

    op: int
    val: int = 0

    def has_value(self) -> bool:
        return self.op in (Op.PUSH, Op.PUSH_USAGE)


@dataclass(frozen=True)
class UsageRle:
    """A run of consecutive usages starting at ``usage``."""

    usage: int
    count: int

    def pack(self) -> bytes:
        return USAGE_RLE.pack(self.usage, self.count)