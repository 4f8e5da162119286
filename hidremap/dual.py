"""Messages exchanged between the two halves of a dual-chip remapper."""

import struct
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import ClassVar, Optional

__all__ = [
    "DualCommand",
    "DeviceConnected",
    "DeviceDisconnected",
    "ReportReceived",
    "BInit",
    "SendOutReport",
    "SetFeatureReport",
    "GetFeatureReport",
    "GetFeatureResponse",
    "SetFeatureComplete",
    "MidiReceived",
    "SimpleCommand",
    "encode_message",
    "decode_message",
]


class DualCommand(IntEnum):
    DEVICE_CONNECTED = 1
    DEVICE_DISCONNECTED = 2
    REPORT_RECEIVED = 3
    REQUEST_B_INIT = 4
    B_INIT = 5
    RESTART = 6
    SEND_OUT_REPORT = 7
    START_OF_FRAME = 8
    SET_FEATURE_REPORT = 9
    GET_FEATURE_REPORT = 10
    GET_FEATURE_RESPONSE = 11
    SET_FEATURE_COMPLETE = 12
    MIDI_RECEIVED = 13


_SIMPLE_COMMANDS = frozenset(
    {DualCommand.REQUEST_B_INIT, DualCommand.RESTART, DualCommand.START_OF_FRAME}
)


@dataclass(frozen=True)
class _Message:
    command: ClassVar[DualCommand]
    _layout: ClassVar[struct.Struct]
    _tail: ClassVar[Optional[str]] = None

    def __post_init__(self):
        if self._tail is not None:
            object.__setattr__(self, self._tail, bytes(getattr(self, self._tail)))


@dataclass(frozen=True)
class DeviceConnected(_Message):
    vid: int
    pid: int
    dev_addr: int
    interface: int
    hub_port: int
    itf_num: int
    report_descriptor: bytes = b""

    command: ClassVar[DualCommand] = DualCommand.DEVICE_CONNECTED
    _layout: ClassVar[struct.Struct] = struct.Struct("<HHBBBB")
    _tail: ClassVar[Optional[str]] = "report_descriptor"


@dataclass(frozen=True)
class DeviceDisconnected(_Message):
    dev_addr: int
    interface: int

    command: ClassVar[DualCommand] = DualCommand.DEVICE_DISCONNECTED
    _layout: ClassVar[struct.Struct] = struct.Struct("<BB")


@dataclass(frozen=True)
class ReportReceived(_Message):
    dev_addr: int
    interface: int
    report: bytes = b""

    command: ClassVar[DualCommand] = DualCommand.REPORT_RECEIVED
    _layout: ClassVar[struct.Struct] = struct.Struct("<BB")
    _tail: ClassVar[Optional[str]] = "report"


@dataclass(frozen=True)
class BInit(_Message):
    interval_override: int

    command: ClassVar[DualCommand] = DualCommand.B_INIT
    _layout: ClassVar[struct.Struct] = struct.Struct("<B")


@dataclass(frozen=True)
class SendOutReport(_Message):
    dev_addr: int
    interface: int
    report_id: int
    report: bytes = b""

    command: ClassVar[DualCommand] = DualCommand.SEND_OUT_REPORT
    _layout: ClassVar[struct.Struct] = struct.Struct("<BBB")
    _tail: ClassVar[Optional[str]] = "report"


@dataclass(frozen=True)
class SetFeatureReport(_Message):
    dev_addr: int
    interface: int
    report_id: int
    report: bytes = b""

    command: ClassVar[DualCommand] = DualCommand.SET_FEATURE_REPORT
    _layout: ClassVar[struct.Struct] = struct.Struct("<BBB")
    _tail: ClassVar[Optional[str]] = "report"


@dataclass(frozen=True)
class GetFeatureReport(_Message):
    dev_addr: int
    interface: int
    report_id: int
    length: int

    command: ClassVar[DualCommand] = DualCommand.GET_FEATURE_REPORT
    _layout: ClassVar[struct.Struct] = struct.Struct("<BBBB")


@dataclass(frozen=True)
class GetFeatureResponse(_Message):
    dev_addr: int
    interface: int
    report_id: int
    report: bytes = b""

    command: ClassVar[DualCommand] = DualCommand.GET_FEATURE_RESPONSE
    _layout: ClassVar[struct.Struct] = struct.Struct("<BBB")
    _tail: ClassVar[Optional[str]] = "report"


@dataclass(frozen=True)
class SetFeatureComplete(_Message):
    dev_addr: int
    interface: int
    report_id: int

    command: ClassVar[DualCommand] = DualCommand.SET_FEATURE_COMPLETE
    _layout: ClassVar[struct.Struct] = struct.Struct("<BBB")


@dataclass(frozen=True)
class MidiReceived(_Message):
    hub_port: int
    msg: bytes

    command: ClassVar[DualCommand] = DualCommand.MIDI_RECEIVED
    _layout: ClassVar[struct.Struct] = struct.Struct("<B4s")

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "msg", bytes(self.msg))
        if len(self.msg) != 4:
            raise ValueError(f"MIDI message must be 4 bytes, got {len(self.msg)}")


@dataclass(frozen=True)
class SimpleCommand:
    """A message made of its command byte alone."""

    command: DualCommand

    def __post_init__(self):
        command = DualCommand(self.command)
        if command not in _SIMPLE_COMMANDS:
            raise ValueError(f"{command.name} carries a payload")
        object.__setattr__(self, "command", command)


_BY_COMMAND = {
    cls.command: cls
    for cls in (
        DeviceConnected,
        DeviceDisconnected,
        ReportReceived,
        BInit,
        SendOutReport,
        SetFeatureReport,
        GetFeatureReport,
        GetFeatureResponse,
        SetFeatureComplete,
        MidiReceived,
    )
}


def _fixed_names(cls):
    return [f.name for f in fields(cls) if f.name != cls._tail]


def encode_message(message) -> bytes:
    """Serialize a message into its wire form."""
    if isinstance(message, SimpleCommand):
        return bytes([message.command])
    cls = type(message)
    if _BY_COMMAND.get(getattr(cls, "command", None)) is not cls:
        raise TypeError(f"not a dual message: {message!r}")
    values = [getattr(message, name) for name in _fixed_names(cls)]
    try:
        body = cls._layout.pack(*values)
    except struct.error as exc:
        raise ValueError(f"cannot encode {cls.__name__}: {exc}") from None
    tail = getattr(message, cls._tail) if cls._tail else b""
    return bytes([cls.command]) + body + tail


def decode_message(data):
    """Parse a message from its wire form."""
    data = bytes(data)
    if not data:
        raise ValueError("empty message")
    try:
        command = DualCommand(data[0])
    except ValueError:
        raise ValueError(f"unknown command {data[0]}") from None
    if command in _SIMPLE_COMMANDS:
        return SimpleCommand(command)
    cls = _BY_COMMAND[command]
    body = data[1:]
    if len(body) < cls._layout.size:
        raise ValueError(
            f"{cls.__name__} needs {cls._layout.size} payload bytes, got {len(body)}"
        )
    kwargs = dict(zip(_fixed_names(cls), cls._layout.unpack_from(body)))
    if cls._tail:
        kwargs[cls._tail] = body[cls._layout.size:]
    return cls(**kwargs)