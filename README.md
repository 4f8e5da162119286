# hidremap

Building blocks for a USB HID remapper, in pure Python with no dependencies.

## Modules

- `hidremap.crc` – `crc32(data)`, the standard CRC-32 that protects configuration blocks and command packets.
- `hidremap.types` – the enums `ConfigCommand`, `Op`, `PersistConfigReturnCode` and `ReportType`, and the records `UsageDef`, `MappingConfig`, `Quirk`, `ExprElem` and `UsageRle`. `MappingConfig` and `Quirk` have `pack()` and `unpack()` for their little-endian wire layouts. `MappingConfig.unpack_v10()` reads the older layout that has no hub-port byte. `UsageRle` has `pack()`. `ExprElem.has_value()` tells whether an element carries a 32-bit value, which is the case for `PUSH` and `PUSH_USAGE`.
- `hidremap.dual` – the messages exchanged between the two halves of a dual-chip remapper. It has one frozen dataclass per message: `DeviceConnected`, `DeviceDisconnected`, `ReportReceived`, `BInit`, `SendOutReport`, `SetFeatureReport`, `GetFeatureReport`, `GetFeatureResponse`, `SetFeatureComplete` and `MidiReceived`. `SimpleCommand` covers the messages that are only a command byte (`REQUEST_B_INIT`, `RESTART`, `START_OF_FRAME`). `encode_message` and `decode_message` convert between messages and bytes. Both raise `ValueError` on malformed input.
- `hidremap.descriptor_parser` – `parse_descriptor(report_descriptor)` walks a HID report descriptor and returns a `ParsedDescriptor`, which holds:
  - the input, output and feature usages, mapped from report ID to usage to `UsageDef`;
  - whether the descriptor uses report IDs;
  - the size in bytes of each report.

  Usages that start beyond the first 64 bytes of a report are dropped.
- `hidremap.state` – `RemapperState`, a dataclass that holds what is known about connected devices, together with the settings, mappings, macros (32), expressions (8) and quirks. It has these methods:
  - `register_descriptor(interface, report_descriptor)` parses a descriptor and records its usages and output report buffers.
  - `assign_interface_index(interface)` gives the interface the lowest free index from 0 to 31.
  - `clear_descriptor_data(dev_addr)` forgets a device.
- `hidremap.persist` – the checksummed, versioned configuration block.
  - `load_config(state, data)` accepts blocks of versions 3 through 17. It returns `False` and leaves the state untouched when the checksum or the version is wrong.
  - `persist_config(state, size)` returns a version-17 block of exactly `size` bytes. It raises `ConfigTooBigError` when the configuration does not fit.
  - `checksum_ok` and `persisted_version_ok` are the checks that `load_config` uses.
- `hidremap.config_protocol` – `ConfigProtocol` serves the 32-byte feature-report configuration interface.
  - `handle_set_report(report_id, data)` carries out a command. A packet with a bad checksum or a version other than 17 is recorded as invalid.
  - `handle_get_report(report_id, reqlen)` returns the answer to the last command, or `b""` when there is none.
  - `persist()` serializes the configuration and passes the block to the `save` callback, then records and returns the outcome.
  - Platform actions are plain callbacks given to the constructor: rebooting into the bootloader, pairing, clearing bonds, flashing the other side, reacting to a changed polling interval, and resetting state.

## Installation

```
pip install .
```

Python 3.10 or later is required.

## Example

```python
import struct

from hidremap.config_protocol import CONFIG_SIZE, ConfigProtocol
from hidremap.crc import crc32
from hidremap.descriptor_parser import parse_descriptor
from hidremap.dual import DeviceDisconnected, encode_message
from hidremap.persist import load_config, persist_config
from hidremap.state import RemapperState
from hidremap.types import ConfigCommand

assert crc32(b"123456789") == 0xCBF43926

mouse = bytes([
    0x05, 0x01, 0x09, 0x02, 0xA1, 0x01, 0x09, 0x01, 0xA1, 0x00,
    0x05, 0x09, 0x19, 0x01, 0x29, 0x03, 0x15, 0x00, 0x25, 0x01,
    0x95, 0x03, 0x75, 0x01, 0x81, 0x02, 0x95, 0x01, 0x75, 0x05,
    0x81, 0x01, 0x05, 0x01, 0x09, 0x30, 0x09, 0x31, 0x15, 0x81,
    0x25, 0x7F, 0x75, 0x08, 0x95, 0x02, 0x81, 0x06, 0xC0, 0xC0,
])
parsed = parse_descriptor(mouse)

state = RemapperState()
state.register_descriptor(0x0100, mouse)

block = persist_config(state, 16384)
restored = RemapperState()
assert load_config(restored, block)

protocol = ConfigProtocol(state=state, report_id=100, persisted_config_size=16384)
body = struct.pack("<Bb26s", 17, ConfigCommand.GET_CONFIG, b"")
protocol.handle_set_report(100, body + crc32(body).to_bytes(4, "little"))
reply = protocol.handle_get_report(100, CONFIG_SIZE)
assert len(reply) == CONFIG_SIZE and reply[0] == 17

assert encode_message(DeviceDisconnected(dev_addr=1, interface=0)) == b"\x02\x01\x00"
```

## What the package does not do

- It does not talk to USB or Bluetooth hardware. It neither enumerates devices nor sends reports.
- It does not apply mappings, macros or expressions to incoming reports.
- It does not store configuration anywhere. `persist_config` returns bytes, and `ConfigProtocol.persist` hands them to your `save` callback.
- It does not know the set of emulated device descriptors. `load_config` keeps the stored descriptor number as it is, and `ConfigProtocol` bounds it only when `descriptor_count` is given.

## Running the tests

```
pip install .[test]
pytest
```