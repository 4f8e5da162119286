"""Mutable state shared by the remapper: device usages, settings and tables."""

import threading
from dataclasses import dataclass, field

from hidremap.descriptor_parser import ParsedDescriptor, parse_descriptor
from hidremap.types import PersistConfigReturnCode, ReportType

__all__ = ["RemapperState", "NMACROS", "NMACROS_8", "NEXPRESSIONS", "NDIGIPOTS"]

NMACROS_8 = 8
NMACROS = 32
NEXPRESSIONS = 8
NDIGIPOTS = 6

# Interface indices are 0-31; interfaces beyond 32 share the last one.
_MAX_INTERFACE_INDEX = 31


def _merge_usages(target: dict, parsed: dict) -> None:
    for report_id, usages in parsed.items():
        existing = target.setdefault(report_id, {})
        for usage, usage_def in usages.items():
            existing.setdefault(usage, usage_def)


@dataclass
class RemapperState:
    """Everything the remapper knows about connected devices and its settings.

    Interfaces are keyed by ``dev_addr << 8 | interface``; output reports by
    ``interface << 16 | report_id``.
    """

    their_usages: dict = field(default_factory=dict)
    their_out_usages: dict = field(default_factory=dict)
    their_feature_usages: dict = field(default_factory=dict)
    has_report_id_theirs: dict = field(default_factory=dict)

    out_reports: dict = field(default_factory=dict)
    prev_out_reports: dict = field(default_factory=dict)
    out_report_sizes: dict = field(default_factory=dict)
    their_out_usages_flat: dict = field(default_factory=dict)

    interface_index: dict = field(default_factory=dict)
    interface_index_in_use: int = 0

    our_usages_rle: list = field(default_factory=list)
    their_usages_rle: list = field(default_factory=list)

    need_to_persist_config: bool = False
    their_descriptor_updated: bool = False
    suspended: bool = False
    resume_pending: bool = False
    config_updated: bool = False

    unmapped_passthrough_layer_mask: int = 0b11111111
    partial_scroll_timeout: int = 1000000
    tap_hold_threshold: int = 200000
    gpio_debounce_time: int = 5000
    our_descriptor_number: int = 0
    ignore_auth_dev_inputs: bool = False
    macro_entry_duration: int = 0  # 0 means 1 ms
    gpio_output_mode: int = 0
    interval_override: int = 0

    config_mappings: list = field(default_factory=list)
    resolution_multiplier: int = 0
    macros: list = field(default_factory=lambda: [[] for _ in range(NMACROS)])
    expressions: list = field(default_factory=lambda: [[] for _ in range(NEXPRESSIONS)])
    monitor_enabled: bool = False

    gpio_out_state: list = field(default_factory=lambda: [0] * 4)
    digipot_state: list = field(default_factory=lambda: [0] * NDIGIPOTS)

    quirks: list = field(default_factory=list)

    boot_protocol_keyboard: bool = False
    boot_protocol_updated: bool = False

    persist_config_return_code: PersistConfigReturnCode = PersistConfigReturnCode.UNKNOWN

    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def assign_interface_index(self, interface: int) -> int:
        """Give an interface the lowest free index and return it."""
        with self.lock:
            if interface in self.interface_index:
                return self.interface_index[interface]
            i = 0
            while i < _MAX_INTERFACE_INDEX and (1 << i) & self.interface_index_in_use:
                i += 1
            self.interface_index[interface] = i
            self.interface_index_in_use |= 1 << i
            return i

    def register_descriptor(self, interface: int, report_descriptor) -> ParsedDescriptor:
        """Parse a device's report descriptor and record its usages."""
        parsed = parse_descriptor(report_descriptor)
        with self.lock:
            _merge_usages(self.their_usages.setdefault(interface, {}), parsed.input_usages)
            _merge_usages(
                self.their_out_usages.setdefault(interface, {}), parsed.output_usages
            )
            _merge_usages(
                self.their_feature_usages.setdefault(interface, {}), parsed.feature_usages
            )
            self.has_report_id_theirs[interface] = (
                self.has_report_id_theirs.get(interface, False) or parsed.has_report_id
            )
            self.assign_interface_index(interface)

            for report_id, size in parsed.report_sizes.get(ReportType.OUTPUT, {}).items():
                key = (interface << 16) | report_id
                self.out_report_sizes[key] = size
                self.out_reports[key] = bytearray(size)
                self.prev_out_reports[key] = bytearray(size)

            for report_id, usages in self.their_out_usages[interface].items():
                key = (interface << 16) | report_id
                for usage in usages:
                    self.their_out_usages_flat.setdefault(usage, []).append(key)

        self.their_descriptor_updated = True
        return parsed

    def clear_descriptor_data(self, dev_addr: int) -> None:
        """Forget everything known about the device at ``dev_addr``."""
        with self.lock:
            for key in [k for k in self.their_usages if k >> 8 == dev_addr]:
                self.has_report_id_theirs.pop(key, None)
                index = self.interface_index.pop(key, 0)
                self.interface_index_in_use &= ~(1 << index)
                del self.their_usages[key]

            for table in (self.their_feature_usages, self.their_out_usages):
                for key in [k for k in table if k >> 8 == dev_addr]:
                    del table[key]

            for key in [k for k in self.out_reports if k >> 24 == dev_addr]:
                self.out_report_sizes.pop(key, None)
                self.prev_out_reports.pop(key, None)
                del self.out_reports[key]

            for keys in self.their_out_usages_flat.values():
                keys[:] = [k for k in keys if k >> 24 != dev_addr]

        self.their_descriptor_updated = True