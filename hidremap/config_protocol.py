"""Configuration protocol spoken over the remapper's config feature report."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from hidremap.crc import crc32
from hidremap.persist import (
    CONFIG_VERSION,
    FLAG_GPIO_OUTPUT_MODE_BIT,
    FLAG_IGNORE_AUTH_DEV_INPUTS_BIT,
    ConfigTooBigError,
    checksum_ok,
    persist_config,
)
from hidremap.state import NEXPRESSIONS, NMACROS, RemapperState
from hidremap.types import (
    APPEND_TO_EXPR,
    APPEND_TO_MACRO,
    EXPR_VAL,
    FEATURE_REPORT_SIZE,
    GET_CONFIG,
    GET_EXPR,
    GET_EXPR_RESPONSE,
    GET_INDEXED,
    GET_MACRO,
    GET_MACRO_RESPONSE,
    MACRO_ITEMS_IN_PACKET,
    MONITOR,
    NUSAGES_IN_PACKET,
    PERSIST_CONFIG_RESPONSE,
    SET_CONFIG,
    SET_FEATURE,
    ConfigCommand,
    ExprElem,
    MappingConfig,
    Op,
    PersistConfigReturnCode,
    Quirk,
)

__all__ = ["CONFIG_SIZE", "ConfigProtocol", "command_version_ok"]

CONFIG_SIZE = FEATURE_REPORT_SIZE
_DATA_SIZE = CONFIG_SIZE - 4
_EXPR_RESPONSE_DATA = GET_EXPR_RESPONSE.size - 1
_APPEND_EXPR_DATA = APPEND_TO_EXPR.size - 2

_U8 = 0xFF
_U16 = 0xFFFF
_U32 = 0xFFFFFFFF


def command_version_ok(data) -> bool:
    """Tell whether a command packet was built for this configuration version."""
    data = bytes(data)
    return bool(data) and data[0] == CONFIG_VERSION


def _noop(*_args) -> None:
    return None


def _as_op(value: int):
    try:
        return Op(value)
    except ValueError:
        return value


def _is_push(op) -> bool:
    return op in (Op.PUSH, Op.PUSH_USAGE)


@dataclass
class ConfigProtocol:
    """Handles SET_REPORT commands and answers GET_REPORT requests.

    Platform actions (rebooting, pairing, writing flash) are supplied as
    callbacks; ``save`` receives the persisted configuration block.
    """

    state: RemapperState
    report_id: int
    persisted_config_size: int
    descriptor_count: Optional[int] = None
    reset_to_bootloader: Callable[[], None] = _noop
    pair_new_device: Callable[[], None] = _noop
    clear_bonds: Callable[[], None] = _noop
    flash_b_side: Callable[[], None] = _noop
    interval_override_updated: Callable[[], None] = _noop
    reset_state: Callable[[], None] = _noop
    save: Callable[[bytes], None] = _noop

    last_command: ConfigCommand = field(default=ConfigCommand.NO_COMMAND, init=False)
    requested_index: int = field(default=0, init=False)
    requested_secondary_index: int = field(default=0, init=False)

    # --- SET_REPORT ---------------------------------------------------------

    def handle_set_report(self, report_id: int, data) -> None:
        """Process one command packet sent by the host."""
        data = bytes(data)
        if report_id != self.report_id or len(data) < CONFIG_SIZE:
            return
        packet = data[:CONFIG_SIZE]
        if not (checksum_ok(packet) and command_version_ok(packet)):
            self.last_command = ConfigCommand.INVALID_COMMAND
            return
        _version, command, payload, _crc = SET_FEATURE.unpack(packet)
        handler = self._SET_HANDLERS.get(command)
        if handler is None:
            self.last_command = ConfigCommand.INVALID_COMMAND
            return
        self.last_command = ConfigCommand(command)
        handler(self, payload)

    def _set_nothing(self, payload: bytes) -> None:
        return None

    def _set_reset_into_bootsel(self, payload: bytes) -> None:
        self.reset_to_bootloader()

    def _set_config(self, payload: bytes) -> None:
        (
            flags,
            layer_mask,
            partial_scroll_timeout,
            interval_override,
            tap_hold_threshold,
            debounce_ms,
            descriptor_number,
            macro_entry_duration,
        ) = SET_CONFIG.unpack_from(payload)
        state = self.state
        state.unmapped_passthrough_layer_mask = layer_mask
        state.ignore_auth_dev_inputs = bool(flags & (1 << FLAG_IGNORE_AUTH_DEV_INPUTS_BIT))
        state.gpio_output_mode = int(bool(flags & (1 << FLAG_GPIO_OUTPUT_MODE_BIT)))
        state.partial_scroll_timeout = partial_scroll_timeout
        state.tap_hold_threshold = tap_hold_threshold
        state.gpio_debounce_time = debounce_ms * 1000
        previous_interval = state.interval_override
        state.interval_override = interval_override
        if previous_interval != interval_override:
            self.interval_override_updated()
        if self.descriptor_count is not None and descriptor_number >= self.descriptor_count:
            descriptor_number = 0
        state.our_descriptor_number = descriptor_number
        state.macro_entry_duration = macro_entry_duration

    def _set_clear_mapping(self, payload: bytes) -> None:
        self.state.config_mappings.clear()

    def _set_add_mapping(self, payload: bytes) -> None:
        self.state.config_mappings.append(MappingConfig.unpack(payload))

    def _set_indexed(self, payload: bytes) -> None:
        (self.requested_index,) = GET_INDEXED.unpack_from(payload)

    def _set_persist_config(self, payload: bytes) -> None:
        self.state.need_to_persist_config = True
        self.state.persist_config_return_code = PersistConfigReturnCode.UNKNOWN

    def _set_suspend(self, payload: bytes) -> None:
        self.state.suspended = True

    def _set_resume(self, payload: bytes) -> None:
        self.state.resume_pending = True
        self.state.config_updated = True
        self.reset_state()

    def _set_pair_new_device(self, payload: bytes) -> None:
        self.pair_new_device()

    def _set_clear_bonds(self, payload: bytes) -> None:
        self.clear_bonds()

    def _set_flash_b_side(self, payload: bytes) -> None:
        self.flash_b_side()

    def _set_clear_macros(self, payload: bytes) -> None:
        with self.state.lock:
            for macro in self.state.macros:
                macro.clear()

    def _set_append_to_macro(self, payload: bytes) -> None:
        macro_index, nitems, *usages = APPEND_TO_MACRO.unpack_from(payload)
        if macro_index >= NMACROS:
            return
        with self.state.lock:
            macro = self.state.macros[macro_index]
            if not macro:
                macro.append([])
            for usage in usages[: min(nitems, MACRO_ITEMS_IN_PACKET)]:
                if usage == 0:
                    macro.append([])
                else:
                    macro[-1].append(usage)

    def _set_get_macro(self, payload: bytes) -> None:
        self.requested_index, self.requested_secondary_index = GET_MACRO.unpack_from(payload)

    def _set_clear_expressions(self, payload: bytes) -> None:
        with self.state.lock:
            for expr in self.state.expressions:
                expr.clear()

    def _set_append_to_expression(self, payload: bytes) -> None:
        expr_index, nelems, elem_data = APPEND_TO_EXPR.unpack_from(payload)
        if expr_index >= NEXPRESSIONS:
            return
        with self.state.lock:
            expr = self.state.expressions[expr_index]
            ptr = 0
            for _ in range(nelems):
                if ptr > _APPEND_EXPR_DATA - 1:
                    break
                op = _as_op(elem_data[ptr])
                ptr += 1
                if _is_push(op):
                    if ptr > _APPEND_EXPR_DATA - EXPR_VAL.size:
                        break
                    (val,) = EXPR_VAL.unpack_from(elem_data, ptr)
                    ptr += EXPR_VAL.size
                    expr.append(ExprElem(op, val))
                else:
                    expr.append(ExprElem(op))

    def _set_get_expression(self, payload: bytes) -> None:
        self.requested_index, self.requested_secondary_index = GET_EXPR.unpack_from(payload)

    def _set_monitor_enabled(self, payload: bytes) -> None:
        (enabled,) = MONITOR.unpack_from(payload)
        self.state.monitor_enabled = bool(enabled)

    def _set_clear_quirks(self, payload: bytes) -> None:
        with self.state.lock:
            self.state.quirks.clear()

    def _set_add_quirk(self, payload: bytes) -> None:
        quirk = Quirk.unpack(payload)
        with self.state.lock:
            self.state.quirks.append(quirk)

    _SET_HANDLERS = {
        ConfigCommand.NO_COMMAND: _set_nothing,
        ConfigCommand.RESET_INTO_BOOTSEL: _set_reset_into_bootsel,
        ConfigCommand.SET_CONFIG: _set_config,
        ConfigCommand.GET_CONFIG: _set_nothing,
        ConfigCommand.CLEAR_MAPPING: _set_clear_mapping,
        ConfigCommand.ADD_MAPPING: _set_add_mapping,
        ConfigCommand.GET_MAPPING: _set_indexed,
        ConfigCommand.GET_OUR_USAGES: _set_indexed,
        ConfigCommand.GET_THEIR_USAGES: _set_indexed,
        ConfigCommand.GET_QUIRK: _set_indexed,
        ConfigCommand.PERSIST_CONFIG: _set_persist_config,
        ConfigCommand.SUSPEND: _set_suspend,
        ConfigCommand.RESUME: _set_resume,
        ConfigCommand.PAIR_NEW_DEVICE: _set_pair_new_device,
        ConfigCommand.CLEAR_BONDS: _set_clear_bonds,
        ConfigCommand.FLASH_B_SIDE: _set_flash_b_side,
        ConfigCommand.CLEAR_MACROS: _set_clear_macros,
        ConfigCommand.APPEND_TO_MACRO: _set_append_to_macro,
        ConfigCommand.GET_MACRO: _set_get_macro,
        ConfigCommand.CLEAR_EXPRESSIONS: _set_clear_expressions,
        ConfigCommand.APPEND_TO_EXPRESSION: _set_append_to_expression,
        ConfigCommand.GET_EXPRESSION: _set_get_expression,
        ConfigCommand.SET_MONITOR_ENABLED: _set_monitor_enabled,
        ConfigCommand.CLEAR_QUIRKS: _set_clear_quirks,
        ConfigCommand.ADD_QUIRK: _set_add_quirk,
    }

    # --- GET_REPORT ---------------------------------------------------------

    def handle_get_report(self, report_id: int, reqlen: int) -> bytes:
        """Answer the last command; an empty result means there is no answer."""
        if report_id != self.report_id or reqlen < CONFIG_SIZE:
            return b""
        handler = self._GET_HANDLERS.get(self.last_command)
        if handler is None:
            return b""
        body = handler(self)
        if body is None:
            return b""
        body = bytes(body[:_DATA_SIZE]).ljust(_DATA_SIZE, b"\0")
        self.last_command = ConfigCommand.NO_COMMAND
        return body + crc32(body).to_bytes(4, "little")

    def _get_invalid(self) -> bytes:
        return b"\xff" * _DATA_SIZE

    def _get_config(self) -> bytes:
        state = self.state
        flags = (
            (int(state.ignore_auth_dev_inputs) << FLAG_IGNORE_AUTH_DEV_INPUTS_BIT)
            | (int(state.gpio_output_mode) << FLAG_GPIO_OUTPUT_MODE_BIT)
        ) & _U8
        with state.lock:
            quirk_count = len(state.quirks)
        return GET_CONFIG.pack(
            CONFIG_VERSION,
            flags,
            state.unmapped_passthrough_layer_mask & _U8,
            state.partial_scroll_timeout & _U32,
            len(state.config_mappings) & _U16,
            len(state.our_usages_rle) & _U32,
            len(state.their_usages_rle) & _U32,
            state.interval_override & _U8,
            state.tap_hold_threshold & _U32,
            (state.gpio_debounce_time // 1000) & _U8,
            state.our_descriptor_number & _U8,
            state.macro_entry_duration & _U8,
            quirk_count & _U16,
        )

    def _get_mapping(self) -> bytes:
        mappings = self.state.config_mappings
        if self.requested_index < len(mappings):
            return mappings[self.requested_index].pack()
        return b""

    def _usages_from(self, rle_list) -> bytes:
        start = self.requested_index
        return b"".join(rle.pack() for rle in rle_list[start : start + NUSAGES_IN_PACKET])

    def _get_our_usages(self) -> bytes:
        return self._usages_from(self.state.our_usages_rle)

    def _get_their_usages(self) -> bytes:
        return self._usages_from(self.state.their_usages_rle)

    def _get_macro(self) -> bytes:
        if self.requested_index >= NMACROS:
            return b""
        skip = self.requested_secondary_index
        returned = []
        position = 0
        exhausted = True
        with self.state.lock:
            for entry in self.state.macros[self.requested_index]:
                if len(returned) >= MACRO_ITEMS_IN_PACKET:
                    exhausted = False
                    break
                for usage in entry:
                    if position >= skip:
                        returned.append(usage)
                        if len(returned) >= MACRO_ITEMS_IN_PACKET:
                            break
                    position += 1
                if len(returned) < MACRO_ITEMS_IN_PACKET and position >= skip:
                    returned.append(0)
                position += 1
        if exhausted and returned and returned[-1] == 0:
            returned.pop()
        padded = returned + [0] * (MACRO_ITEMS_IN_PACKET - len(returned))
        return GET_MACRO_RESPONSE.pack(len(returned), *(u & _U32 for u in padded))

    def _get_expression(self) -> bytes:
        if self.requested_index >= NEXPRESSIONS:
            return b""
        data = bytearray()
        nelems = 0
        with self.state.lock:
            elems = list(self.state.expressions[self.requested_index])
        for position, elem in enumerate(elems):
            if position >= self.requested_secondary_index:
                if elem.has_value():
                    if len(data) > _EXPR_RESPONSE_DATA - 1 - EXPR_VAL.size:
                        break
                    data.append(int(elem.op) & _U8)
                    data += EXPR_VAL.pack(elem.val & _U32)
                else:
                    data.append(int(elem.op) & _U8)
                nelems += 1
            if len(data) > _EXPR_RESPONSE_DATA - 1:
                break
        return GET_EXPR_RESPONSE.pack(nelems & _U8, bytes(data))

    def _get_quirk(self) -> bytes:
        with self.state.lock:
            if self.requested_index < len(self.state.quirks):
                return self.state.quirks[self.requested_index].pack()
        return b""

    def _get_persist_config(self) -> Optional[bytes]:
        code = self.state.persist_config_return_code
        if code == PersistConfigReturnCode.UNKNOWN:
            return None
        return PERSIST_CONFIG_RESPONSE.pack(int(code))

    _GET_HANDLERS = {
        ConfigCommand.INVALID_COMMAND: _get_invalid,
        ConfigCommand.GET_CONFIG: _get_config,
        ConfigCommand.GET_MAPPING: _get_mapping,
        ConfigCommand.GET_OUR_USAGES: _get_our_usages,
        ConfigCommand.GET_THEIR_USAGES: _get_their_usages,
        ConfigCommand.GET_MACRO: _get_macro,
        ConfigCommand.GET_EXPRESSION: _get_expression,
        ConfigCommand.GET_QUIRK: _get_quirk,
        ConfigCommand.PERSIST_CONFIG: _get_persist_config,
    }

    # --- persisting ---------------------------------------------------------

    def persist(self) -> PersistConfigReturnCode:
        """Serialize the configuration, hand it to ``save`` and record the outcome."""
        try:
            block = persist_config(self.state, self.persisted_config_size)
        except ConfigTooBigError:
            code = PersistConfigReturnCode.CONFIG_TOO_BIG
        else:
            self.save(block)
            code = PersistConfigReturnCode.SUCCESS
        self.state.persist_config_return_code = code
        self.state.need_to_persist_config = False
        return code