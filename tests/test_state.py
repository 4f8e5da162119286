import pytest

from hidremap.state import NEXPRESSIONS, NMACROS, RemapperState
from hidremap.types import PersistConfigReturnCode

# Keyboard modifiers as input, five LEDs as output.
KEYBOARD = bytes([
    0x05, 0x07, 0x19, 0xE0, 0x29, 0xE7, 0x15, 0x00, 0x25, 0x01,
    0x75, 0x01, 0x95, 0x08, 0x81, 0x02,
    0x05, 0x08, 0x19, 0x01, 0x29, 0x05, 0x95, 0x05, 0x75, 0x01, 0x91, 0x02,
    0x95, 0x01, 0x75, 0x03, 0x91, 0x01,
])

LEFT_CTRL = 0x000700E0
NUM_LOCK_LED = 0x00080001

DEV1_ITF0 = 0x0100
DEV2_ITF0 = 0x0200


@pytest.fixture
def state():
    return RemapperState()


def test_defaults(state):
    assert state.unmapped_passthrough_layer_mask == 0b11111111
    assert state.partial_scroll_timeout == 1000000
    assert state.tap_hold_threshold == 200000
    assert state.gpio_debounce_time == 5000
    assert len(state.macros) == NMACROS
    assert len(state.expressions) == NEXPRESSIONS
    assert state.persist_config_return_code is PersistConfigReturnCode.UNKNOWN


def test_macro_lists_are_independent(state):
    state.macros[0].append([1])
    assert state.macros[1] == []


def test_assign_interface_index_is_stable(state):
    first = state.assign_interface_index(DEV1_ITF0)
    second = state.assign_interface_index(DEV2_ITF0)
    assert first == 0
    assert second == 1
    assert state.assign_interface_index(DEV1_ITF0) == first
    assert state.interface_index_in_use == (1 << first) | (1 << second)


def test_interfaces_beyond_32_share_last_index(state):
    indices = [state.assign_interface_index(k) for k in range(34)]
    assert indices[:32] == list(range(32))
    assert indices[32] == 31
    assert indices[33] == 31


def test_register_descriptor_records_usages(state):
    state.register_descriptor(DEV1_ITF0, KEYBOARD)
    assert LEFT_CTRL in state.their_usages[DEV1_ITF0][0]
    assert NUM_LOCK_LED in state.their_out_usages[DEV1_ITF0][0]
    assert state.has_report_id_theirs[DEV1_ITF0] is False
    assert state.interface_index[DEV1_ITF0] == 0
    assert state.their_descriptor_updated is True


def test_register_descriptor_allocates_out_reports(state):
    state.register_descriptor(DEV1_ITF0, KEYBOARD)
    key = DEV1_ITF0 << 16
    assert set(state.out_reports) == {key}
    assert len(state.out_reports[key]) == state.out_report_sizes[key]
    assert not any(state.out_reports[key])
    assert state.prev_out_reports[key] == state.out_reports[key]
    assert state.prev_out_reports[key] is not state.out_reports[key]
    assert state.their_out_usages_flat[NUM_LOCK_LED] == [key]


def test_register_descriptor_keeps_first_definitions(state):
    first = bytes([0x05, 0x01, 0x09, 0x30, 0x75, 0x08, 0x95, 0x01, 0x81, 0x02])
    second = bytes([0x85, 0x00, 0x75, 0x08, 0x95, 0x01, 0x81, 0x01,
                    0x05, 0x01, 0x09, 0x30, 0x75, 0x08, 0x95, 0x01, 0x81, 0x02])
    state.register_descriptor(DEV1_ITF0, first)
    state.register_descriptor(DEV1_ITF0, second)
    assert state.their_usages[DEV1_ITF0][0][0x00010030].bitpos == 0
    assert state.has_report_id_theirs[DEV1_ITF0] is True


def test_clear_descriptor_data_removes_only_that_device(state):
    state.register_descriptor(DEV1_ITF0, KEYBOARD)
    state.register_descriptor(DEV2_ITF0, KEYBOARD)
    state.their_descriptor_updated = False

    state.clear_descriptor_data(1)

    assert set(state.their_usages) == {DEV2_ITF0}
    assert set(state.their_out_usages) == {DEV2_ITF0}
    assert set(state.their_feature_usages) == {DEV2_ITF0}
    assert set(state.has_report_id_theirs) == {DEV2_ITF0}
    assert set(state.out_reports) == {DEV2_ITF0 << 16}
    assert set(state.prev_out_reports) == {DEV2_ITF0 << 16}
    assert set(state.out_report_sizes) == {DEV2_ITF0 << 16}
    assert state.their_out_usages_flat[NUM_LOCK_LED] == [DEV2_ITF0 << 16]
    assert set(state.interface_index) == {DEV2_ITF0}
    assert state.their_descriptor_updated is True


def test_clear_releases_interface_index_for_reuse(state):
    state.register_descriptor(DEV1_ITF0, KEYBOARD)
    state.register_descriptor(DEV2_ITF0, KEYBOARD)
    freed = state.interface_index[DEV1_ITF0]
    state.clear_descriptor_data(1)
    assert not state.interface_index_in_use & (1 << freed)
    assert state.assign_interface_index(0x0300) == freed


def test_clear_unknown_device_changes_nothing(state):
    state.register_descriptor(DEV1_ITF0, KEYBOARD)
    usages_before = {k: dict(v) for k, v in state.their_usages.items()}
    state.clear_descriptor_data(5)
    assert state.their_usages == usages_before
    assert state.interface_index == {DEV1_ITF0: 0}
    assert state.interface_index_in_use == 1


def test_register_returns_parsed_descriptor(state):
    parsed = state.register_descriptor(DEV1_ITF0, KEYBOARD)
    assert parsed.input_usages == state.their_usages[DEV1_ITF0]