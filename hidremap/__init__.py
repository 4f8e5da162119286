"""HID report descriptor parsing, remapper state, configuration persistence and protocol."""

__version__ = "0.1.0"