"""Commodore 64 TAP image scanning, turbo-loader decoding and audio export."""

__version__ = "0.1.0"
__all__ = ["tape", "audio", "superpav", "supertape", "visiload"]