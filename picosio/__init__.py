"""Atari 8-bit SIO disk drive emulator with cassette image decoding."""

__version__ = "0.1.0"
__all__ = ["__version__"]