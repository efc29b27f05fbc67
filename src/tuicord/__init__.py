"""tuicord: terminal client for Discord conversations."""

__version__ = "0.1.0"
