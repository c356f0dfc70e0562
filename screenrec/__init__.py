"""ScreenRec: screen recording with wall-clock aligned system audio."""

__version__ = "0.1.0"
