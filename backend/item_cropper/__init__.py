"""Item number detection and rotated crop extraction for catalog images."""

__version__ = "1.0.0"
