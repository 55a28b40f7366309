"""ProShot: turns product photo uploads into studio-style images."""

__version__ = "1.0.0"
