"""Personal voice assistant with system control, command history, a web interface and an ADB bridge."""

__version__ = "0.1.0"