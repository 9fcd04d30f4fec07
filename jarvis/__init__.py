"""JARVIS voice-activated assistant service."""

__version__ = "1.0.0"
