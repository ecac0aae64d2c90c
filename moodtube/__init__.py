"""MoodTube: mood-driven YouTube music queue service."""

__version__ = "1.0.0"
