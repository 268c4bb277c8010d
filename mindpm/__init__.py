"""mindpm: persistent project memory for coding-assistant sessions."""

__version__ = "0.4.0"
