"""Version information for petchat."""

__version__ = "0.3.0"
