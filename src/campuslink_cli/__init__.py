"""CampusLink CLI - watch realtime events and query presence from a terminal."""

__version__ = "0.1.0"
