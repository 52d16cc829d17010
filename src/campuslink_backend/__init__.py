"""CampusLink Backend - realtime notification, activity and presence server."""

__version__ = "0.1.0"
