"""facesync: offline-first authentication, profile sync and face login."""

__version__ = "0.1.0"
