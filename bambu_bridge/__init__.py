"""Bridge between Bambu Lab LAN printers and a fleet control-plane API."""

__version__ = "0.1.0"
