"""crmsync: change detection and idempotent synchronization of database records."""

__version__ = "0.1.0"
