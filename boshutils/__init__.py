"""Command running, file system, IPv4, UUID and worker-pool helpers, with fakes for tests."""

__version__ = "0.1.0"