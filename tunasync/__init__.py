"""Mirror job management: manager server, status messages and control client."""

__version__ = "0.8.0"