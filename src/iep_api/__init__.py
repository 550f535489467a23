"""IEP student pre-registration and verification API."""

__version__ = "0.1.0"
