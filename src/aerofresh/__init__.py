"""AeroFresh aircraft-information API."""

__version__ = "2.0.0"
