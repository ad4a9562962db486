"""Streaming readers and writers for OpenStreetMap data in PBF and XML form."""

__version__ = "0.1.0"