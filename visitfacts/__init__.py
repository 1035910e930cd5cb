"""Visit-Facts: clinical observation fact store."""

__version__ = "1.0.0"
