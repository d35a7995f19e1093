"""Cloud billing exporter."""

__version__ = "0.1.0"
