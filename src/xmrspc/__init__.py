"""xmrspc - XMR statistical process control analysis."""

__version__ = "0.1.0"
