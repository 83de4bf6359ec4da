"""AI analysis job queue for OSINT investigations."""

__version__ = "0.1.0"
