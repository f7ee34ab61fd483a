"""
outreach_sync - Contact and conversation synchronization engine

Pulls connections and message threads from external platform sources into
the local outreach store under volume and rate limits, reconciles contacts
arriving from every entry point, and keeps a background refresh loop running.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
