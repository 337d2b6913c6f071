"""
Case Documents Service - Document Requirement Tracking
======================================================

Tracks, per case and per contact, which supporting documents are required,
their fulfilment status, and who requested or received them and when.

Cases exist under two record schemas (current and legacy); callers pass raw
case references and the service resolves them once.
"""

__version__ = "1.0.0"
