"""
Policy Service for the Access Layer.

Decides whether a named service may perform a read or write operation,
persists the administrative configuration behind those decisions, and
records every configuration change to an append-only audit trail.
"""
