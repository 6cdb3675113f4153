"""
Audit package.

JSON Lines audit trail of configuration events. Entries are hash-chained,
stamped by the logger, and never edited; rotation moves whole files.
"""
