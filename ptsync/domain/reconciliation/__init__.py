"""
Reconciliation Domain

Applies fresh remote snapshots to the local store without destroying
unsynced local edits, and detects remote-side deletions.
"""
