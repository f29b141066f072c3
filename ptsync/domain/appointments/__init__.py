"""
Appointments Domain

Scheduled visits, their calendar link rows and the local mutation paths
that keep them queued for calendar sync.
"""
