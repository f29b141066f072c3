"""
Day Notes Domain

Sticky notes pinned to a calendar day, synced to the DayNotes sheet tab.
"""
