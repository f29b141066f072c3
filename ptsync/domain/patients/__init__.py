"""
Patients Domain

Patient directory records, the alternate-contacts sheet codec and the
duplicate detection / merge engine.
"""
