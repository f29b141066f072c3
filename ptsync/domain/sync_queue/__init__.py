"""
Sync Queue Domain

Durable, ordered log of pending remote operations. Pure state transitions
live in queue.py and backoff.py; persistence lives in repository.py.
"""
