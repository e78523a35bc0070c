"""
Content-Addressed Storage

This package stores avatar bytes under a reference derived from their SHA-256
digest (`sha256-<hex>`). Blobs are write-once: storing the same bytes twice
yields the same reference and never rewrites the blob, and there is no delete.

Key Components:
- store.py: The ContentStore capability and its database and filesystem backends

Collection of blobs no profile version references is an out-of-band concern.
"""
