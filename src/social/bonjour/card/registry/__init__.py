"""
Handle Registry

This package holds the claim and publication core: who owns which handle, which profile
versions are bound to it, and how a submission becomes a published profile.

Key Components:
- errors.py: Typed failures (InvalidHandle, HandleTaken, AlreadyClaimed, NotOwner, ...)
- handles.py: Handle format policy and atomic, permanent handle claims
- profiles.py: Profile field validation and the append-only version log
- pipeline.py: Validate, store avatar, claim and append as one submission
- retry.py: Bounded retries for read operations

Invariants:
1. An identity holds at most one handle, and a handle belongs to at most one identity
2. A claimed handle is never transferred or released
3. Profile versions are appended, never modified, and numbered in commit order per handle
4. A failed submission leaves claims and profile versions exactly as they were
"""
