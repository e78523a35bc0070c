"""
Database Models

This package defines the database models for the Bonjour card registry using SQLAlchemy ORM.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- handles.py: Handle claims binding an identity to a handle
- profiles.py: Append-only profile versions bound to a handle claim
- blobs.py: Content-addressed blobs for the database content backend
- health.py: Health monitoring gauge
- engine.py: Async engine construction for PostgreSQL and SQLite

The data models follow these relationships:
- HandleClaim: One row per identity, one row per handle, never updated or deleted
- ProfileVersion: Many per HandleClaim, keyed by (claim_guid, version)
- ContentBlob: Keyed by content digest, never updated or deleted

The models use SQLAlchemy's async interface for non-blocking database operations.
"""
