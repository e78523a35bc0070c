"""
Publication Resolution

This package turns a handle into the artifact served at `{base_url}/{handle}.html`.

Key Components:
- publication.py: PublicationEntry and the Resolver read path
- __main__.py: CLI interface for resolution

The resolution flow follows these steps:
1. Normalize the handle; malformed handles resolve to nothing
2. Look up the claim and its newest committed profile version
3. Confirm the avatar blob is present in the content store
4. Return the materialized entry, or nothing if any step came up empty

Resolution never writes and never returns a placeholder profile for a handle that has not
been published.
"""
