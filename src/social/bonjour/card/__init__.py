"""
Bonjour Card Registry

This module implements the identity claim and publication core behind Bonjour, the
wallet-gated "digital business card" publisher. A wallet address claims a human-readable
handle, attaches a versioned profile (title, bio, avatar, social links) and obtains a
public page at `{base_url}/{handle}.html`.

Key Components:
- app: Web application layer with request handlers and server configuration
- content: Content-addressed blob storage for avatars
- model: Database models for handle claims, profile versions and blobs
- registry: Handle claims, profile versioning and the publication pipeline
- resolve: Handle to publication entry resolution

Architecture Overview:
1. Claiming:
   - The wallet-connect front end hands over a signed identity token
   - The registry binds the identity to exactly one handle, permanently

2. Publishing:
   - Avatar bytes are stored by content digest before any registry mutation
   - The claim and the new profile version are committed in one transaction

3. Resolution:
   - A handle resolves to the most recently committed profile version
   - Unclaimed, malformed or profile-less handles resolve to nothing
"""
