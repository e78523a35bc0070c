"""
Bonjour Application Layer

This package implements the web application layer of the card registry, handling HTTP requests
and responses using the aiohttp framework. It exposes the publication pipeline to the card form,
serves resolved cards and avatar blobs, and provides health checks.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration, middleware and startup of shared resources
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for the different endpoints
- metrics.py: Metrics client abstraction
- tasks.py: Background task for health monitoring
- util/: Developer utilities (signing keys, identity tokens)

The application uses two middleware layers:
- Statsd middleware for metrics collection
- Sentry middleware for error reporting

It provides the following main endpoints:
- Submission endpoint (POST /api/publish)
- Public card pages (/{handle}.html) and avatar blobs (/blobs/{ref})
- Resolution API (/api/handles/{handle}, /api/handles/{handle}/history)
- Internal endpoints (/internal/*)
"""
