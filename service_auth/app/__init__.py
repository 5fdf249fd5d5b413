"""
Auth Service package for the Ferremas platform.

This package exposes the FastAPI application that registers users, issues
access/refresh token pairs and verifies access tokens for other services.

- app.main: Application entrypoint that wires routes and lifecycle.
- app.tokens: Token service (signing, refresh sessions, cleanup task).
- app.persistence: User and session repositories (Postgres, in-memory).
- app.validation: Request schemas.
- app.passwords: Password hashing.

Design notes:
- Keep the package import side-effects minimal; module import must not
  perform network calls. All IO should happen in route handlers or
  explicit startup hooks.
- Use the shared/ utilities for logging, metrics, and errors.
"""
