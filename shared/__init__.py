"""
Shared utilities for the Ferremas services.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with correlation ids
- metrics: Prometheus metrics helpers
- errors: Canonical error types and response envelopes
- tokens: JWT decoding helpers shared by the gateway and auth service
- database: asyncpg connection pool wrapper
- base_service: FastAPI service scaffolding (lifespan, middleware, health)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
