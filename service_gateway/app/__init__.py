"""
API Gateway Service package for the Ferremas platform.

The gateway is the single entry point for clients. It:
- Routes /api/<area> requests to the owning downstream service
- Authenticates protected areas (manager, admin, cart) and forwards the
  caller identity as X-User-* headers
- Applies per-area sliding-window rate limits
- Tracks downstream health with a periodic probe

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.registry: Service registry, route table and health probing.
- app.proxy: Reverse proxy pipeline.
- app.adapters: HTTP client for the Auth service.
- app.middleware: Auth guard, security headers, request validation, API key.
- app.ratelimit: Sliding-window limiters and middleware.
- app.health: System health and diagnostics routes.
"""
