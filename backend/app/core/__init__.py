"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    errors          — exception hierarchy & handlers
    middleware      — request logging, correlation IDs
    security        — password hashing, JWT, role guards
    database        — storage backend selection
    health          — health check aggregation
"""
