"""Package initializer for the backend `ispdiag` package.
Re-exports the factory and extensions defined in `init.py`.
"""
from .init import (
    create_app,
    db,
    migrate,
    jwt,
    mail,
    limiter,
    metrics,
    celery,
)

__all__ = [
    "create_app",
    "db",
    "migrate",
    "jwt",
    "mail",
    "limiter",
    "metrics",
    "celery",
]
