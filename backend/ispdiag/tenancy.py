"""Utilities for tenant-aware request handling."""

from __future__ import annotations

from functools import wraps
from typing import Any, Optional

from flask import current_app, g, jsonify, request
from flask_jwt_extended import get_jwt, jwt_required, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException, NoAuthorizationError
from jwt.exceptions import InvalidTokenError

from ispdiag.models import Tenant


class TenantResolutionError(ValueError):
    """Raised when tenant information is missing, malformed or inconsistent."""


def _coerce_tenant_id(value: Any) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise TenantResolutionError('tenant_id must be an integer') from exc


def _hostname_without_port(raw_host: Any) -> str:
    host = str(raw_host or '').strip().lower()
    if not host:
        return ''
    return host.split(':', 1)[0]


def _resolve_tenant_id_from_host() -> Optional[int]:
    host = _hostname_without_port(request.host)
    root_domain = str(current_app.config.get('TENANCY_ROOT_DOMAIN') or '').strip().lower()
    if not host or not root_domain or host == root_domain:
        return None
    if not host.endswith(f'.{root_domain}'):
        return None

    excluded = {
        str(value).strip().lower()
        for value in (current_app.config.get('TENANCY_EXCLUDED_SUBDOMAINS') or [])
        if str(value).strip()
    }
    subdomain = host[: -(len(root_domain) + 1)]
    if not subdomain or '.' in subdomain or subdomain in excluded:
        return None

    tenant = Tenant.query.filter_by(slug=subdomain).first()
    if not tenant or not tenant.is_active:
        raise TenantResolutionError('tenant not found for host')
    return int(tenant.id)


def resolve_tenant_id() -> Optional[int]:
    """Resolve tenant id from header/query, JWT claim or subdomain with consistency checks."""
    host_tenant = _resolve_tenant_id_from_host()
    request_tenant = _coerce_tenant_id(
        request.headers.get('X-Tenant-ID') or request.args.get('tenant_id')
    )

    jwt_tenant: Optional[int] = None
    try:
        verify_jwt_in_request(optional=True)
    except NoAuthorizationError:
        jwt_tenant = None
    except (JWTExtendedException, InvalidTokenError) as exc:
        raise TenantResolutionError('Invalid JWT token') from exc
    else:
        claims = get_jwt() or {}
        jwt_tenant = _coerce_tenant_id(claims.get('tenant_id'))

    if request_tenant is not None and jwt_tenant is not None and request_tenant != jwt_tenant:
        raise TenantResolutionError('tenant_id from request does not match authenticated tenant')
    if host_tenant is not None and request_tenant is not None and host_tenant != request_tenant:
        raise TenantResolutionError('tenant_id from host does not match request tenant')
    if host_tenant is not None and jwt_tenant is not None and host_tenant != jwt_tenant:
        raise TenantResolutionError('tenant_id from host does not match authenticated tenant')

    if request_tenant is not None:
        return request_tenant
    if host_tenant is not None:
        return host_tenant
    return jwt_tenant


def current_tenant_id() -> Optional[int]:
    """Return tenant id resolved in request lifecycle."""
    return getattr(g, 'tenant_id', None)


def tenant_required(fn):
    """Resolve the request tenant into ``g.tenant_id`` or fail with 400."""

    @wraps(fn)
    def decorator(*args, **kwargs):
        tenant_id = resolve_tenant_id()
        if tenant_id is None:
            raise TenantResolutionError('tenant could not be determined for this request')
        g.tenant_id = tenant_id
        return fn(*args, **kwargs)

    return decorator


def admin_required():
    """Require a JWT issued to a tenant admin, then resolve the request tenant.

    The token must carry ``role`` and ``tenant_id`` claims. A tenant sent in
    the header, query string or host has to match the token's tenant.
    """

    def wrapper(fn):
        guarded = tenant_required(fn)

        @jwt_required()
        @wraps(fn)
        def decorator(*args, **kwargs):
            claims = get_jwt() or {}
            if claims.get('role') != 'admin':
                return jsonify({'error': 'Admin role required'}), 403
            if _coerce_tenant_id(claims.get('tenant_id')) is None:
                return jsonify({'error': 'Token is not bound to a tenant'}), 403
            return guarded(*args, **kwargs)

        return decorator

    return wrapper
