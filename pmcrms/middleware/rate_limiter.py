"""
Rate limiting configuration.

The Limiter instance is created in pmcrms/__init__.py with no default
limits; this module applies limits per blueprint and per sensitive route.

Usage:
    from pmcrms.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Credential and OTP endpoints, keyed by view function name
AUTH_ROUTE_LIMITS = {
    "auth_bp.login": "10/minute",
    "auth_bp.request_otp": "5/minute",
    "auth_bp.verify_otp": "10/minute",
    "auth_bp.register": "10/minute",
    "auth_bp.set_password": "10/minute",
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Login / OTP endpoints:   5-10/minute
        - Signature endpoints:     20/minute (each call reaches the HSM)
        - Other API routes:        120/minute
        - Health check, payment gateway callback: exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint, limit in AUTH_ROUTE_LIMITS.items():
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit(limit)(view)

    for endpoint in ("application_bp.generate_otp", "application_bp.apply_signature"):
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit("20/minute")(view)

    bp = app.blueprints.get("application_bp")
    if bp:
        limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    view = app.view_functions.get("payment_bp.payment_callback")
    if view is not None:
        app.view_functions["payment_bp.payment_callback"] = limiter.exempt(view)

    app.logger.info("Rate limiter configured — auth: 5-10/min, signing: 20/min, api: 120/min")
