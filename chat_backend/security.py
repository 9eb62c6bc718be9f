# chat_backend/security.py
# Security headers for a JSON-only API (no HTML, scripts or frames served).


def register_security_headers(app) -> None:
    """Attach common security headers on all responses."""
    if app.config.get("_SEC_HEADERS_INIT", False):
        return  # idempotent for reloader

    @app.after_request
    def _security_headers(resp):
        # Nothing here should ever be rendered as a document.
        resp.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )

        if app.config.get("PREFERRED_URL_SCHEME", "https") == "https":
            resp.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )

        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    app.config["_SEC_HEADERS_INIT"] = True
