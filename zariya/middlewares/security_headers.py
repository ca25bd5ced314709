from starlette.types import ASGIApp, Message, Receive, Scope, Send

from zariya.core.settings import settings

_BASE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-xss-protection", b"0"),
    (b"cross-origin-opener-policy", b"same-origin"),
    (b"cross-origin-resource-policy", b"same-origin"),
)

# Member records carry Aadhaar/PAN numbers and KYC scans; keep them out of shared caches.
_NO_STORE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"cache-control", b"no-store"),
    (b"pragma", b"no-cache"),
)


class SecurityHeadersMiddleware:
    """Apply default security headers and disable caching of API responses."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True, no_store_prefix: str = "/api/") -> None:
        self.app = app
        self.enable_hsts = enable_hsts
        self.no_store_prefix = no_store_prefix

    def _defaults(self, path: str) -> list[tuple[bytes, bytes]]:
        defaults = list(_BASE_HEADERS)
        if path.startswith(self.no_store_prefix):
            defaults.extend(_NO_STORE_HEADERS)
        if self.enable_hsts:
            defaults.append((b"strict-transport-security", b"max-age=63072000; includeSubDomains; preload"))
        if settings.content_security_policy:
            header_name = (
                b"content-security-policy-report-only"
                if settings.content_security_policy_report_only
                else b"content-security-policy"
            )
            defaults.append((header_name, settings.content_security_policy.encode()))
        return defaults

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        defaults = self._defaults(scope.get("path", ""))

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                new_headers = list(message.get("headers", []))
                existing_keys = {key.lower() for key, _ in new_headers}
                for key, value in defaults:
                    if key not in existing_keys:
                        new_headers.append((key, value))
                message["headers"] = new_headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
