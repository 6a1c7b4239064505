"""Gateway middleware: request correlation, caller identity and body limits.

``RequestIdMiddleware`` gives every request an identifier, read from the
incoming ``X-Request-ID`` header or generated, stored in ``REQUEST_ID_CTX``
for log records and outgoing HTTP calls, and echoed on the response.

``IdentityMiddleware`` reads the caller identity forwarded by the upstream
auth proxy (``X-User-Id`` and ``X-User-Email``) into ``request.identity``.
Authentication itself happens before the request reaches this service, so
the service must only be reachable through that proxy, and the proxy must
strip or overwrite both headers on every inbound request. A client able to
send them directly could claim any user id, or a ``SUPERADMIN_EMAILS``
address, and bypass the ownership checks.

``ApiSizeLimitMiddleware`` rejects oversized API bodies with HTTP 413.
"""

import contextvars
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): Incoming header, in ``request.META`` casing, that may
            carry a client-provided id.
        RESPONSE_HEADER (str): Header set on every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach the request id to ``request`` and to ``REQUEST_ID_CTX``.

        A client-supplied id is reused; otherwise a UUIDv4 is generated.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Echo the request id on the response.

        Falls back to the ContextVar when the request carries no id, as
        happens for responses produced by earlier middleware.

        Args:
            request: Django HttpRequest instance.
            response: Django HttpResponse to modify.

        Returns:
            The same response with the ``X-Request-ID`` header set.
        """
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class IdentityMiddleware(MiddlewareMixin):
    """Attach ``request.identity`` (an ``Identity`` or None).

    The headers are trusted as-is. Deploy this service only behind the auth
    proxy that strips client-sent ``X-User-Id`` and ``X-User-Email`` and
    sets them from the authenticated session.

    Attributes:
        USER_ID_HEADER (str): ``request.META`` key of the user id header.
        USER_EMAIL_HEADER (str): ``request.META`` key of the email header.
    """

    USER_ID_HEADER = "HTTP_X_USER_ID"
    USER_EMAIL_HEADER = "HTTP_X_USER_EMAIL"

    def process_request(self, request):
        """Read the forwarded identity headers.

        A blank user id leaves ``request.identity`` as None, which the views
        answer with 401. The email is optional.

        Args:
            request: Django HttpRequest instance.
        """
        user_id = (request.META.get(self.USER_ID_HEADER) or "").strip()
        email = (request.META.get(self.USER_EMAIL_HEADER) or "").strip() or None
        request.identity = Identity(user_id=user_id, email=email) if user_id else None


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Reject ``/api/`` requests whose declared body exceeds ``API_MAX_BYTES``."""

    def process_request(self, request):
        """Short-circuit oversized API requests.

        Args:
            request: Django HttpRequest instance.

        Returns:
            A 413 JsonResponse when ``Content-Length`` is over the limit,
            otherwise None so the request continues.
        """
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"error": "Payload too large", "code": "PAYLOAD_TOO_LARGE"}, status=413)
