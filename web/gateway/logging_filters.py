"""Logging filter that stamps records with the current request id.

Referenced from ``LOGGING`` in ``config.settings`` so every record,
including those emitted by the order services and the MercadoPago adapter,
carries ``request_id`` for the JSON formatter.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    The value comes from ``REQUEST_ID_CTX``, set by ``RequestIdMiddleware``;
    outside a request it is the "-" placeholder.
    """

    def filter(self, record: LogRecord) -> bool:
        """Populate ``record.request_id`` unless the caller already set one.

        Args:
            record: The log record to enrich.

        Returns:
            bool: Always True; the filter never drops records.
        """
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CTX.get()
        return True
