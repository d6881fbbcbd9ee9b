"""Custom exceptions for the futures trading gateway.

ExchangeError is the single error type the gateway surfaces to callers: every
transport failure, HTTP error status and exchange error payload is classified
into one ErrorKind from a closed taxonomy, keeping the raw upstream payload
for diagnosis.
"""

from enum import Enum


class BotError(Exception):
    """Base exception for all bot errors."""


class ConfigurationError(BotError):
    """Raised when components cannot be composed from the given settings."""


class ErrorKind(str, Enum):
    """Closed taxonomy of gateway failure kinds."""

    UNKNOWN = "unknown"
    INVALID_REQUEST = "invalid_request"
    INVALID_JSON = "invalid_json"
    INVALID_SYMBOL = "invalid_symbol"
    INVALID_INTERVAL = "invalid_interval"
    INVALID_ORDER_TYPE = "invalid_order_type"
    INVALID_TIME_IN_FORCE = "invalid_time_in_force"
    INVALID_SIDE = "invalid_side"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_PRICE = "invalid_price"
    INVALID_TIMESTAMP = "invalid_timestamp"
    DISCONNECTED = "disconnected"
    UNAUTHORIZED = "unauthorized"
    TOO_MANY_REQUESTS = "too_many_requests"
    INTERNAL_ERROR = "internal_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN_ORDER = "unknown_order"
    ORDER_REJECTED = "order_rejected"
    CANCEL_REJECTED = "cancel_rejected"
    NO_SUCH_ORDER = "no_such_order"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ACCOUNT_INACTIVE = "account_inactive"
    DUPLICATE_ORDER = "duplicate_order"


class ExchangeError(BotError):
    """A classified failure of one exchange call.

    Attributes:
        kind: Taxonomy bucket used for retry and propagation decisions.
        message: Short human-readable summary.
        detail: Upstream message or transport error text.
        raw: Raw response body (empty for transport failures).
        code: Exchange numeric error code, when the payload carried one.
        status: HTTP status, when a response was received.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        detail: str = "",
        raw: str = "",
        code: int | None = None,
        status: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.detail = detail
        self.raw = raw
        self.code = code
        self.status = status
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.detail:
            return f"exchange error [{self.kind.value}]: {self.message} - {self.detail}"
        return f"exchange error [{self.kind.value}]: {self.message}"


# (kind, message) per exchange error code
_API_CODE_TABLE: dict[int, tuple[ErrorKind, str]] = {
    -1000: (ErrorKind.UNKNOWN, "unknown error"),
    -1001: (ErrorKind.DISCONNECTED, "internal error; unable to process request"),
    -1002: (ErrorKind.UNAUTHORIZED, "not authorized to execute this request"),
    -1003: (ErrorKind.TOO_MANY_REQUESTS, "too many requests"),
    -1006: (ErrorKind.SERVICE_UNAVAILABLE, "unexpected response from message bus"),
    -1007: (ErrorKind.INTERNAL_ERROR, "timeout waiting for backend response"),
    -1013: (ErrorKind.INVALID_QUANTITY, "invalid quantity"),
    -1015: (ErrorKind.UNAUTHORIZED, "invalid API key"),
    -1021: (ErrorKind.INVALID_TIMESTAMP, "timestamp outside of recvWindow"),
    -1022: (ErrorKind.INVALID_REQUEST, "invalid signature"),
    -1100: (ErrorKind.INVALID_JSON, "illegal characters in parameter"),
    -1101: (ErrorKind.INVALID_REQUEST, "too many parameters"),
    -1102: (ErrorKind.INVALID_REQUEST, "mandatory parameter missing"),
    -1103: (ErrorKind.INVALID_REQUEST, "unknown parameter"),
    -1104: (ErrorKind.INVALID_REQUEST, "not all parameters were read"),
    -1105: (ErrorKind.INVALID_REQUEST, "parameter empty"),
    -1106: (ErrorKind.INVALID_REQUEST, "parameter sent when not required"),
    -1110: (ErrorKind.INVALID_PRICE, "invalid price"),
    -1111: (ErrorKind.INVALID_QUANTITY, "precision over maximum"),
    -1112: (ErrorKind.INVALID_REQUEST, "no orders on book for symbol"),
    -1114: (ErrorKind.INVALID_JSON, "malformed parameter"),
    -1115: (ErrorKind.INVALID_SIDE, "invalid side"),
    -1116: (ErrorKind.INVALID_ORDER_TYPE, "invalid order type"),
    -1120: (ErrorKind.INVALID_INTERVAL, "invalid interval"),
    -1121: (ErrorKind.INVALID_SYMBOL, "invalid symbol"),
    -2010: (ErrorKind.UNKNOWN_ORDER, "new order rejected"),
    -2011: (ErrorKind.UNKNOWN_ORDER, "cancel rejected, order unknown"),
    -2012: (ErrorKind.INSUFFICIENT_FUNDS, "insufficient balance"),
    -2013: (ErrorKind.NO_SUCH_ORDER, "order does not exist"),
    -2014: (ErrorKind.INVALID_REQUEST, "bad API key format"),
    -2015: (ErrorKind.INVALID_REQUEST, "invalid API key, IP, or permissions"),
    -2016: (ErrorKind.ACCOUNT_INACTIVE, "no trading window"),
    -2018: (ErrorKind.CANCEL_REJECTED, "balance insufficient to cancel"),
    -2019: (ErrorKind.INVALID_REQUEST, "margin insufficient"),
    -2021: (ErrorKind.ORDER_REJECTED, "order would immediately trigger"),
    -2022: (ErrorKind.CANCEL_REJECTED, "reduce-only order rejected"),
}

_HTTP_STATUS_TABLE: dict[int, tuple[ErrorKind, str]] = {
    400: (ErrorKind.INVALID_REQUEST, "bad request"),
    401: (ErrorKind.UNAUTHORIZED, "unauthorized"),
    403: (ErrorKind.UNAUTHORIZED, "forbidden"),
    429: (ErrorKind.TOO_MANY_REQUESTS, "too many requests"),
    500: (ErrorKind.INTERNAL_ERROR, "internal server error"),
    502: (ErrorKind.SERVICE_UNAVAILABLE, "bad gateway"),
    503: (ErrorKind.SERVICE_UNAVAILABLE, "service unavailable"),
    504: (ErrorKind.SERVICE_UNAVAILABLE, "gateway timeout"),
}


def from_api_error(code: int, msg: str, raw: str = "") -> ExchangeError:
    """Map an exchange error payload ``{"code": ..., "msg": ...}`` to an ExchangeError."""
    kind, message = _API_CODE_TABLE.get(code, (ErrorKind.UNKNOWN, "unknown API error"))
    return ExchangeError(kind, message, detail=msg, raw=raw, code=code)


def from_http_status(status: int, raw: str = "") -> ExchangeError:
    """Map a non-2xx HTTP status (without a parseable error payload) to an ExchangeError."""
    kind, message = _HTTP_STATUS_TABLE.get(status, (ErrorKind.UNKNOWN, "unknown HTTP error"))
    return ExchangeError(kind, message, detail=f"HTTP {status}", raw=raw, status=status)


def is_timeout(error: BaseException) -> bool:
    """True for failures where the exchange may or may not have processed the call."""
    return isinstance(error, ExchangeError) and error.kind in (
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.DISCONNECTED,
        ErrorKind.INTERNAL_ERROR,
    )


def is_rate_limit(error: BaseException) -> bool:
    return isinstance(error, ExchangeError) and error.kind is ErrorKind.TOO_MANY_REQUESTS


def is_auth(error: BaseException) -> bool:
    return isinstance(error, ExchangeError) and error.kind in (
        ErrorKind.UNAUTHORIZED,
        ErrorKind.INVALID_TIMESTAMP,
        ErrorKind.ACCOUNT_INACTIVE,
    )


def is_order_error(error: BaseException) -> bool:
    return isinstance(error, ExchangeError) and error.kind in (
        ErrorKind.UNKNOWN_ORDER,
        ErrorKind.NO_SUCH_ORDER,
        ErrorKind.ORDER_REJECTED,
        ErrorKind.CANCEL_REJECTED,
        ErrorKind.INSUFFICIENT_FUNDS,
        ErrorKind.INVALID_QUANTITY,
        ErrorKind.INVALID_PRICE,
    )
