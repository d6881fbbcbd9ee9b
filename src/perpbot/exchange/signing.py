"""Request signing for authenticated (SIGNED) endpoints.

User parameters and signing metadata are kept in separate fields of
SignedRequest, so signing is idempotent: a request that is re-sent during a
retry keeps its original timestamp and signature.

The same canonical query string builder produces the signed payload and the
transmitted query string. Any divergence between the two invalidates every
authenticated call.
"""

import hashlib
import hmac
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from urllib.parse import quote_plus


def canonical_query_string(params: Mapping[str, str]) -> str:
    """Sort keys, drop empty values, percent-encode values, join with '&'.

    Values are encoded form-style (space becomes '+', '/' is escaped).
    """
    parts = []
    for key in sorted(params):
        value = params[key]
        if value == "":
            continue
        parts.append(f"{key}={quote_plus(value, safe='')}")
    return "&".join(parts)


def hmac_sha256_hex(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class AuthParams:
    """Signing metadata attached to a request exactly once."""

    api_key: str
    timestamp: int  # milliseconds since epoch, taken at signing time
    recv_window: int
    signature: str = ""

    def unsigned_items(self) -> dict[str, str]:
        items = {"timestamp": str(self.timestamp)}
        if self.api_key:
            items["apiKey"] = self.api_key
        if self.recv_window > 0:
            items["recvWindow"] = str(self.recv_window)
        return items


@dataclass
class SignedRequest:
    """One logical exchange call. Ephemeral; built per execute()."""

    method: str
    path: str
    params: dict[str, str] = field(default_factory=dict)
    requires_auth: bool = False
    auth: AuthParams | None = None

    def payload_items(self) -> dict[str, str]:
        """User params merged with signing metadata, excluding the signature."""
        items = dict(self.params)
        if self.auth is not None:
            items.update(self.auth.unsigned_items())
        return items

    def query_items(self) -> dict[str, str]:
        """Everything that goes on the wire, including the signature."""
        items = self.payload_items()
        if self.auth is not None and self.auth.signature:
            items["signature"] = self.auth.signature
        return items

    def query_string(self) -> str:
        return canonical_query_string(self.query_items())


class RequestSigner:
    """Attaches apiKey/timestamp/recvWindow/signature to a SignedRequest.

    With an empty secret the signature step is skipped (public/read-only mode);
    the timestamp and api key are still attached.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        recv_window_ms: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._recv_window_ms = recv_window_ms
        self._clock = clock

    @property
    def api_key(self) -> str:
        return self._api_key

    def sign(self, request: SignedRequest) -> SignedRequest:
        """Sign the request in place. A request that is already signed is left untouched."""
        if request.auth is not None:
            return request

        auth = AuthParams(
            api_key=self._api_key,
            timestamp=int(self._clock() * 1000),
            recv_window=self._recv_window_ms,
        )
        request.auth = auth

        if self._api_secret:
            payload = canonical_query_string(request.payload_items())
            request.auth = replace(auth, signature=hmac_sha256_hex(self._api_secret, payload))
        return request
