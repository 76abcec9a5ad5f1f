"""
REST gateway: authenticated request/response cycle for order and account
operations.

**Conceptual**: The gateway is a thin HTTP client. It knows how to build a
URL (config.base_url + the dialect's path for an operation), how to attach
headers (JSON content headers plus whatever the dialect's auth_headers()
returns), and how to turn failures into RequestError. It does NOT know any
venue's field names; parsing bodies into OrderStatus / Position /
AccountSnapshot is delegated back to the dialect.

**Error policy**:
  - Non-2xx response: RequestError carrying status_code and the body text.
  - No response at all (DNS failure, refused, reset): RequestError with
    status_code=None.
  - Timeout (only when RestSettings.timeout_seconds is set): requests.Timeout
    is re-raised unchanged.
  - Nothing is retried. Placing or cancelling an order twice because the
    first response was lost is worse than surfacing the error.

Calls are blocking; the adapter facades run them in a worker thread.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import requests

from src.config.settings import RestSettings, get_settings
from src.venues.base import VenueDialect
from src.venues.errors import ConfigurationError, NormalizationError, RequestError
from src.venues.models import AccountSnapshot, OrderRequest, OrderStatus, Position

logger = logging.getLogger(__name__)


class RestGateway:
    """
    HTTP client for one configured venue.

    Args:
        dialect: Venue dialect supplying paths, auth headers and parsers.
        settings: Timeout and user agent. Defaults to get_settings().rest.
        session: Optional requests.Session (tests inject one).

    Example:
        >>> from src.config.settings import VenueConfig
        >>> from src.venues.registry import dialect_for
        >>> config = VenueConfig.from_preset("alpaca", api_key="k", secret_key="s")
        >>> with RestGateway(dialect_for(config)) as gateway:
        ...     account = gateway.get_account()
    """

    def __init__(
        self,
        dialect: VenueDialect,
        settings: Optional[RestSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.dialect = dialect
        self.settings = settings if settings is not None else get_settings().rest
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": self.settings.user_agent,
        })

    @property
    def base_url(self) -> str:
        return self.dialect.config.base_url

    def place_order(self, request: OrderRequest) -> OrderStatus:
        """
        Submit `request` and return the venue's view of the new order.

        Fields the venue leaves out of its response (symbol, side, quantity,
        client order id) are filled in from the request.

        Raises:
            ValueError: If the request fails validation.
            RequestError: On a non-2xx response or transport failure.
        """
        request.validate()
        path = self.dialect.endpoint("place_order")
        body = self._request("POST", path, body=self.dialect.order_payload(request))
        status = self.dialect.parse_order(body if isinstance(body, Mapping) else {})
        return _echo_request(status, request)

    def cancel_order(self, order_id: str) -> None:
        if not order_id or not str(order_id).strip():
            raise ValueError("order_id cannot be empty")
        path = self.dialect.endpoint("cancel_order", order_id=quote(str(order_id).strip(), safe=""))
        self._request("DELETE", path)

    def get_account(self) -> AccountSnapshot:
        """
        Fetch the account summary.

        A one-element list (the accounts array some brokers return) is
        unwrapped; any other non-object body raises NormalizationError.
        """
        body = self._request("GET", self.dialect.endpoint("account"))
        if isinstance(body, list) and len(body) == 1:
            body = body[0]
        if body is not None and not isinstance(body, Mapping):
            raise NormalizationError(f"Expected an account object, got {type(body).__name__}")
        return self.dialect.parse_account(body or {})

    def get_positions(self) -> List[Position]:
        body = self._request("GET", self.dialect.endpoint("positions"))
        return self.dialect.parse_positions(body)

    def get_orders(self, status: Optional[str] = None) -> List[OrderStatus]:
        """List orders, optionally filtered by the venue's status vocabulary ("open", "closed", ...)."""
        params = {"status": status} if status else None
        body = self._request("GET", self.dialect.endpoint("orders"), params=params)
        return self.dialect.parse_orders(body)

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self.base_url:
            raise ConfigurationError(f"{self.dialect.name} has no REST endpoint")

        url = f"{self.base_url.rstrip('/')}{path}"
        headers = {"Content-Type": "application/json"}
        headers.update(self.dialect.auth_headers(method, path, body))
        data = json.dumps(body) if body is not None else None

        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                data=data,
                params=params,
                timeout=self.settings.timeout_seconds,
            )
        except requests.Timeout:
            raise
        except requests.RequestException as e:
            raise RequestError(
                f"{method} {url} failed: {e}", status_code=None, body=str(e)
            ) from e

        if not 200 <= response.status_code < 300:
            logger.warning("%s %s returned %s", method, url, response.status_code)
            raise RequestError(
                f"API request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RequestError(
                f"Failed to parse JSON response: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _echo_request(status: OrderStatus, request: OrderRequest) -> OrderStatus:
    if not status.symbol:
        status.symbol = request.symbol
    if status.side is None:
        status.side = request.side
    if not status.quantity:
        status.quantity = request.quantity
    if status.order_type is None:
        status.order_type = request.order_type.value
    if status.time_in_force is None:
        status.time_in_force = request.time_in_force.value
    if status.client_order_id is None:
        status.client_order_id = request.client_order_id
    if not status.order_id and request.client_order_id:
        status.order_id = request.client_order_id
    return status
