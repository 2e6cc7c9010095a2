"""Shared HTTP plumbing for the panel APIs.

The panel exposes two APIs with separate keys: the application API for
management calls and the client API for end-user calls. Each gets its own
``PanelHTTP`` instance; nothing switches credentials at runtime.
"""

import httpx

from gsp.errors import PanelConflictError, PanelError, PanelNotFoundError, PanelValidationError
from gsp.logging_config import get_logger

logger = get_logger(__name__)


def _error_details(response: httpx.Response) -> list[str]:
    try:
        body = response.json()
    except ValueError:
        return [response.text] if response.text else []
    errors = body.get("errors") if isinstance(body, dict) else None
    if not errors:
        return []
    return [e.get("detail") or e.get("code") or "" for e in errors]


def raise_for_panel_status(response: httpx.Response) -> None:
    """Translate a non-2xx panel response into the matching PanelError."""
    if response.is_success:
        return
    details = _error_details(response)
    detail = "; ".join(d for d in details if d)
    status = response.status_code
    if status == 404:
        raise PanelNotFoundError(f"Panel resource not found: {response.request.url.path}", status, detail)
    if status == 422:
        raise PanelValidationError(details or [f"Validation failed ({status})"], status)
    if status == 409:
        raise PanelConflictError(detail or f"Panel conflict ({status})", status, detail)
    raise PanelError(f"Panel returned {status}: {detail or response.reason_phrase}", status, detail)


class PanelHTTP:
    api_prefix = ""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        http_client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.Client(
            base_url=f"{self.base_url}{self.api_prefix}",
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug("panel_request", method=method, path=path, api=self.api_prefix)
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PanelError(f"Panel request {method} {path} failed: {e}") from e
        raise_for_panel_status(response)
        return response

    def decode(self, response: httpx.Response) -> dict:
        """JSON body of a successful response; an empty body is an empty dict."""
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise PanelError(
                f"Panel returned a non-JSON body for {response.request.url.path}", response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise PanelError(f"Panel returned an unexpected body for {response.request.url.path}", response.status_code)
        return body

    def get_json(self, path: str, params: dict | None = None) -> dict:
        return self.decode(self.request("GET", path, params=params))

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
