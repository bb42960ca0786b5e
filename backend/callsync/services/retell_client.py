import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from callsync.core.config import Settings, settings as default_settings
from callsync.schemas import CallPage, ConnectivityResult

logger = logging.getLogger(__name__)

# Credential failures end the whole run; other 4xx codes end only the scope.
AUTH_STATUSES = {401, 403}
TRANSIENT_CLIENT_STATUSES = {408, 429}


class RetellError(RuntimeError):
    """Base error for the Retell call source."""


class RetellConfigurationError(RetellError):
    """Raised when the client cannot be built from settings."""


class RetellRequestError(RetellError):
    def __init__(self, status_code: Optional[int], message: str) -> None:
        self.status_code = status_code
        self.message = message
        status = status_code if status_code is not None else "network"
        super().__init__(f"Retell API request failed ({status}): {message}")


class RetellAuthError(RetellRequestError):
    """Upstream refused the credentials (401/403); aborts the whole run."""


class RetellTransientError(RetellRequestError):
    """5xx, timeouts and network failures; aborts only the current scope."""


class RetellRejectedError(RetellRequestError):
    """A 4xx other than auth or throttling, e.g. an unknown agent id; aborts only the current scope."""


class CallSource(Protocol):
    def fetch_page(
        self,
        scope_filter: Optional[str] = None,
        continuation_token: Optional[str] = None,
        page_size: int = 100,
    ) -> CallPage:
        ...

    def fetch_details(self, external_call_id: str) -> Dict[str, Any]:
        ...

    def test_connectivity(self) -> ConnectivityResult:
        ...


class RetellClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = default_settings.retell_api_base_url,
        timeout_seconds: float = default_settings.request_timeout_seconds,
        max_page_size: int = default_settings.max_page_size,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise RetellConfigurationError("RETELL_API_KEY is not configured")
        self.base_url = base_url.rstrip("/")
        self.max_page_size = max(1, max_page_size)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._owns_http_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client(
            timeout=httpx.Timeout(timeout_seconds)
        )

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "RetellClient":
        return cls(
            api_key=config.retell_api_key,
            base_url=config.retell_api_base_url,
            timeout_seconds=config.request_timeout_seconds,
            max_page_size=config.max_page_size,
        )

    def __enter__(self) -> "RetellClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def fetch_page(
        self,
        scope_filter: Optional[str] = None,
        continuation_token: Optional[str] = None,
        page_size: int = 100,
    ) -> CallPage:
        body: Dict[str, Any] = {"limit": min(max(1, page_size), self.max_page_size)}
        if scope_filter:
            body["agent_id"] = scope_filter
        if continuation_token:
            body["page_token"] = continuation_token
        logger.debug("Fetching calls page with params %s", body)
        payload = self._post("/list-calls", body)
        page = parse_call_page(payload)
        logger.info(
            "Fetched %s calls for %s, has_more=%s",
            len(page.records),
            scope_filter or "global",
            page.has_more,
        )
        return page

    def fetch_details(self, external_call_id: str) -> Dict[str, Any]:
        payload = self._post("/get-call", {"call_id": external_call_id})
        if not isinstance(payload, dict):
            raise RetellTransientError(None, "call detail payload must be a JSON object")
        call = payload.get("call")
        return call if isinstance(call, dict) else payload

    def test_connectivity(self) -> ConnectivityResult:
        try:
            page = self.fetch_page(page_size=1)
        except RetellError as exc:
            logger.warning("Retell connectivity test failed: %s", exc)
            return ConnectivityResult(reachable=False, error=str(exc))
        return ConnectivityResult(
            reachable=True,
            sample_count=len(page.records),
            has_more=page.has_more,
        )

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        try:
            response = self._http.post(f"{self.base_url}{path}", json=body, headers=self._headers)
        except httpx.TimeoutException as exc:
            raise RetellTransientError(None, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RetellTransientError(None, f"{type(exc).__name__}: {exc}") from exc

        status = response.status_code
        if status < 200 or status >= 300:
            message = _safe_error_message(response)
            logger.error("Retell API error on %s: %s - %s", path, status, message)
            if status in AUTH_STATUSES:
                raise RetellAuthError(status, message)
            if 400 <= status < 500 and status not in TRANSIENT_CLIENT_STATUSES:
                raise RetellRejectedError(status, message)
            raise RetellTransientError(status, message)

        try:
            return response.json()
        except ValueError as exc:
            raise RetellTransientError(status, "invalid JSON payload") from exc


def parse_call_page(payload: Any) -> CallPage:
    if isinstance(payload, list):
        records = payload
        has_more = False
        next_token = None
    elif isinstance(payload, dict):
        records = payload.get("calls") or []
        has_more = payload.get("has_more") is True
        next_token = payload.get("next_page_token") or payload.get("pagination_key")
    else:
        raise RetellTransientError(None, "list payload must be a JSON object or list")
    if not isinstance(records, list):
        records = []
    return CallPage(
        records=list(records),
        has_more=has_more,
        next_token=str(next_token) if next_token else None,
    )


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("error_message") or payload.get("message") or payload.get("error")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"
