"""
Minimal REST client for the hosted backend used by the ad import worker: table select/update/upsert over the
PostgREST API, object upload to storage, and plain media download. Authenticates with the service-role key.
"""
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from app.core.config import settings
from app.utils.retry import with_retry


class BackendError(Exception):
    """Non-success response from the backend or a media host."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientBackendError(BackendError):
    """5xx or connection-level failure; retried."""


RETRYABLE = (TransientBackendError,)


class SupabaseAdminClient:
    """Service-role client for tables and storage.
    Why available: Worker-side data access without the vendor SDK; every call retries transient failures and raises BackendError otherwise."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        retries: int = 2,
    ):
        if not base_url or not service_key:
            raise ValueError("Missing backend admin config (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)")
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.retries = retries

    @classmethod
    def from_settings(cls) -> "SupabaseAdminClient":
        return cls(
            settings.supabase_url,
            settings.supabase_service_role_key,
            timeout=settings.http_timeout_seconds,
        )

    def _auth_headers(self) -> Dict[str, str]:
        return {"apikey": self.service_key, "Authorization": f"Bearer {self.service_key}"}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        def call() -> requests.Response:
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise TransientBackendError(f"{method} {url} failed: {e}") from e
            if resp.status_code >= 500:
                raise TransientBackendError(f"{method} {url} -> {resp.status_code}: {resp.text[:300]}", resp.status_code)
            if not resp.ok:
                raise BackendError(f"{method} {url} -> {resp.status_code}: {resp.text[:300]}", resp.status_code)
            return resp

        return with_retry(call, retries=self.retries, retry_on=RETRYABLE, label=f"{method} {url}")

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{quote(table, safe='')}"

    @staticmethod
    def _eq_params(eq: Optional[Dict[str, Any]]) -> Dict[str, str]:
        return {k: f"eq.{v}" for k, v in (eq or {}).items()}

    # -------------------------
    # Tables
    # -------------------------

    def select_single(self, table: str, columns: str, eq: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the first row matching all eq filters, or None."""
        params = {"select": columns, "limit": "1", **self._eq_params(eq)}
        headers = {**self._auth_headers(), "Accept": "application/json"}
        resp = self._request("GET", self._table_url(table), params=params, headers=headers)
        rows = resp.json()
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    def update(self, table: str, data: Dict[str, Any], eq: Dict[str, Any]) -> None:
        headers = {**self._auth_headers(), "Content-Type": "application/json"}
        self._request("PATCH", self._table_url(table), params=self._eq_params(eq), json=data, headers=headers)

    def upsert(self, table: str, rows: List[Dict[str, Any]]) -> None:
        headers = {
            **self._auth_headers(),
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates",
        }
        self._request("POST", self._table_url(table), json=rows, headers=headers)

    # -------------------------
    # Storage and media
    # -------------------------

    def upload(self, bucket: str, dest_path: str, data: bytes, content_type: str) -> str:
        """Upload (overwriting) an object and return its path inside the bucket."""
        url = f"{self.base_url}/storage/v1/object/{quote(bucket, safe='')}/{dest_path}"
        headers = {
            **self._auth_headers(),
            "Content-Type": content_type or "application/octet-stream",
            "x-upsert": "true",
        }
        self._request("POST", url, data=data, headers=headers)
        return dest_path

    def download(self, url: str) -> Tuple[bytes, str]:
        """Fetch a media URL; returns (body, content_type). Raises BackendError on non-2xx or an empty body."""
        resp = self._request("GET", url)
        body = resp.content
        if not body:
            raise BackendError(f"Empty body downloading {url}", resp.status_code)
        return body, resp.headers.get("content-type") or "application/octet-stream"
