"""
auth/gotrue.py -- IdentityProvider backed by a GoTrue (Supabase Auth) server.

base_url is the auth root, e.g. https://<project>.supabase.co/auth/v1.
Admin endpoints (/admin/users) are called with the service-role key; user
endpoints (/user, /logout) with the caller's own access token.

Reset links are sent by GoTrue itself (/recover); the token arrives in the
landing URL fragment as access_token and is redeemed by updating /user with
it as the bearer credential.

Error mapping:
  transport errors, timeouts, 5xx      -> ProviderFailureError
  2xx without the expected JSON field -> ProviderFailureError
  401/403 on a user-token call         -> UnauthenticatedError or InvalidOrExpiredTokenError
  422/400 "already registered" on create -> ConflictError
  404 on admin update                  -> NotFoundError; on admin delete -> already removed
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from core.errors import (
    ConflictError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    ProviderFailureError,
    UnauthenticatedError,
)

logger = logging.getLogger("accessgate.auth.gotrue")


def _error_text(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("msg") or body.get("message") or body.get("error_description") or body.get("error") or "")
    return ""


class GoTrueIdentityProvider:
    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        # Known endpoint; 3 redirects is generous and limits redirect-chain SSRF.
        self._session = requests.Session()
        self._session.max_redirects = 3

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        bearer: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {bearer or self._service_key}",
        }
        try:
            resp = self._session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("GoTrue %s %s failed: %s", method, path, exc)
            raise ProviderFailureError() from exc
        if resp.status_code >= 500:
            logger.warning("GoTrue %s %s returned %d", method, path, resp.status_code)
            raise ProviderFailureError()
        return resp

    def _field(self, resp: requests.Response, name: str, operation: str) -> str | None:
        """Read one field from a 2xx JSON body. A body that is not a JSON object is a provider failure."""
        try:
            body = resp.json()
        except ValueError as exc:
            logger.warning("GoTrue %s returned a non-JSON body", operation)
            raise ProviderFailureError() from exc
        if not isinstance(body, dict):
            logger.warning("GoTrue %s returned an unexpected body", operation)
            raise ProviderFailureError()
        value = body.get(name)
        return str(value) if value else None

    def _required(self, resp: requests.Response, name: str, operation: str) -> str:
        value = self._field(resp, name, operation)
        if value is None:
            logger.warning("GoTrue %s response has no %s", operation, name)
            raise ProviderFailureError()
        return value

    def _fail(self, resp: requests.Response, operation: str) -> ProviderFailureError:
        logger.warning("GoTrue %s rejected (%d): %s", operation, resp.status_code, _error_text(resp))
        return ProviderFailureError()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def authenticate(self, credential: str) -> str:
        resp = self._request("GET", "/user", bearer=credential)
        if resp.status_code in (401, 403):
            raise UnauthenticatedError("Invalid or expired token.")
        if not resp.ok:
            raise self._fail(resp, "authenticate")
        identity_id = self._field(resp, "id", "authenticate")
        if identity_id is None:
            raise UnauthenticatedError("Invalid or expired token.")
        return identity_id

    def sign_in(self, email: str, password: str) -> str:
        resp = self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email.strip().lower(), "password": password},
        )
        if resp.status_code in (400, 401):
            raise UnauthenticatedError("Invalid email or password.")
        if not resp.ok:
            raise self._fail(resp, "sign_in")
        return self._required(resp, "access_token", "sign_in")

    def sign_out(self, credential: str) -> None:
        resp = self._request("POST", "/logout", bearer=credential)
        # 401 means the session is already gone, which is the goal.
        if not resp.ok and resp.status_code != 401:
            raise self._fail(resp, "sign_out")

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def set_credential(self, identity_id: str, password: str) -> None:
        resp = self._request("PUT", f"/admin/users/{identity_id}", json={"password": password})
        if resp.status_code == 404:
            raise NotFoundError()
        if not resp.ok:
            raise self._fail(resp, "set_credential")

    def issue_reset_token(self, email: str, return_url: str) -> None:
        resp = self._request(
            "POST",
            "/recover",
            params={"redirect_to": return_url},
            json={"email": email.strip().lower()},
        )
        if not resp.ok:
            raise self._fail(resp, "issue_reset_token")

    def redeem_reset_token(self, token: str, password: str) -> str:
        resp = self._request("PUT", "/user", bearer=token, json={"password": password})
        if resp.status_code in (401, 403):
            message = _error_text(resp).lower()
            raise InvalidOrExpiredTokenError(expired="expired" in message)
        if not resp.ok:
            raise self._fail(resp, "redeem_reset_token")
        return self._required(resp, "id", "redeem_reset_token")

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision_identity(self, email: str, password: str) -> str:
        resp = self._request(
            "POST",
            "/admin/users",
            json={"email": email.strip().lower(), "password": password, "email_confirm": True},
        )
        if resp.status_code in (400, 409, 422) and "already" in _error_text(resp).lower():
            raise ConflictError()
        if not resp.ok:
            raise self._fail(resp, "provision_identity")
        return self._required(resp, "id", "provision_identity")

    def deprovision_identity(self, identity_id: str) -> None:
        resp = self._request("DELETE", f"/admin/users/{identity_id}")
        if resp.status_code == 404:
            logger.warning("Deprovision of %s found no identity; treating as already removed", identity_id)
            return
        if not resp.ok:
            raise self._fail(resp, "deprovision_identity")

    def close(self) -> None:
        self._session.close()
