"""Authorized HTTP client with one-shot token refresh."""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from config import CrmApiConfig
from crmsync.errors import AuthError, TransportError
from crmsync.storage.repositories import TokenStore

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """Status plus decoded body of a remote response."""

    status: int
    body: Any = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def error_message(self) -> str:
        body = self.body
        if isinstance(body, dict):
            if body.get("message"):
                return str(body["message"])
            data = body.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("message"):
                return str(data[0]["message"])
            if body.get("errorCode"):
                return str(body["errorCode"])
        return self.text[:200] or f"HTTP {self.status}"


class AuthorizedClient:
    """Sends requests with the stored access token, refreshing it once on 401."""

    def __init__(self, config: CrmApiConfig, tokens: TokenStore, session: Optional[requests.Session] = None):
        """Initialize client."""
        self.config = config
        self.tokens = tokens
        self.session = session or requests.Session()

    def access_token(self) -> str:
        tokens = self.tokens.get()
        if not tokens:
            raise AuthError("No access token available; connect the remote account first")
        return tokens["access_token"]

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
    ) -> ApiResponse:
        """
        Send a request with bearer auth

        A 401 triggers exactly one refresh and one retry of the same request.

        Raises:
            AuthError: No token stored, or the refresh failed
            TransportError: Network failure or timeout
        """
        timeout = timeout or self.config.search_timeout
        response = self._request(method, url, self.access_token(), headers, body, params, timeout)

        if response.status == 401:
            logger.info(f"Received 401 from {method} {url}, refreshing token")
            new_token = self.refresh_token()
            if not new_token:
                raise AuthError("Access token rejected and refresh failed", {"url": url})
            response = self._request(method, url, new_token, headers, body, params, timeout)

        return response

    def _request(self, method, url, token, headers, body, params, timeout) -> ApiResponse:
        request_headers = {
            "Authorization": f"{self.config.auth_scheme} {token}",
            "Content-Type": "application/json",
        }
        request_headers.update(headers or {})

        try:
            response = self.session.request(
                method,
                url,
                headers=request_headers,
                data=json.dumps(body) if body is not None else None,
                params=params,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise TransportError(f"Timeout after {timeout}s: {method} {url}", {"error": str(e)})
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {method} {url}: {e}", {"error": str(e)})

        return self._wrap(response)

    @staticmethod
    def _wrap(response: requests.Response) -> ApiResponse:
        text = response.text or ""
        try:
            body = response.json() if text.strip() else {}
        except ValueError:
            body = {}
        return ApiResponse(status=response.status_code, body=body, text=text)

    def refresh_token(self) -> Optional[str]:
        """Exchange the refresh token for a new access token"""
        tokens = self.tokens.get()
        if not tokens or not tokens.get("refresh_token"):
            logger.error("No refresh token available")
            return None

        url = f"{self.config.accounts_url.rstrip('/')}/oauth/v2/token"
        try:
            response = self.session.post(
                url,
                data={
                    "refresh_token": tokens["refresh_token"],
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "refresh_token",
                },
                timeout=self.config.search_timeout,
            )
            new_tokens = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error refreshing token: {e}")
            return None

        if not isinstance(new_tokens, dict) or not new_tokens.get("access_token"):
            logger.error(f"Token refresh failed: {new_tokens.get('error', 'unknown error') if isinstance(new_tokens, dict) else 'invalid response'}")
            return None

        if not new_tokens.get("refresh_token"):
            new_tokens["refresh_token"] = tokens["refresh_token"]
        self.tokens.save(new_tokens)
        logger.info("Access token refreshed")
        return new_tokens["access_token"]
