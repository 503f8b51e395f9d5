"""JSON-over-HTTP helper shared by the YouTube and Graph clients."""
import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from dispatch.async_dispatcher import AsyncDispatcher
from processor.exceptions import RemoteRequestError, is_transient

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """
    Blocking ``requests`` calls run in worker threads behind a dispatcher.

    Every attempt of every request is admitted through the dispatcher, so the
    dispatcher's concurrency limit bounds the number of open connections.
    """

    def __init__(
        self,
        base_url: str,
        dispatcher: AsyncDispatcher,
        timeout: int = 30,
        retry_limit: Optional[int] = 10,
        retry_delay: float = 1.0,
        proxy: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Initialize the client.

        Args:
            base_url: Prefix for relative request paths
            dispatcher: Dispatcher admitting each request
            timeout: Per-request timeout in seconds
            retry_limit: Attempts per request for transient errors, None for unbounded
            retry_delay: Base delay between attempts in seconds
            proxy: Optional HTTP(S) proxy URL
            headers: Headers sent with every request
        """
        self.base_url = base_url.rstrip('/')
        self.dispatcher = dispatcher
        self.timeout = timeout
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay
        self.session = requests.Session()
        if proxy:
            self.session.proxies.update({'http': proxy, 'https': proxy})
        if headers:
            self.session.headers.update(headers)

    def url_for(self, path: str) -> str:
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path relative to ``base_url`` or an absolute URL
            params: Query string parameters
            json: JSON request body
            headers: Extra headers for this request

        Returns:
            Decoded JSON response, or None for an empty body

        Raises:
            RemoteRequestError: If the request fails permanently or the
                retry limit is exhausted
        """
        url = self.url_for(path)
        return await self.dispatcher.retry(
            self.retry_limit,
            self._send,
            method,
            url,
            params,
            json,
            headers,
            retry_if=is_transient,
            delay=self.retry_delay,
            description=f"{method} {url}"
        )

    async def _send(self, method, url, params, json, headers) -> Any:
        return await asyncio.to_thread(self._send_blocking, method, url, params, json, headers)

    def _send_blocking(self, method, url, params, json, headers) -> Any:
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteRequestError(
                f"{method} {url} failed: {e}",
                network_error=True
            ) from e

        if not response.ok:
            body = self._decode_error_body(response)
            raise RemoteRequestError(
                self._error_message(method, url, response, body),
                status=response.status_code,
                reason=self.error_reason(body),
                body=body
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON from {method} {url}: {response.text[:200]}")
            raise RemoteRequestError(f"{method} {url} returned invalid JSON") from e

    @staticmethod
    def _decode_error_body(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def error_reason(body: Any) -> Optional[str]:
        """Extract a machine-readable reason from a Google or Graph error body."""
        if not isinstance(body, dict):
            return None
        error = body.get('error')
        if not isinstance(error, dict):
            return None
        for detail in error.get('errors') or []:
            if isinstance(detail, dict) and detail.get('reason'):
                return detail['reason']
        return error.get('code') if isinstance(error.get('code'), str) else None

    @staticmethod
    def _error_message(method: str, url: str, response: requests.Response, body: Any) -> str:
        message = f"{response.status_code} {response.reason}"
        if isinstance(body, dict) and isinstance(body.get('error'), dict):
            detail = body['error'].get('message')
            if detail:
                message = f"{message}: {detail}"
        return f"{method} {url} failed: {message}"
