"""HTTP client used to replay webhook and generic HTTP calls."""

import asyncio
import socket
from typing import Any, Dict, Optional

import aiohttp

from adsync_jobs.errors import RemoteHttpError


def _network_code(error: aiohttp.ClientError) -> str:
    if isinstance(error, aiohttp.ClientConnectorError):
        if isinstance(error.os_error, socket.gaierror):
            return "ENOTFOUND"
        return "ECONNREFUSED"
    return "ECONNRESET"


class WebhookClient:
    """HTTP client for replaying calls against arbitrary endpoints."""

    def __init__(self, timeout: float = 30.0):
        """
        Initialize HTTP client.

        Args:
            timeout: Default request timeout in seconds
        """
        self.timeout = timeout

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send one request.

        Returns:
            ``{"status_code", "headers", "data"}``; data is the decoded JSON
            body when the response is JSON, otherwise the text

        Raises:
            RemoteHttpError: On HTTP status >= 400 or a network failure
                (status_code 0 with ``code`` set)
        """
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            try:
                async with session.request(
                    method.upper(), url, json=json_body, headers=headers, params=params
                ) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"{method.upper()} {url} failed: {response_body}",
                            response_body=response_body,
                        )

                    if resp.content_type == "application/json":
                        data = await resp.json()
                    else:
                        data = response_body

                    return {
                        "status_code": resp.status,
                        "headers": dict(resp.headers),
                        "data": data,
                    }

            except asyncio.TimeoutError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Request to {url} timed out",
                    code="ETIMEDOUT",
                ) from e
            except aiohttp.ClientError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                    code=_network_code(e),
                ) from e
