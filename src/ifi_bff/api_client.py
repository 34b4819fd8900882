# src/ifi_bff/api_client.py

import logging
import typing

import httpx

from .config import Settings
from .exceptions import FetchError

logger = logging.getLogger(__name__)


async def request_json(
        method: str,
        url: str,
        token: str,
        config: Settings,
        client: typing.Optional[httpx.AsyncClient] = None,
        json_body: typing.Any = None,
) -> typing.Any:
    """
    Sends one bearer-authenticated request to the backend API and returns the decoded JSON body.
    Any transport error, non-success status or undecodable body is raised as FetchError.
    A caller-supplied client is reused; otherwise a short-lived one is opened for this call.
    """
    headers = {"Authorization": f"Bearer {token}"}
    if json_body is not None:
        headers["Content-Type"] = "application/json"
    try:
        if client is not None:
            response = await client.request(method, url, headers=headers, json=json_body)
        else:
            async with httpx.AsyncClient(
                    verify=config.HTTP_VERIFY_TLS,
                    timeout=config.HTTP_TIMEOUT_SECONDS,
            ) as own_client:
                response = await own_client.request(method, url, headers=headers, json=json_body)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()
    except httpx.HTTPStatusError as e:
        logger.debug("%s %s -> %s: %s", method, url, e.response.status_code, e.response.text)
        raise FetchError(
            f"{method} {url} failed with status {e.response.status_code}",
            status_code=e.response.status_code,
        ) from e
    except (httpx.RequestError, httpx.InvalidURL) as e:
        raise FetchError(f"Could not connect to {url}: {e}") from e
    except ValueError as e:
        raise FetchError(f"Response from {url} is not valid JSON: {e}") from e
