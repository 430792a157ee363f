"""
Structurizr workspace client.

Downloads a workspace with an HMAC-signed ``GET /workspace/{id}`` and extracts the source
locators declared on its components. Only components that carry a ``url`` contribute; a
system without containers or a container without components is skipped.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from collections.abc import Callable, Mapping
from typing import Any, Final
from urllib.parse import urlparse

import requests
import structlog

from archdrift import __version__
from archdrift.domain.models import StructurizrSource
from archdrift.integration.base import AuthorizationError, ModelFetchError, classify_http_status

logger = structlog.get_logger(__name__)

USER_AGENT: Final[str] = f"archdrift/{__version__}"
DEFAULT_API_URL: Final[str] = "https://api.structurizr.com"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
_EMPTY_CONTENT_MD5: Final[str] = hashlib.md5(b"").hexdigest()


def sign_request(
    *,
    api_key: str,
    secret: str,
    method: str,
    path: str,
    nonce: str,
    content: str = "",
    content_type: str = "",
) -> dict[str, str]:
    """Return the ``X-Authorization`` and ``Nonce`` headers for one request."""

    content_md5 = _EMPTY_CONTENT_MD5
    if content:
        content_md5 = hashlib.md5(content.encode("utf-8")).hexdigest()
    message = f"{method}\n{path}\n{content_md5}\n{content_type}\n{nonce}\n"
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    signature = base64.b64encode(digest.encode("utf-8")).decode("ascii")
    return {"X-Authorization": f"{api_key}:{signature}", "Nonce": nonce}


def collect_locators(workspace: Mapping[str, Any]) -> list[str]:
    """Flatten systems, containers and components into component locators, in model order."""

    model = workspace.get("model")
    if not isinstance(model, Mapping):
        return []
    locators: list[str] = []
    for system in model.get("softwareSystems") or ():
        if not isinstance(system, Mapping):
            continue
        for container in system.get("containers") or ():
            if not isinstance(container, Mapping):
                continue
            for component in container.get("components") or ():
                if not isinstance(component, Mapping):
                    continue
                url = component.get("url")
                if isinstance(url, str) and url:
                    locators.append(url)
    return locators


class StructurizrClient:
    """Minimal Structurizr API client built on ``requests``."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        nonce_fn: Callable[[], str] | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._base_path = urlparse(self._api_url).path.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._nonce_fn = nonce_fn or (lambda: str(int(time.time() * 1000)))

    def get_workspace(self, source: StructurizrSource) -> dict[str, Any]:
        path = f"{self._base_path}/workspace/{source.workspace_id}"
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        headers.update(
            sign_request(
                api_key=source.api_key,
                secret=source.secret,
                method="GET",
                path=path,
                nonce=self._nonce_fn(),
            )
        )
        url = f"{self._api_url}/workspace/{source.workspace_id}"
        logger.debug("structurizr_fetch_started", workspace_id=source.workspace_id, url=url)
        try:
            response = self._session.get(url, headers=headers, timeout=self._timeout_seconds)
        except requests.exceptions.Timeout as exc:
            raise ModelFetchError(
                f"workspace {source.workspace_id} fetch timed out after {self._timeout_seconds}s",
                code="timeout",
                retryable=True,
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ModelFetchError(
                f"workspace {source.workspace_id} fetch failed: {exc}",
                code="network",
                retryable=True,
            ) from exc

        if response.status_code >= 400:
            code, retryable = classify_http_status(response.status_code)
            detail = f"workspace {source.workspace_id} fetch returned HTTP {response.status_code}"
            if code == "auth":
                raise AuthorizationError(
                    detail,
                    source="structurizr",
                    http_status=response.status_code,
                )
            raise ModelFetchError(
                detail,
                code=code,
                retryable=retryable,
                http_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelFetchError(
                f"workspace {source.workspace_id} returned invalid JSON",
                code="invalid_response",
            ) from exc
        if not isinstance(payload, dict):
            raise ModelFetchError(
                f"workspace {source.workspace_id} root is not an object",
                code="invalid_response",
            )
        logger.info(
            "structurizr_fetch_finished",
            workspace_id=source.workspace_id,
            size_kb=round(len(response.content) / 1024, 1),
        )
        return payload

    def fetch_locators(self, source: StructurizrSource) -> list[str]:
        locators = collect_locators(self.get_workspace(source))
        logger.info(
            "model_locators_collected",
            workspace_id=source.workspace_id,
            count=len(locators),
        )
        return locators

    def close(self) -> None:
        self._session.close()


__all__ = [
    "DEFAULT_API_URL",
    "StructurizrClient",
    "USER_AGENT",
    "collect_locators",
    "sign_request",
]
