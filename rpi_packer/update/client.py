"""HTTP client for the on-device update agent.

The agent exposes four endpoints, all POST with HTTP basic auth:

    update/root    body: root region bytes, written to the inactive root slot
    update/boot    body: boot region bytes, written to the boot partition
    update/switch  mark the freshly written root slot active
    reboot         reboot into the new slot
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from rpi_packer.image.sources import TransferSource

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "gokrazy"

ROOT_ENDPOINT = "update/root"
BOOT_ENDPOINT = "update/boot"
SWITCH_ENDPOINT = "update/switch"
REBOOT_ENDPOINT = "reboot"


class UpdateRequestError(Exception):
    """Raised when a request to the update agent fails."""

    def __init__(
        self,
        message: str,
        code: str = "update_request_error",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True)
class UpdateTarget:
    """Where the update agent listens and how to authenticate.

    Attributes:
        base_url: Agent URL without credentials, path "/".
        username: Basic auth user name.
        password: Basic auth password.
    """

    base_url: str
    username: str
    password: str

    def url(self, endpoint: str) -> str:
        return self.base_url + endpoint

    def __repr__(self) -> str:
        return f"UpdateTarget(base_url={self.base_url!r}, username={self.username!r})"


def resolve_update_url(
    update: str,
    *,
    hostname: str,
    password: str,
    username: str = DEFAULT_USERNAME,
) -> UpdateTarget:
    """Turn an --update value into an UpdateTarget.

    The literal "yes" means http://<username>:<password>@<hostname>/. Any
    other value is parsed as a URL; credentials it lacks are filled in from
    username and password. The path is always reset to "/".

    Raises:
        UpdateRequestError: The value is not an http(s) URL with a host.
    """
    if update == "yes":
        update = f"http://{hostname}/"
    try:
        url = httpx.URL(update)
    except httpx.InvalidURL as e:
        raise UpdateRequestError(
            f"Invalid update URL {update!r}: {e}", code="invalid_url"
        ) from e

    if url.scheme not in ("http", "https") or not url.host:
        raise UpdateRequestError(
            f"Update URL must be http(s)://host/, got {update!r}", code="invalid_url"
        )

    base = httpx.URL(scheme=url.scheme, host=url.host, port=url.port, path="/")
    return UpdateTarget(
        base_url=str(base),
        username=url.username or username,
        password=url.password or password,
    )


class HttpUpdateClient:
    """Talks to the update agent of one device.

    Example:
        with HttpUpdateClient(target, timeout=600) as client:
            client.upload_root(root_source)
    """

    def __init__(
        self,
        target: UpdateTarget,
        *,
        timeout: float = 600,
        client: httpx.Client | None = None,
    ) -> None:
        self.target = target
        self._auth = httpx.BasicAuth(target.username, target.password)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpUpdateClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _post(self, endpoint: str, source: TransferSource | None = None) -> None:
        url = self.target.url(endpoint)
        try:
            if source is None:
                response = self._client.post(url, auth=self._auth)
            else:
                logger.info("Uploading %s to %s", source.describe(), url)
                with source.open() as reader:
                    response = self._client.post(
                        url,
                        content=iter(reader),
                        headers={"Content-Length": str(source.length)},
                        auth=self._auth,
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpdateRequestError(
                f"HTTP error from {url}: {e.response.status_code} "
                f"{e.response.reason_phrase}",
                code="http_error",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise UpdateRequestError(f"Timeout talking to {url}", code="timeout") from e
        except httpx.RequestError as e:
            raise UpdateRequestError(
                f"Network error talking to {url}: {e}", code="network_error"
            ) from e
        except OSError as e:
            raise UpdateRequestError(
                f"Error reading {source.describe() if source else endpoint}: {e}",
                code="source_error",
            ) from e
        logger.debug("POST %s: %d", url, response.status_code)

    def upload_root(self, source: TransferSource) -> None:
        self._post(ROOT_ENDPOINT, source)

    def upload_boot(self, source: TransferSource) -> None:
        self._post(BOOT_ENDPOINT, source)

    def switch(self) -> None:
        self._post(SWITCH_ENDPOINT)

    def reboot(self) -> None:
        self._post(REBOOT_ENDPOINT)


__all__ = [
    "DEFAULT_USERNAME",
    "HttpUpdateClient",
    "UpdateRequestError",
    "UpdateTarget",
    "resolve_update_url",
]
