"""Hydra lookup client: build job name -> store path of its latest output."""

import logging

import httpx

from .Config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HYDRA_URL, DEFAULT_READ_TIMEOUT, AppConfig
from .Errors import MalformedMetadata, NotFound
from .FileIO import make_http_client

logger = logging.getLogger(__name__)


class HydraClient:
    """Resolves Hydra jobs such as ``nixos/trunk-combined/nixos.iso_minimal.x86_64-linux``.

    Attributes:
        url (str): Base URL of the Hydra instance.
        client (httpx.Client): Underlying HTTP client.
    """

    def __init__(self, url: str = DEFAULT_HYDRA_URL, *, client: httpx.Client | None = None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT, read_timeout: float = DEFAULT_READ_TIMEOUT):
        self.url = url.rstrip("/")
        self._owns_client = client is None
        self.client = client if client is not None else make_http_client(connect_timeout, read_timeout)

    @classmethod
    def from_config(cls, config: AppConfig, client: httpx.Client | None = None) -> "HydraClient":
        return cls(config.hydra_url, client=client,
                   connect_timeout=config.connect_timeout, read_timeout=config.read_timeout)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._owns_client:
            self.client.close()

    def latest_output_path(self, job: str, output: str = "out") -> str:
        """Return the store path of `output` of the latest successful build of `job`.

        Raises:
            NotFound: If the job does not exist or its build has no such output.
            MalformedMetadata: If Hydra's answer is not the expected JSON.
            httpx.HTTPError: On other network or HTTP failures.
        """
        url = f"{self.url}/job/{job}/latest"
        logger.debug("Querying %s", url)
        response = self.client.get(url, headers={"Accept": "application/json"})
        if response.status_code == 404:
            raise NotFound(f"Hydra has no finished build for job: {job}")
        response.raise_for_status()

        try:
            build = response.json()
        except ValueError as e:
            raise MalformedMetadata(f"Hydra returned invalid JSON for job {job}: {e}") from e
        outputs = build.get("buildoutputs") if isinstance(build, dict) else None
        if not isinstance(outputs, dict):
            raise MalformedMetadata(f"Hydra response for job {job} has no build outputs")

        entry = outputs.get(output)
        path = entry.get("path") if isinstance(entry, dict) else None
        if not path:
            raise NotFound(f"Couldn't find a valid store path for job: {job} (output {output!r})")
        return path
