"""Client for the lab user/secret service that hands out test identities.

The lab API exposes two endpoints the harness needs:

    GET {base_url}/user?envname=...&usertype=...&federationprovider=...
        -> [{"labName": "...", "upn": "user@lab.example", ...}, ...]
    GET {base_url}/LabUserSecret?secret=<labName>
        -> {"value": "<password>"}

Authentication is a bearer token (``LAB_API_ACCESS_TOKEN``).

Usage:
    with LabClient(base_url, access_token) as lab:
        provisioner = CredentialProvisioner(lab)
        credential = provisioner.provision(settings.lab_user)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from msal_e2e.config import LabUserParams
from msal_e2e.errors import ProvisionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Username/password pair for the provisioned lab user."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class LabUser:
    lab_name: str
    upn: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LabUser":
        return cls(lab_name=data.get("labName") or "", upn=data.get("upn") or "")


class LabClient:
    """Synchronous client for the lab API.

    Args:
        base_url: API base URL (e.g. https://msidlab.com/api)
        access_token: Bearer token; required
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not access_token:
            raise ProvisionError(
                name="lab_client",
                message="Lab authentication required: set LAB_API_ACCESS_TOKEN",
            )
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {access_token}"},
            transport=transport,
        )

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Make HTTP request to the lab API, mapping failures to ProvisionError."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProvisionError(
                name=endpoint.lstrip("/"),
                payload={"status": exc.response.status_code},
                message=f"Lab API returned HTTP {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProvisionError(name=endpoint.lstrip("/"), message=str(exc)) from exc
        return response

    def _json(self, response: httpx.Response, endpoint: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProvisionError(name=endpoint, message="Lab API returned invalid JSON") from exc

    def get_users(self, params: LabUserParams) -> List[LabUser]:
        """Resolve lab user records for an environment / user type / federation."""
        response = self._request(
            "GET",
            "/user",
            params={
                "envname": params.env_name,
                "usertype": params.user_type,
                "federationprovider": params.federation_provider,
            },
        )
        data = self._json(response, "user")
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise ProvisionError(name="user", message="Unexpected lab user payload")
        return [LabUser.from_dict(item) for item in data if isinstance(item, dict)]

    def get_secret(self, lab_name: str) -> str:
        """Resolve the secret value stored for a lab."""
        response = self._request("GET", "/LabUserSecret", params={"secret": lab_name})
        data = self._json(response, "LabUserSecret")
        value = data.get("value") if isinstance(data, dict) else None
        if not value:
            raise ProvisionError(name="LabUserSecret", payload={"lab": lab_name}, message="Lab secret has no value")
        return value

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LabClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class CredentialProvisioner:
    """Fetch the test identity once and hand out the same Credential afterwards."""

    def __init__(self, lab: LabClient) -> None:
        self._lab = lab
        self._credential: Optional[Credential] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def provision(self, params: LabUserParams) -> Credential:
        if self._credential is not None:
            return self._credential

        users = self._lab.get_users(params)
        if not users:
            raise ProvisionError(
                name="provision",
                payload={"env": params.env_name, "user_type": params.user_type},
                message="Lab API returned no user for the requested environment",
            )
        user = users[0]
        if not user.upn or not user.lab_name:
            raise ProvisionError(name="provision", payload={"user": user.upn}, message="Lab user record is incomplete")

        password = self._lab.get_secret(user.lab_name)
        self._credential = Credential(username=user.upn, password=password)
        logger.info("Provisioned lab user %s (lab=%s)", user.upn, user.lab_name)
        return self._credential
