"""localStorage checks for the MSAL token cache.

The sample app uses the msal.js v1 cache layout:

- ``msal.<clientId>.idtoken``       id token of the signed-in account
- ``msal.<clientId>.client.info``   account/client info
- access tokens are stored under a JSON-serialized key such as
  ``{"authority":"https://fs.msidlab8.com/adfs/","clientId":"...","scopes":"openid","homeAccountIdentifier":"..."}``

Access-token entries are matched on the parsed *key*, not on the stored value.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, MutableMapping, Optional

from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)

StorageSnapshot = Dict[str, str]

ACCESS_TOKEN_KEY_MARKER = "authority"


@dataclass(frozen=True)
class CacheKeys:
    client_id: str

    @property
    def id_token(self) -> str:
        return f"msal.{self.client_id}.idtoken"

    @property
    def client_info(self) -> str:
        return f"msal.{self.client_id}.client.info"

    @property
    def base(self) -> List[str]:
        return [self.id_token, self.client_info]


@dataclass(frozen=True)
class AccessTokenKey:
    authority: str
    client_id: str
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, raw: str) -> Optional["AccessTokenKey"]:
        """Parse a serialized access-token cache key; None if it is not one."""
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Skipping unparsable cache key: %s", raw)
            return None
        if not isinstance(data, dict):
            return None
        authority = data.get("authority")
        client_id = data.get("clientId")
        if not isinstance(authority, str) or not isinstance(client_id, str):
            return None
        scopes = data.get("scopes") or ""
        return cls(authority=authority, client_id=client_id, scopes=str(scopes).split())

    def matches(self, authority: str, client_id: str) -> bool:
        # TODO: also require the requested scopes to be a subset of self.scopes
        # once the sample app owners confirm the expected scope set per flow.
        return (
            self.authority.lower() == authority.lower()
            and self.client_id.lower() == client_id.lower()
        )


class StorageValidator:
    """Snapshot and assert the token cache of one client registration."""

    def __init__(self, client_id: str, authority: str) -> None:
        self.keys = CacheKeys(client_id)
        self.client_id = client_id
        self.authority = authority

    async def snapshot(self, surface: Surface) -> StorageSnapshot:
        return await surface.local_storage()

    def base_entries(self, snapshot: StorageSnapshot) -> List[str]:
        return [key for key in self.keys.base if key in snapshot]

    def assert_base_entries(self, snapshot: StorageSnapshot) -> None:
        missing = [key for key in self.keys.base if key not in snapshot]
        assert not missing, f"Cache entries missing from localStorage: {missing} (keys={sorted(snapshot)})"

    def access_token_keys(self, snapshot: StorageSnapshot) -> List[str]:
        """Keys whose parsed form matches the configured authority and client."""
        matched = []
        for key in snapshot:
            if ACCESS_TOKEN_KEY_MARKER not in key:
                continue
            parsed = AccessTokenKey.parse(key)
            if parsed is not None and parsed.matches(self.authority, self.client_id):
                matched.append(key)
        return matched

    async def count_and_consume_access_tokens(
        self,
        surface: Surface,
        snapshot: MutableMapping[str, str],
    ) -> int:
        """Count matching access-token entries and remove each one.

        Matches are deleted from live storage and from ``snapshot`` itself, so
        the next scenario starts clean and a repeated call returns 0.
        """
        found = 0
        for key in self.access_token_keys(snapshot):
            await surface.remove_storage_key(key)
            snapshot.pop(key, None)
            found += 1
        logger.debug("Consumed %d access token entr%s", found, "y" if found == 1 else "ies")
        return found

    async def verify_login(self, surface: Surface) -> StorageSnapshot:
        snapshot = await self.snapshot(surface)
        self.assert_base_entries(snapshot)
        return snapshot

    async def verify_acquisition(self, surface: Surface) -> StorageSnapshot:
        snapshot = await self.verify_login(surface)
        found = await self.count_and_consume_access_tokens(surface, snapshot)
        assert found == 1, (
            f"Expected exactly one access token for authority={self.authority} "
            f"client_id={self.client_id}, found {found}"
        )
        return snapshot
