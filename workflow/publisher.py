"""Repository publishers invoked by the ``publish`` transition.

``RepositoryPublisher`` is the contract; ``DSpacePublisher`` deposits an item
in a DSpace 7 repository over its REST API, ``LocalPublisher`` mints an id
without any network traffic (development and tests).
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from shared.config import DSpaceSettings
from shared.errors import ExternalServiceError
from shared.models import Submission

logger = logging.getLogger(__name__)


@dataclass
class PublicationMetadata:
    """Dublin Core fields sent along with the deposited file."""

    repository: str
    title: str
    author: str
    doi: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    abstract: str = ""
    language: str = "en"
    rights: str = "All rights reserved"
    publisher: str = "University Repository"
    date_issued: str = field(default_factory=lambda: datetime.now(timezone.utc).date().isoformat())

    def dublin_core(self) -> Dict[str, List[Dict[str, Any]]]:
        def _vals(*values: str) -> List[Dict[str, Any]]:
            return [{"value": v, "language": None} for v in values if v]

        md = {
            "dc.title": _vals(self.title),
            "dc.contributor.author": _vals(self.author),
            "dc.date.issued": _vals(self.date_issued),
            "dc.type": _vals("Dissertation"),
            "dc.subject": _vals(*self.keywords),
            "dc.description.abstract": _vals(self.abstract),
            "dc.language.iso": _vals(self.language),
            "dc.publisher": _vals(self.publisher),
            "dc.rights": _vals(self.rights),
            "dc.identifier.doi": _vals(self.doi or ""),
        }
        return {k: v for k, v in md.items() if v}


class RepositoryPublisher(ABC):
    @abstractmethod
    def publish(self, submission: Submission, metadata: PublicationMetadata,
                content: Optional[bytes] = None) -> str:
        """
        Deposit the submission and return the repository's identifier for it.

        Raises:
            ExternalServiceError: the repository could not be reached or refused the item.
        """
        pass


class LocalPublisher(RepositoryPublisher):
    def __init__(self) -> None:
        self.published: List[str] = []

    def publish(self, submission: Submission, metadata: PublicationMetadata,
                content: Optional[bytes] = None) -> str:
        external_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{metadata.repository}/{submission.base_identity}"))
        self.published.append(external_id)
        return external_id


class DSpacePublisher(RepositoryPublisher):
    """DSpace 7 REST client: login, create item, ORIGINAL bundle, bitstream."""

    ENDPOINT_LOGIN = "/server/api/authn/login"
    ENDPOINT_ITEMS = "/server/api/core/items"
    ENDPOINT_BUNDLES = "/server/api/core/bundles"

    def __init__(self, settings: DSpaceSettings, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._settings = settings
        self._transport = transport
        self._token: Optional[str] = None

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def _auth_header(self) -> Dict[str, str]:
        return {"Authorization": self._token} if self._token else {}

    def _login(self, client: httpx.Client) -> None:
        response = client.post(
            self.ENDPOINT_LOGIN,
            data={"user": self._settings.username, "password": self._settings.password},
        )
        response.raise_for_status()
        token = response.headers.get("Authorization")
        if not token:
            body = response.json() if response.content else {}
            token = body.get("token")
            if token:
                token = f"Bearer {token}"
        if not token:
            raise ExternalServiceError("DSpace authentication failed: no token returned")
        self._token = token

    def _create_item(self, client: httpx.Client, metadata: PublicationMetadata) -> str:
        params = {"owningCollection": self._settings.collection} if self._settings.collection else None
        response = client.post(
            self.ENDPOINT_ITEMS,
            params=params,
            json={
                "name": metadata.title,
                "metadata": metadata.dublin_core(),
                "inArchive": True,
                "discoverable": True,
                "withdrawn": False,
                "type": "item",
            },
            headers=self._auth_header(),
        )
        response.raise_for_status()
        return str(response.json()["id"])

    def _upload(self, client: httpx.Client, item_id: str, filename: str, content: bytes, mimetype: str) -> None:
        bundle = client.post(
            f"{self.ENDPOINT_ITEMS}/{item_id}/bundles",
            json={"name": "ORIGINAL"},
            headers=self._auth_header(),
        )
        bundle.raise_for_status()
        bundle_id = bundle.json()["id"]
        response = client.post(
            f"{self.ENDPOINT_BUNDLES}/{bundle_id}/bitstreams",
            files={"file": (filename, content, mimetype)},
            headers=self._auth_header(),
        )
        response.raise_for_status()

    def publish(self, submission: Submission, metadata: PublicationMetadata,
                content: Optional[bytes] = None) -> str:
        try:
            with self._client() as client:
                self._login(client)
                item_id = self._create_item(client, metadata)
                if content:
                    self._upload(client, item_id, submission.filename, content, submission.mimetype)
        except httpx.HTTPError as e:
            logger.error("DSpace deposit of %s failed: %s", submission.filename, e)
            raise ExternalServiceError(f"DSpace deposit failed: {e}") from e
        except (KeyError, ValueError) as e:
            logger.error("Unexpected DSpace response for %s: %s", submission.filename, e)
            raise ExternalServiceError(f"Unexpected DSpace response: {e}") from e
        logger.info("Deposited %s in DSpace as item %s", submission.filename, item_id)
        return item_id
