import json

import httpx
import pytest

from shared.config import DSpaceSettings
from shared.errors import AuthenticationError, ExternalServiceError
from shared.models import Role, Stage, Submission
from workflow.auth import DirectoryAuthProvider, has_role
from workflow.publisher import DSpacePublisher, LocalPublisher, PublicationMetadata

SETTINGS = DSpaceSettings(base_url="https://repo.example.edu", username="dspace@example.edu",
                          password="secret", collection="col-1")
DOC = Submission(filename="jane_roe_Stage3.pdf", stage=Stage.STAGE3, owner="jane.roe", time=1,
                 ready_for_publication=True)
META = PublicationMetadata(repository="DSpace Repository", title="Deep Thoughts", author="jane.roe",
                           doi="10.1234/dt", keywords=["ai", "nlp"])


def dspace_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        path = request.url.path
        if path == "/server/api/authn/login":
            return httpx.Response(200, headers={"Authorization": "Bearer tok-1"})
        if path == "/server/api/core/items":
            return httpx.Response(201, json={"id": "item-42"})
        if path == "/server/api/core/items/item-42/bundles":
            return httpx.Response(201, json={"id": "bundle-7"})
        if path == "/server/api/core/bundles/bundle-7/bitstreams":
            return httpx.Response(201, json={"id": "bit-1"})
        return httpx.Response(404)
    return handler


def test_dspace_publish_flow():
    calls = []
    publisher = DSpacePublisher(SETTINGS, transport=httpx.MockTransport(dspace_handler(calls)))
    external_id = publisher.publish(DOC, META, b"%PDF-1.4 final")
    assert external_id == "item-42"
    assert [c.url.path for c in calls] == [
        "/server/api/authn/login",
        "/server/api/core/items",
        "/server/api/core/items/item-42/bundles",
        "/server/api/core/bundles/bundle-7/bitstreams",
    ]
    item_request = calls[1]
    assert item_request.url.params["owningCollection"] == "col-1"
    assert item_request.headers["Authorization"] == "Bearer tok-1"
    body = json.loads(item_request.content)
    assert body["metadata"]["dc.title"][0]["value"] == "Deep Thoughts"
    assert [v["value"] for v in body["metadata"]["dc.subject"]] == ["ai", "nlp"]


def test_dspace_without_content_skips_upload():
    calls = []
    publisher = DSpacePublisher(SETTINGS, transport=httpx.MockTransport(dspace_handler(calls)))
    publisher.publish(DOC, META)
    assert len(calls) == 2


def test_dspace_errors_become_external_service_errors():
    def refuse(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad credentials"})

    publisher = DSpacePublisher(SETTINGS, transport=httpx.MockTransport(refuse))
    with pytest.raises(ExternalServiceError):
        publisher.publish(DOC, META)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    publisher = DSpacePublisher(SETTINGS, transport=httpx.MockTransport(unreachable))
    with pytest.raises(ExternalServiceError):
        publisher.publish(DOC, META)


def test_local_publisher_is_deterministic():
    a, b = LocalPublisher(), LocalPublisher()
    assert a.publish(DOC, META) == b.publish(DOC, META)
    assert "dc.identifier.doi" not in PublicationMetadata("r", "t", "a").dublin_core()


def test_directory_auth():
    auth = DirectoryAuthProvider()
    user = auth.authenticate("Dr.Anderson", "anything")
    assert user.username == "dr.anderson" and user.role == Role.REVIEWER
    assert has_role(user, Role.REVIEWER) and has_role(user, [Role.ADMIN, Role.REVIEWER])
    assert not has_role(None, Role.ADMIN)
    assert len(auth.users(Role.ADMIN)) == 2

    with pytest.raises(AuthenticationError):
        auth.authenticate("dr.anderson", "")
    with pytest.raises(AuthenticationError):
        auth.authenticate("mallory", "pw")
