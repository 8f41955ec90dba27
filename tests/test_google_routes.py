try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest
from googleapiclient.errors import HttpError

from gateway import dependencies
from gateway.clients.google_auth import (
    OAuthStateEncoder,
    OAuthTokenExchangeError,
    OAuthTokenNotFoundError,
)
from gateway.clients.token_store import StoreIOError
from gateway.core.config import get_settings
from gateway.main import app
from gateway.schemas import Contact

PERSON = {
    "resourceName": "people/c123",
    "names": [{"displayName": "Ana Torres", "givenName": "Ana Torres"}],
    "phoneNumbers": [{"value": "+52 55 1234 5678"}],
}


class DummyOAuthClient:
    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []
        self.reject = False

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"

    async def exchange_authorization_code(self, code: str) -> tuple[str, str, int]:
        self.codes.append(code)
        if self.reject:
            raise OAuthTokenExchangeError("invalid_grant")
        return ("ya29.access", "1//refresh", 3600)


class DummyCredentialService:
    def __init__(self) -> None:
        self.stored: list[dict] = []
        self.authorized = True
        self.store_error: Exception | None = None

    def store_authorization(self, **kwargs) -> None:
        if self.store_error:
            raise self.store_error
        self.stored.append(kwargs)

    async def get_credentials(self):
        if not self.authorized:
            raise OAuthTokenNotFoundError("No Google token stored; authorize first.")
        return SimpleNamespace(token="ya29.access")


class DummyContactsClient:
    def __init__(self) -> None:
        self.people = [PERSON]
        self.created: list[Contact] = []
        self.error: Exception | None = None

    async def list_connections(self, credentials):
        if self.error:
            raise self.error
        return [Contact.from_person(person) for person in self.people]

    async def create_contact(self, credentials, contact: Contact) -> Contact:
        if self.error:
            raise self.error
        self.created.append(contact)
        return Contact.from_person({"resourceName": "people/c999", **contact.to_person()})


@pytest.fixture()
def google():
    oauth_client = DummyOAuthClient()
    credential_service = DummyCredentialService()
    contacts = DummyContactsClient()
    encoder = OAuthStateEncoder(secret_key="google-secret")
    settings = copy.deepcopy(get_settings())

    app.dependency_overrides.update(
        {
            dependencies.get_google_oauth_client: lambda: oauth_client,
            dependencies.get_oauth_state_encoder: lambda: encoder,
            dependencies.get_google_credential_service: lambda: credential_service,
            dependencies.get_contacts_client: lambda: contacts,
            dependencies.get_app_settings: lambda: settings,
        }
    )
    yield SimpleNamespace(
        oauth=oauth_client,
        credentials=credential_service,
        contacts=contacts,
        encoder=encoder,
        settings=settings,
    )
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(google):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as http_client:
        yield http_client


@pytest.mark.anyio
async def test_authorize_returns_json_by_default(client: httpx.AsyncClient, google) -> None:
    response = await client.get("/google/authorize")

    assert response.status_code == 200
    data = response.json()
    assert data["authorization_url"].startswith("https://accounts.google.com/")
    assert data["state"] == google.oauth.states[-1]


@pytest.mark.anyio
async def test_authorize_redirects_for_html_accept(client: httpx.AsyncClient) -> None:
    response = await client.get("/google/authorize", headers={"accept": "text/html"})

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://accounts.google.com/")


@pytest.mark.anyio
async def test_callback_stores_token(client: httpx.AsyncClient, google) -> None:
    await client.get("/google/authorize")
    state = google.oauth.states[-1]

    response = await client.get("/google/callback", params={"state": state, "code": "4/0Ab"})

    assert response.status_code == 200
    assert response.json() == {"status": "connected"}
    assert google.oauth.codes == ["4/0Ab"]
    assert google.credentials.stored == [
        {"access_token": "ya29.access", "refresh_token": "1//refresh", "expires_in": 3600}
    ]


@pytest.mark.anyio
async def test_callback_rejects_tampered_state(client: httpx.AsyncClient, google) -> None:
    forged = OAuthStateEncoder(secret_key="other").encode(
        {"issued_at": datetime.now(timezone.utc).isoformat()}
    )

    response = await client.get("/google/callback", params={"state": forged, "code": "4/0Ab"})

    assert response.status_code == 400
    assert google.credentials.stored == []


@pytest.mark.anyio
async def test_callback_reports_unwritable_token_file(client: httpx.AsyncClient, google) -> None:
    google.credentials.store_error = StoreIOError("Unable to write token.json: read-only")
    state = google.encoder.encode({"issued_at": datetime.now(timezone.utc).isoformat()})

    response = await client.get("/google/callback", params={"state": state, "code": "4/0Ab"})

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error"] == "token_store_failed"
    assert "read-only" in detail["message"]


@pytest.mark.anyio
async def test_callback_rejects_expired_state(client: httpx.AsyncClient, google) -> None:
    issued = datetime.now(timezone.utc) - timedelta(
        seconds=google.settings.oauth.state_ttl_seconds + 60
    )
    state = google.encoder.encode({"issued_at": issued.isoformat()})

    response = await client.get("/google/callback", params={"state": state, "code": "4/0Ab"})

    assert response.status_code == 400
    assert response.json()["detail"] == "OAuth state token has expired."


@pytest.mark.anyio
async def test_callback_reports_failed_exchange(client: httpx.AsyncClient, google) -> None:
    google.oauth.reject = True
    state = google.encoder.encode({"issued_at": datetime.now(timezone.utc).isoformat()})

    response = await client.get("/google/callback", params={"state": state, "code": "bad"})

    assert response.status_code == 400
    assert google.credentials.stored == []


@pytest.mark.anyio
async def test_list_contacts_returns_people(client: httpx.AsyncClient) -> None:
    response = await client.get("/list_google_contacts")

    assert response.status_code == 200
    assert response.json() == {"resultg": [PERSON]}


@pytest.mark.anyio
async def test_list_contacts_empty(client: httpx.AsyncClient, google) -> None:
    google.contacts.people = []

    response = await client.get("/list_google_contacts")

    assert response.json() == {"resultg": []}


@pytest.mark.anyio
async def test_list_contacts_requires_google_token(client: httpx.AsyncClient, google) -> None:
    google.credentials.authorized = False

    response = await client.get("/list_google_contacts")

    assert response.status_code == 401
    detail = response.json()["detail"]
    assert detail["error"] == "google_unauthenticated"
    assert detail["authorize_url"] == "/google/authorize"


@pytest.mark.anyio
async def test_people_api_error_is_bad_gateway(client: httpx.AsyncClient, google) -> None:
    google.contacts.error = HttpError(
        SimpleNamespace(status=403, reason="Forbidden"),
        b'{"error": {"code": 403, "message": "The caller does not have permission"}}',
    )

    response = await client.get("/list_google_contacts")

    assert response.status_code == 502
    assert response.json()["detail"]["upstream_status"] == 403


@pytest.mark.anyio
async def test_create_contact_from_query(client: httpx.AsyncClient, google) -> None:
    response = await client.post(
        "/create_google_contact",
        params={"givenName": "Luis", "email": "luis@example.com", "mobile": "5551234"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["state"] is True
    assert body["result"]["resourceName"] == "people/c999"
    assert body["result"]["names"] == [{"givenName": "Luis"}]
    created = google.contacts.created[0]
    assert (created.email, created.mobile) == ("luis@example.com", "5551234")


@pytest.mark.anyio
async def test_create_contact_requires_given_name(client: httpx.AsyncClient) -> None:
    response = await client.post("/create_google_contact", params={"email": "x@example.com"})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_missing_client_secrets_is_service_unavailable() -> None:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as http_client:
        response = await http_client.get("/google/authorize")

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "google_not_configured"
