"""
CR Portal - Test Configuration and Fixtures
"""
import os
import base64
from typing import AsyncGenerator, Callable, Dict

import pytest
from httpx import AsyncClient, ASGITransport
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['STORAGE_MODE'] = 'local'
os.environ['REDIS_URL'] = ''
os.environ['LOCAL_STORE_PATH'] = ''
os.environ['BCRYPT_ROUNDS'] = '4'

from crportal.main import app
from crportal.api.deps import get_kv_store
from crportal.core.kv_store import LocalKeyValueStore
from crportal.schemas.records import Role, Session
from crportal.services.change_request_service import ChangeRequestService, DocumentUpload
from crportal.services.identity_service import IdentityService
from crportal.services.record_codec import utc_timestamp

fake = Faker()

STRONG_PASSWORD = 'Str0ngPassword'
DOCX_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'


@pytest.fixture
def store() -> LocalKeyValueStore:
    """Fresh in-memory store for each test"""
    return LocalKeyValueStore()


@pytest.fixture
def identity(store: LocalKeyValueStore) -> IdentityService:
    return IdentityService(store)


@pytest.fixture
def cr_service(store: LocalKeyValueStore) -> ChangeRequestService:
    return ChangeRequestService(store)


@pytest.fixture
def make_session() -> Callable[..., Session]:
    """Build a session without going through login"""
    def _make(role: Role = Role.REQUESTER) -> Session:
        return Session(
            full_name=fake.name(),
            email=fake.unique.email().lower(),
            role=role,
            login_at=utc_timestamp(),
        )
    return _make


@pytest.fixture
def requester_session(make_session) -> Session:
    return make_session(Role.REQUESTER)


@pytest.fixture
def ba_session(make_session) -> Session:
    return make_session(Role.BA_TEAM)


@pytest.fixture
def word_document() -> DocumentUpload:
    return DocumentUpload(
        name='requirements.docx',
        content_type=DOCX_TYPE,
        data=b'PK\x03\x04 word document body',
    )


@pytest.fixture
def document_payload(word_document: DocumentUpload) -> Dict[str, str]:
    """The same document as the API receives it"""
    return {
        'name': word_document.name,
        'type': word_document.content_type,
        'content': base64.b64encode(word_document.data).decode('ascii'),
    }


@pytest.fixture
async def client(store: LocalKeyValueStore) -> AsyncGenerator[AsyncClient, None]:
    """Create test client backed by the per-test store"""
    app.dependency_overrides[get_kv_store] = lambda: store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client: AsyncClient) -> Callable:
    """Register a user with the given role through the API and log them in"""
    async def _login(role: Role = Role.REQUESTER) -> Dict[str, str]:
        user = {
            'fullName': fake.name(),
            'email': fake.unique.email(),
            'password': STRONG_PASSWORD,
            'confirmPassword': STRONG_PASSWORD,
            'role': role.value,
        }
        response = await client.post('/api/v1/auth/register', json=user)
        assert response.status_code == 201, response.text

        response = await client.post(
            '/api/v1/auth/login',
            json={'email': user['email'], 'password': STRONG_PASSWORD},
        )
        assert response.status_code == 200, response.text
        return user
    return _login
