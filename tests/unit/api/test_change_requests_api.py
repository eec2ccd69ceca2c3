"""
Unit Tests for Change Request API Endpoints
"""
import json
import pytest
from unittest.mock import AsyncMock, patch
from httpx import AsyncClient

from crportal.core.exceptions import StorageError
from crportal.schemas.records import Role

BASE_URL = '/api/v1/change-requests'


def _cr(**overrides):
    data = {
        'crCode': 'CR-200',
        'crName': 'Pick list printing',
        'description': 'Print pick lists grouped by aisle for each wave',
        'application': 'Warehouse Manager',
    }
    data.update(overrides)
    return data


class TestCreateAndRead:
    """Test creating and reading change requests"""

    @pytest.mark.asyncio
    async def test_requires_session(self, client: AsyncClient):
        response = await client.get(BASE_URL)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_create_and_get(self, client: AsyncClient, login_as):
        user = await login_as()

        response = await client.post(BASE_URL, json=_cr())

        assert response.status_code == 201
        created = response.json()
        assert created['id'] == 'CR-200'
        assert created['status'] == 'Pending'
        assert created['requester'] == user['fullName']
        assert created['requesterEmail'] == user['email'].lower()

        response = await client.get(f'{BASE_URL}/CR-200')
        assert response.status_code == 200
        assert response.json()['crName'] == 'Pick list printing'

    @pytest.mark.asyncio
    async def test_duplicate_code(self, client: AsyncClient, login_as):
        await login_as()
        await client.post(BASE_URL, json=_cr())

        response = await client.post(BASE_URL, json=_cr())

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'DUPLICATE_CR_CODE'

    @pytest.mark.asyncio
    async def test_validation_errors(self, client: AsyncClient, login_as):
        await login_as()

        response = await client.post(BASE_URL, json=_cr(description='short'))

        assert response.status_code == 422
        assert 'description' in response.json()['error']['details']['errors']

    @pytest.mark.asyncio
    async def test_missing_record(self, client: AsyncClient, login_as):
        await login_as()
        response = await client.get(f'{BASE_URL}/does-not-exist')
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_dev_team_cannot_create(self, client: AsyncClient, login_as):
        await login_as(Role.DEV_TEAM)

        response = await client.post(BASE_URL, json=_cr())

        assert response.status_code == 403
        assert response.json()['error']['code'] == 'PERMISSION_DENIED'

    @pytest.mark.asyncio
    async def test_storage_failure_is_503(self, client: AsyncClient, login_as, store):
        await login_as()

        with patch.object(store, 'set', AsyncMock(side_effect=StorageError('backend down'))):
            response = await client.post(BASE_URL, json=_cr())

        assert response.status_code == 503
        assert 'try again' in response.json()['error']['message']


class TestListing:
    """Test list, stats and export"""

    @pytest.fixture
    async def seeded(self, client: AsyncClient, login_as):
        await login_as()
        for i in range(12):
            response = await client.post(BASE_URL, json=_cr(
                crCode=f'CR-{i:02d}',
                crName='Urgent fix' if i % 2 else 'Routine change',
                uatDate='2024-05-01' if i == 3 else None,
            ))
            assert response.status_code == 201
        await client.put(f'{BASE_URL}/CR-00', json={'status': 'Approved'})

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, seeded):
        response = await client.get(BASE_URL, params={'page': 2})

        assert response.status_code == 200
        data = response.json()
        assert data['total'] == 12
        assert data['totalPages'] == 2
        assert data['page'] == 2
        assert len(data['items']) == 2

    @pytest.mark.asyncio
    async def test_search_and_status_filters(self, client: AsyncClient, seeded):
        response = await client.get(BASE_URL, params={'search': 'urgent'})
        assert response.json()['total'] == 6

        response = await client.get(BASE_URL, params={'status': 'Approved'})
        assert [cr['id'] for cr in response.json()['items']] == ['CR-00']

    @pytest.mark.asyncio
    async def test_date_filter(self, client: AsyncClient, seeded):
        response = await client.get(BASE_URL, params={
            'dateField': 'uatDate', 'dateFrom': '2024-04-01', 'dateTo': '2024-06-01',
        })
        assert [cr['id'] for cr in response.json()['items']] == ['CR-03']

    @pytest.mark.asyncio
    async def test_unknown_date_field(self, client: AsyncClient, seeded):
        response = await client.get(BASE_URL, params={'dateField': 'createdAt', 'dateFrom': '2024-01-01'})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, seeded):
        response = await client.get(f'{BASE_URL}/stats')

        assert response.status_code == 200
        data = response.json()
        assert data['total'] == 12
        assert data['byStatus']['Pending'] == 11
        assert data['byStatus']['Approved'] == 1

    @pytest.mark.asyncio
    async def test_export_csv(self, client: AsyncClient, seeded):
        response = await client.get(f'{BASE_URL}/export', params={'status': 'Approved'})

        assert response.status_code == 200
        assert response.headers['content-type'].startswith('text/csv')
        assert 'attachment; filename="CR_Report_' in response.headers['content-disposition']
        lines = response.text.splitlines()
        assert lines[0].startswith('CR Code,CR Name,Application')
        assert len(lines) == 2
        assert lines[1].startswith('CR-00,Routine change,Warehouse Manager')


class TestUpdateAndDelete:
    """Test editing, documents and deletion"""

    @pytest.mark.asyncio
    async def test_status_change(self, client: AsyncClient, login_as):
        user = await login_as()
        await client.post(BASE_URL, json=_cr())

        response = await client.put(f'{BASE_URL}/CR-200', json={'status': 'Rejected'})

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'Rejected'
        assert data['rejectedBy'] == user['fullName']
        assert data['approvedBy'] is None

    @pytest.mark.asyncio
    async def test_status_options(self, client: AsyncClient, login_as):
        await login_as()
        await client.post(BASE_URL, json=_cr())

        response = await client.get(f'{BASE_URL}/CR-200/status-options')

        assert response.json() == ['Pending', 'Approved', 'Rejected']

    @pytest.mark.asyncio
    async def test_disallowed_transition(self, client: AsyncClient, login_as):
        await login_as()
        await client.post(BASE_URL, json=_cr())

        response = await client.put(f'{BASE_URL}/CR-200', json={'status': 'Completed'})

        assert response.status_code == 422
        assert response.json()['error']['details']['field'] == 'status'

    @pytest.mark.asyncio
    async def test_document_upload_and_download(self, client: AsyncClient, login_as, document_payload, word_document):
        await login_as(Role.BA_TEAM)

        response = await client.post(BASE_URL, json=_cr(document=document_payload))
        assert response.status_code == 201
        assert response.json()['crDocumentName'] == 'requirements.docx'

        response = await client.get(f'{BASE_URL}/CR-200/document')
        assert response.status_code == 200
        assert response.content == word_document.data
        assert response.headers['content-type'].startswith(word_document.content_type)

    @pytest.mark.asyncio
    async def test_ba_team_needs_document(self, client: AsyncClient, login_as):
        await login_as(Role.BA_TEAM)

        response = await client.post(BASE_URL, json=_cr())

        assert response.status_code == 422
        assert response.json()['error']['details']['field'] == 'crDocument'

    @pytest.mark.asyncio
    async def test_invalid_document_content(self, client: AsyncClient, login_as, document_payload):
        await login_as()
        document_payload['content'] = 'not base64!'

        response = await client.post(BASE_URL, json=_cr(document=document_payload))

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_document(self, client: AsyncClient, login_as, document_payload):
        await login_as()
        await client.post(BASE_URL, json=_cr(document=document_payload))

        response = await client.put(f'{BASE_URL}/CR-200', json={'removeDocument': True})

        assert response.status_code == 200
        assert response.json()['crDocumentName'] is None
        response = await client.get(f'{BASE_URL}/CR-200/document')
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, login_as, store, document_payload):
        await login_as()
        await client.post(BASE_URL, json=_cr(document=document_payload))

        response = await client.delete(f'{BASE_URL}/CR-200')

        assert response.status_code == 200
        assert (await client.get(f'{BASE_URL}/CR-200')).status_code == 404
        assert json.loads(await store.get('cr:list')) == []
        assert await store.get('cr:CR-200:document') is None

    @pytest.mark.asyncio
    async def test_qa_team_cannot_delete(self, client: AsyncClient, login_as, store):
        await login_as()
        await client.post(BASE_URL, json=_cr())
        await login_as(Role.QA_TEAM)

        response = await client.delete(f'{BASE_URL}/CR-200')

        assert response.status_code == 403
        assert await store.get('cr:CR-200') is not None

    @pytest.mark.asyncio
    async def test_document_key_is_not_a_record(self, client: AsyncClient, login_as, document_payload, word_document):
        await login_as()
        await client.post(BASE_URL, json=_cr(document=document_payload))

        response = await client.put(f'{BASE_URL}/CR-200:document', json={'comments': 'x'})
        assert response.status_code == 404
        response = await client.delete(f'{BASE_URL}/CR-200:document')
        assert response.status_code == 404

        response = await client.get(f'{BASE_URL}/CR-200/document')
        assert response.status_code == 200
        assert response.content == word_document.data

    @pytest.mark.asyncio
    async def test_index_key_is_not_a_record(self, client: AsyncClient, login_as):
        await login_as()
        await client.post(BASE_URL, json=_cr())

        response = await client.get(f'{BASE_URL}/list')

        assert response.status_code == 404
        assert response.json()['error']['code'] == 'CHANGE_REQUEST_NOT_FOUND'


class TestHealth:
    """Test health endpoints"""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get('/health')
        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'

    @pytest.mark.asyncio
    async def test_readiness_reports_backend(self, client: AsyncClient):
        response = await client.get('/api/v1/health/ready')

        assert response.status_code == 200
        assert response.json()['storage']['backend'] == 'local'

    @pytest.mark.asyncio
    async def test_request_id_header(self, client: AsyncClient):
        response = await client.get('/api/v1/health/live', headers={'X-Request-ID': 'abc123'})
        assert response.headers['X-Request-ID'] == 'abc123'
