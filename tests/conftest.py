import pytest

from app import create_app
from database import make_session_factory
from fakes import FakeCloudTransport
from sync.cloud import CloudAdapter
from sync.dispatch import SyncDispatcher
from sync.local_store import LocalStore, SqlBlobStorage
from sync.service import PersonalStoreService

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'


@pytest.fixture
def blob_storage():
    return SqlBlobStorage(make_session_factory('sqlite://'))


@pytest.fixture
def local_store(blob_storage):
    return LocalStore(blob_storage)


@pytest.fixture
def transport():
    return FakeCloudTransport()


@pytest.fixture
def cloud(transport):
    return CloudAdapter(transport, delete_batch_size=2)


@pytest.fixture
def service(local_store, cloud):
    # Inline dispatcher: cloud pushes finish before the mutation call returns
    return PersonalStoreService(local_store, cloud=cloud, dispatcher=SyncDispatcher())


@pytest.fixture
def client(service):
    tokens = {'token-1': USER_ID, 'token-2': OTHER_USER_ID}
    app = create_app(service=service, auth_resolver=tokens.get)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': 'Bearer token-1'}
