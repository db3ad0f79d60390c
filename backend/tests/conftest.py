import os, sys, pytest
# Ensure backend directory is on path so 'cassette_rc' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from cassette_rc import create_app, get_db
from cassette_rc.models.base import Base
# Import all model modules to ensure tables are registered before create_all
import cassette_rc.models.audit  # noqa: F401
import cassette_rc.models.cassette  # noqa: F401
import cassette_rc.models.service_order  # noqa: F401
import cassette_rc.models.repair_ticket  # noqa: F401
import cassette_rc.models.preventive_maintenance  # noqa: F401


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'TESTING': True,
    })
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def client(app_context):
    return app_context.test_client()
