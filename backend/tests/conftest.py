import pytest
from fastapi.testclient import TestClient

from retail import main, schemas
from retail.config import Settings, get_settings
from retail.database import init_db, make_engine, make_session_factory
from retail.services import RetailService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'retail.db'}",
        blob_root=tmp_path / "blobs",
        file_share_root=tmp_path / "shares",
    )


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service(db, settings):
    return RetailService(db, settings)


@pytest.fixture
def customer(service):
    return service.add_customer(
        schemas.CustomerCreate(
            first_name="Ada", last_name="Lovelace", email="ada@example.com", phone="+27821234567"
        )
    )


@pytest.fixture
def make_product(service):
    def _make(name="Kettle", price=200.0, stock=3, **extra):
        return service.add_product(
            schemas.ProductCreate(product_name=name, price=price, stock_quantity=stock, **extra)
        )

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def read_back(session_factory):
    """Load a record through a fresh session, bypassing the test session's identity map."""

    def _read(model, partition_key, row_key):
        session = session_factory()
        try:
            entity = session.get(model, (partition_key, row_key))
            if entity is not None:
                session.expunge(entity)
            return entity
        finally:
            session.close()

    return _read


@pytest.fixture
def client(session_factory, settings):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
