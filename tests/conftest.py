import datetime
import decimal
import json
import threading
from types import SimpleNamespace

import pytest
from meilisearch.errors import MeilisearchApiError, MeilisearchCommunicationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_index import ambient

LONG_AGO = datetime.datetime(2020, 1, 1)


@pytest.fixture(scope="session")
def shared_engine():
    """
    One in-memory database for the whole session.

    StaticPool hands every session the same connection, so data committed by
    a test is visible to the sessions the rebuild opens.
    """
    from catalog_index.models import create_tables

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    return engine


@pytest.fixture
def session_factory(shared_engine):
    return sessionmaker(bind=shared_engine)


@pytest.fixture(autouse=True)
def use_test_database(monkeypatch, session_factory):
    """
    Point the lazily created session factory at the shared test database, so
    code that builds a TransactionManager without a factory never connects to
    DATABASE_URL or creates catalog_db.sqlite.
    """
    monkeypatch.setattr("catalog_index.db_session._SessionLocal", session_factory)


@pytest.fixture
def db_session(session_factory):
    """
    Setup: Returns a session tied to the shared test database.
    We clear the data between tests but keep the tables.
    """
    from catalog_index.models import Base

    session = session_factory()

    yield session

    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture(autouse=True)
def reset_ambient_context():
    """The ambient context is process-wide; keep tests from leaking it."""
    ambient.set_context(ambient.ConsiderationContext())
    yield
    ambient.set_context(ambient.ConsiderationContext())


class FakeMeiliIndex:
    def __init__(self, client, uid):
        self.client = client
        self.uid = uid

    def add_documents(self, documents, primary_key=None):
        return self.client._enqueue(("add", self.uid, [dict(doc) for doc in documents]))

    def delete_all_documents(self):
        return self.client._enqueue(("clear", self.uid))

    def delete_documents(self, ids=None, *, filter=None):
        return self.client._enqueue(("delete_filter", self.uid, filter))

    def get_stats(self):
        return SimpleNamespace(is_indexing=False, number_of_documents=len(self.client.documents(self.uid)))


class FakeMeiliClient:
    """
    In-memory stand-in for meilisearch.Client.

    Writes are queued as tasks and applied when waited on, like a commit.
    Each index's documents live in a dict that is replaced, never mutated,
    and swaps exchange two references under one lock, so a reader calling
    documents() sees whole generations only.
    """

    def __init__(self, *uids):
        self._lock = threading.Lock()
        self.stores = {uid: {} for uid in uids}
        self.tasks = {}
        self.applied = []
        self.add_calls = 0
        # 1-based add_documents calls that fail to reach the engine
        self.fail_add_calls = set()
        # operation kinds whose tasks finish as "failed"
        self.reject_kinds = set()
        self.fail_swap = False

    def _enqueue(self, op):
        if op[0] == "add":
            self.add_calls += 1
            if self.add_calls in self.fail_add_calls:
                raise MeilisearchCommunicationError("connection reset by peer")
        if op[0] == "swap" and self.fail_swap:
            raise MeilisearchCommunicationError("connection refused")
        task_uid = len(self.tasks) + len(self.applied) + 1
        self.tasks[task_uid] = op
        return SimpleNamespace(task_uid=task_uid)

    def index(self, uid):
        return FakeMeiliIndex(self, uid)

    def get_index(self, uid):
        if uid not in self.stores:
            response = SimpleNamespace(
                status_code=404,
                text=json.dumps({"message": f"Index `{uid}` not found.", "code": "index_not_found"}),
            )
            raise MeilisearchApiError("not found", response)
        return self.index(uid)

    def create_index(self, uid, options=None):
        return self._enqueue(("create", uid))

    def swap_indexes(self, parameters):
        first, second = parameters[0]["indexes"]
        return self._enqueue(("swap", first, second))

    def wait_for_task(self, uid, timeout_in_ms=5000, interval_in_ms=50):
        op = self.tasks.pop(uid)
        if op[0] in self.reject_kinds:
            return SimpleNamespace(uid=uid, status="failed", error={"code": "invalid_document_id"})
        with self._lock:
            kind = op[0]
            if kind == "add":
                store = dict(self.stores.get(op[1], {}))
                for doc in op[2]:
                    store[doc["id"]] = doc
                self.stores[op[1]] = store
            elif kind == "clear":
                self.stores[op[1]] = {}
            elif kind == "create":
                self.stores.setdefault(op[1], {})
            elif kind == "swap":
                a, b = op[1], op[2]
                self.stores[a], self.stores[b] = self.stores[b], self.stores[a]
        self.applied.append(op)
        return SimpleNamespace(uid=uid, status="succeeded", error=None)

    def documents(self, uid):
        with self._lock:
            return self.stores.get(uid, {})

    def kinds(self):
        return [op[0] for op in self.applied]


@pytest.fixture
def fake_meili():
    return FakeMeiliClient("catalog", "catalog_reindex")


@pytest.fixture
def seed_catalog(db_session):
    """
    Returns a function that writes a small sauce catalog and commits it.

    Categories form a diamond: Hot Sauces has parents Sauces and Gifts, and
    both of those have the parent Food. Products 1..n sit in Hot Sauces in id
    order; odd ids are also in Sauces, in reverse id order.
    """
    from catalog_index.models import (
        Category,
        CategoryProductXref,
        CategoryXref,
        Locale,
        Product,
        ProductAttribute,
        ProductTranslation,
        SearchField,
    )

    def _seed(product_count=5, inactive_count=0):
        db_session.add_all([
            Locale(code="en_US", friendly_name="English (US)", default_flag=True),
            Locale(code="es_ES", friendly_name="Spanish (Spain)"),
        ])
        db_session.add_all([
            SearchField(id=1, property_name="name", abbreviation="name", searchable=True,
                        searchable_field_types=["t", "sort"]),
            SearchField(id=2, property_name="description", abbreviation="description", searchable=True,
                        translatable=True),
            SearchField(id=3, property_name="manufacturer", abbreviation="mfg", searchable=True,
                        searchable_field_types=["s"], facet_field_type="s"),
            SearchField(id=4, property_name="product_attributes.heat_range", abbreviation="heat_range",
                        facet_field_type="s"),
            SearchField(id=5, property_name="retail_price", abbreviation="price", facet_field_type="p"),
            SearchField(id=6, property_name="weight", abbreviation="weight", searchable=True),
            SearchField(id=7, property_name="model", abbreviation="model", searchable=False),
        ])
        food = Category(id=1, name="Food")
        gifts = Category(id=2, name="Gifts")
        sauces = Category(id=3, name="Sauces")
        hot = Category(id=4, name="Hot Sauces")
        db_session.add_all([food, gifts, sauces, hot])
        db_session.flush()
        db_session.add_all([
            CategoryXref(sub_category_id=3, category_id=1),
            CategoryXref(sub_category_id=4, category_id=3),
            CategoryXref(sub_category_id=4, category_id=2),
            CategoryXref(sub_category_id=2, category_id=1),
        ])

        for i in range(1, product_count + inactive_count + 1):
            active = i <= product_count
            product = Product(
                id=i,
                name=f"Sauce {i}",
                description=f"Sauce number {i}",
                manufacturer="Acme" if i % 2 else "Globex",
                retail_price=decimal.Decimal(f"{i}.50"),
                active_start_date=LONG_AGO,
                active_end_date=None if active else datetime.datetime(2021, 1, 1),
            )
            db_session.add(product)
            db_session.flush()
            db_session.add(CategoryProductXref(category_id=4, product_id=i, display_order=i))
            if i % 2:
                db_session.add(CategoryProductXref(category_id=3, product_id=i, display_order=100 - i))
            db_session.add(ProductAttribute(product_id=i, name="heat_range", value="Hot" if i % 2 else "Mild"))
            db_session.add(ProductTranslation(product_id=i, field_name="description", locale_code="es_ES",
                                              translated_value=f"Salsa numero {i}"))
        db_session.commit()

    return _seed
