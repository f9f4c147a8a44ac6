from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, Category as CategoryRow
from models import Category, TrainingSample
from storage import MemoryStore
from tensor_runtime import TensorRuntime

FOOD = Category(id="cat_food", name="Ăn uống", icon="🍜")
SALARY = Category(id="cat_salary", name="Lương", icon="💰")
TRANSPORT = Category(id="cat_transport", name="Di chuyển", icon="🚕")


class FakeCorpus:
    """In-memory corpus provider with the same interface as SqlCorpusProvider."""

    def __init__(self, transactions=None, corrections=None, categories=None):
        self.transactions: List[TrainingSample] = [
            TrainingSample(text=t, category_id=c, source="transaction") for t, c in (transactions or [])
        ]
        self.corrections: List[TrainingSample] = [
            TrainingSample(text=t, category_id=c, source="correction") for t, c in (corrections or [])
        ]
        self.categories: List[Category] = list(categories or [FOOD, SALARY, TRANSPORT])
        self.fetch_calls = 0

    def fetch_corrections(self, limit):
        self.fetch_calls += 1
        return self.corrections[:limit]

    def fetch_transactions(self, limit):
        return self.transactions[:limit]

    def fetch_categories(self):
        return list(self.categories)

    def add_transaction(self, text, category_id):
        self.transactions.insert(0, TrainingSample(text=text, category_id=category_id))

    def add_correction(self, text, category_id):
        self.corrections.insert(0, TrainingSample(text=text, category_id=category_id, source="correction"))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def scenario_corpus():
    return FakeCorpus(transactions=[
        ("cà phê sáng", "cat_food"),
        ("grab đi ăn", "cat_food"),
        ("lương tháng", "cat_salary"),
    ])


@pytest.fixture
def runtime():
    return TensorRuntime(seed=7)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with factory() as db:
        db.add_all([
            CategoryRow(id="cat_food", name="Ăn uống", type="expense", icon="🍜"),
            CategoryRow(id="cat_transport", name="Di chuyển", type="expense", icon="🚕"),
            CategoryRow(id="cat_salary", name="Lương", type="income", icon="💰"),
        ])
        db.commit()
    yield factory
    engine.dispose()


@pytest.fixture
def make_corpus():
    return FakeCorpus
