from datetime import date, timezone

from classifier import TransactionClassifier
from database import ClassificationCorrection, SqlCorpusProvider, Transaction, utcnow
from seed_db import seed_data
from storage import MemoryStore


def test_corpus_provider_reads_recent_notes(session_factory):
    corpus = SqlCorpusProvider(session_factory)
    corpus.record_transaction("cà phê sáng", "cat_food", 35_000, on=date(2024, 1, 1))
    corpus.record_transaction("grab đi làm", "cat_transport", 60_000, on=date(2024, 1, 2))
    with session_factory() as db:
        db.add(Transaction(note="", category_id="cat_food", amount=1))
        db.add(Transaction(note="không danh mục", category_id=None, amount=1))
        db.commit()

    samples = corpus.fetch_transactions(limit=10)
    assert [s.text for s in samples] == ["grab đi làm", "cà phê sáng"]
    assert all(s.source == "transaction" for s in samples)
    assert len(corpus.fetch_transactions(limit=1)) == 1


def test_corpus_provider_corrections_and_categories(session_factory):
    corpus = SqlCorpusProvider(session_factory)
    corpus.record_correction("vé xe bus", "cat_transport")

    [correction] = corpus.fetch_corrections(limit=500)
    assert correction.text == "vé xe bus"
    assert correction.source == "correction"

    categories = {c.id: c for c in corpus.fetch_categories()}
    assert categories["cat_food"].icon == "🍜"
    assert len(categories) == 3


async def test_classifier_over_sql_corpus(session_factory):
    corpus = SqlCorpusProvider(session_factory)
    corpus.record_transaction("cà phê sáng", "cat_food")
    corpus.record_transaction("grab đi ăn", "cat_food")
    corpus.record_transaction("lương tháng", "cat_salary", type="income")

    classifier = TransactionClassifier(corpus, MemoryStore())
    prediction = await classifier.predict_category("cà phê trưa")
    assert prediction.category_id == "cat_food"
    assert prediction.category_name == "Ăn uống"


def test_seed_data_is_idempotent(session_factory):
    # conftest already created categories, so seeding is skipped
    seed_data(session_factory)
    with session_factory() as db:
        assert db.query(Transaction).count() == 0


def test_migrate_and_seed_fresh_database():
    from sqlalchemy import create_engine, inspect
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from migrate_db import migrate_db
    from training_data import SEED_CATEGORIES, SEED_TRANSACTIONS

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    migrate_db(engine)
    assert {"categories", "transactions", "ml_corrections", "settings"} <= set(inspect(engine).get_table_names())

    factory = sessionmaker(bind=engine)
    seed_data(factory)

    corpus = SqlCorpusProvider(factory)
    assert len(corpus.fetch_categories()) == len(SEED_CATEGORIES)
    assert len(corpus.fetch_transactions(limit=1000)) == len(SEED_TRANSACTIONS)


def test_seed_creates_tables_on_the_factory_engine():
    from sqlalchemy import create_engine, inspect
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    seed_data(sessionmaker(bind=engine))
    assert "transactions" in inspect(engine).get_table_names()


def test_default_timestamps_are_utc(session_factory):
    corpus = SqlCorpusProvider(session_factory)
    before = utcnow()
    corpus.record_transaction("cà phê sáng", "cat_food")
    corpus.record_correction("vé xe bus", "cat_transport")
    with session_factory() as db:
        txn = db.query(Transaction).one()
        correction = db.query(ClassificationCorrection).one()
    for stamp in (txn.date, correction.created_at):
        # sqlite drops the offset on the way back
        assert stamp.replace(tzinfo=timezone.utc) >= before.replace(microsecond=0)
