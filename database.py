from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

import config
from models import Category as CategoryRecord
from models import TrainingSample

# Database Setup
# Default to local SQLite, but allow override for a hosted Postgres
DB_URL = config.DB_URL

engine = create_engine(DB_URL, connect_args={"check_same_thread": False} if "sqlite" in DB_URL else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Models ---

class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, default="expense")  # 'expense' or 'income'
    icon = Column(String, nullable=True)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(DateTime(timezone=True), default=utcnow, index=True)
    note = Column(String)
    amount = Column(Float)
    type = Column(String, default="expense")
    category_id = Column(String, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)


class ClassificationCorrection(Base):
    """User overrides of a suggested category (the corrections log)."""
    __tablename__ = "ml_corrections"

    id = Column(Integer, primary_key=True, index=True)
    text = Column(String, nullable=False)
    category_id = Column(String, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text)

# --- Init DB ---
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class SqlCorpusProvider:
    """Reads classifier training samples and categories from the database."""

    def __init__(self, session_factory: Optional[Callable] = None):
        self.session_factory = session_factory or SessionLocal

    def fetch_corrections(self, limit: int = config.CORRECTIONS_LIMIT) -> List[TrainingSample]:
        stmt = (
            select(ClassificationCorrection.text, ClassificationCorrection.category_id)
            .order_by(ClassificationCorrection.created_at.desc(), ClassificationCorrection.id.desc())
            .limit(limit)
        )
        with self.session_factory() as db:
            rows = db.execute(stmt).all()
        return [TrainingSample(text=text, category_id=cat, source="correction") for text, cat in rows]

    def fetch_transactions(self, limit: int = config.TRANSACTIONS_LIMIT) -> List[TrainingSample]:
        stmt = (
            select(Transaction.note, Transaction.category_id)
            .where(Transaction.note.is_not(None), Transaction.note != "", Transaction.category_id.is_not(None))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        with self.session_factory() as db:
            rows = db.execute(stmt).all()
        return [
            TrainingSample(text=note, category_id=cat, source="transaction")
            for note, cat in rows
            if note.strip()
        ]

    def fetch_categories(self) -> List[CategoryRecord]:
        with self.session_factory() as db:
            rows = db.execute(select(Category)).scalars().all()
            return [CategoryRecord(id=c.id, name=c.name, icon=c.icon) for c in rows]

    def record_correction(self, text: str, category_id: str) -> None:
        with self.session_factory() as db:
            db.add(ClassificationCorrection(text=text, category_id=category_id))
            db.commit()

    def record_transaction(
        self,
        note: str,
        category_id: str,
        amount: float = 0.0,
        type: str = "expense",
        on: Optional[date] = None,
    ) -> int:
        with self.session_factory() as db:
            txn = Transaction(
                note=note,
                category_id=category_id,
                amount=amount,
                type=type,
                date=datetime.combine(on, time.min, tzinfo=timezone.utc) if on else utcnow(),
            )
            db.add(txn)
            db.commit()
            return txn.id
