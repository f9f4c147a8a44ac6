from datetime import timedelta

from database import Category, SessionLocal, Transaction, init_db, utcnow
from training_data import SEED_CATEGORIES, SEED_TRANSACTIONS


def seed_data(session_factory=SessionLocal):
    init_db(session_factory.kw.get("bind"))
    db = session_factory()

    # Check if categories exist
    if db.query(Category).first():
        print("Categories already exist. Skipping seed.")
        db.close()
        return

    for cat_id, name, cat_type, icon in SEED_CATEGORIES:
        db.add(Category(id=cat_id, name=name, type=cat_type, icon=icon))

    income_ids = {cat_id for cat_id, _, cat_type, _ in SEED_CATEGORIES if cat_type == "income"}
    start = utcnow() - timedelta(days=len(SEED_TRANSACTIONS))
    for offset, (note, category_id, amount) in enumerate(SEED_TRANSACTIONS):
        db.add(Transaction(
            date=start + timedelta(days=offset),
            note=note,
            amount=amount,
            type="income" if category_id in income_ids else "expense",
            category_id=category_id,
        ))

    db.commit()
    print(f"Database seeded with {len(SEED_CATEGORIES)} categories and {len(SEED_TRANSACTIONS)} transactions.")
    db.close()

if __name__ == "__main__":
    seed_data()
