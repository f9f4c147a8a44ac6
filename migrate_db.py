from database import engine, init_db

def migrate_db(bind=None):
    print("Migrating database...")
    # This will create any missing tables (like ml_corrections and settings)
    init_db(bind or engine)
    print("Migration complete!")

if __name__ == "__main__":
    migrate_db()
