"""
Create all tables on an empty database.

For an existing database use alembic (backend/alembic.ini) instead.

    python scripts/init_db.py
"""

import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1] / "backend"))

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import inspect, text  # noqa: E402

from servicebook.database import DATABASE_URL, SessionLocal, engine  # noqa: E402
from servicebook.models import Base  # noqa: E402


def main():
    print(f"Using DB: {DATABASE_URL}")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        print("DB OK:", db.execute(text("SELECT 1")).scalar())
        print("Tables:", ", ".join(sorted(inspect(engine).get_table_names())))
    finally:
        db.close()


if __name__ == "__main__":
    main()
