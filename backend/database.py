from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

from backend.core import config  # noqa: E402


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, **_engine_kwargs(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False

ACTIVE_SLOT_PREDICATE = "status IN ('scheduled', 'confirmed')"
ACTIVE_SLOT_INDEX_SQL = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot "
    f"ON appointments(counselor_id, date, time) WHERE {ACTIVE_SLOT_PREDICATE}"
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema() -> None:
    """Bring an appointments table created by an older release up to date."""
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('student_notes', 'ALTER TABLE appointments ADD COLUMN student_notes VARCHAR(500)'),
            ('counselor_notes', 'ALTER TABLE appointments ADD COLUMN counselor_notes VARCHAR(1000)'),
            ('meeting_link', 'ALTER TABLE appointments ADD COLUMN meeting_link VARCHAR'),
            ('location', 'ALTER TABLE appointments ADD COLUMN location VARCHAR(200)'),
            ('rating', 'ALTER TABLE appointments ADD COLUMN rating INTEGER'),
            ('feedback', 'ALTER TABLE appointments ADD COLUMN feedback VARCHAR(1000)'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(text(ACTIVE_SLOT_INDEX_SQL))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_counselor_date ON appointments(counselor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_student_date ON appointments(student_id, date)')
            )

        _appointment_schema_checked = True
