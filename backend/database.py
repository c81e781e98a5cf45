import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False

ACTIVE_SLOT_INDEX_STATEMENT = (
    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
    'ON appointments(doctor_id, date, time_slot) '
    "WHERE status IN ('pending', 'confirmed')"
)

DUPLICATE_SLOT_NOTE = '[Auto-rejected: duplicate booking for this slot]'


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'availability_entries' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_entries')}
        migration_steps = [
            ('slot_duration_minutes', 'ALTER TABLE availability_entries ADD COLUMN slot_duration_minutes INTEGER'),
            ('is_available', 'ALTER TABLE availability_entries ADD COLUMN is_available BOOLEAN'),
            ('position', 'ALTER TABLE availability_entries ADD COLUMN position INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_entries_doctor_day '
                    'ON availability_entries(doctor_id, day_of_week)'
                )
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
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
            ('status_updated_at', 'ALTER TABLE appointments ADD COLUMN status_updated_at TIMESTAMP'),
            ('confirmed_at', 'ALTER TABLE appointments ADD COLUMN confirmed_at TIMESTAMP'),
            ('rejected_at', 'ALTER TABLE appointments ADD COLUMN rejected_at TIMESTAMP'),
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date ON appointments(doctor_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, start_time)')
            )
            demote_duplicate_active_slots(connection)
            connection.execute(text(ACTIVE_SLOT_INDEX_STATEMENT))

        _appointment_schema_checked = True


def demote_duplicate_active_slots(connection) -> int:
    """Reject extra active appointments sharing one doctor, date and slot.

    Per slot the confirmed record wins, then the oldest pending one. Returns the
    number of rows rejected so the unique active-slot index can be built.
    """
    rows = connection.execute(
        text(
            'SELECT id, doctor_id, date, time_slot, notes FROM appointments '
            "WHERE status IN ('pending', 'confirmed') "
            'ORDER BY doctor_id, date, time_slot, '
            "CASE status WHEN 'confirmed' THEN 0 ELSE 1 END, id"
        )
    ).all()

    kept: dict[tuple, int] = {}
    demoted = 0
    for row in rows:
        slot_key = (row.doctor_id, row.date, row.time_slot)
        if slot_key not in kept:
            kept[slot_key] = row.id
            continue

        notes = f'{row.notes} {DUPLICATE_SLOT_NOTE}'.strip() if row.notes else DUPLICATE_SLOT_NOTE
        connection.execute(
            text(
                "UPDATE appointments SET status = 'rejected', notes = :notes, "
                'status_updated_at = CURRENT_TIMESTAMP, rejected_at = CURRENT_TIMESTAMP '
                'WHERE id = :id'
            ),
            {'notes': notes, 'id': row.id},
        )
        logger.warning(
            'Rejected appointment %s: duplicates active appointment %s for doctor %s on %s %s.',
            row.id,
            kept[slot_key],
            row.doctor_id,
            row.date,
            row.time_slot,
        )
        demoted += 1

    return demoted
