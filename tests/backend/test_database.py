import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError

from backend import database
from backend.routes import common

LEGACY_APPOINTMENTS_TABLE = (
    'CREATE TABLE appointments ('
    'id INTEGER PRIMARY KEY, patient_id INTEGER, doctor_id INTEGER, date DATE, time_slot VARCHAR, '
    'start_time DATETIME, end_time DATETIME, status VARCHAR, reason VARCHAR, notes VARCHAR)'
)

INSERT_APPOINTMENT = text(
    'INSERT INTO appointments (id, patient_id, doctor_id, date, time_slot, start_time, end_time, status, reason, notes) '
    "VALUES (:id, :patient_id, 9, '2024-06-17', :time_slot, '2024-06-17 09:00:00', '2024-06-17 09:30:00', "
    ":status, 'Checkup', :notes)"
)


@pytest.fixture
def legacy_engine(tmp_path, monkeypatch: pytest.MonkeyPatch):
    engine = create_engine(f'sqlite:///{tmp_path / "legacy.db"}')
    monkeypatch.setattr(database, 'engine', engine)
    monkeypatch.setattr(database, '_availability_schema_checked', False)
    monkeypatch.setattr(database, '_appointment_schema_checked', False)

    with engine.begin() as connection:
        connection.execute(text(LEGACY_APPOINTMENTS_TABLE))
        for row in [
            {'id': 1, 'patient_id': 3, 'time_slot': '09:00-09:30', 'status': 'pending', 'notes': ''},
            {'id': 2, 'patient_id': 4, 'time_slot': '09:00-09:30', 'status': 'pending', 'notes': 'Follow-up'},
            {'id': 3, 'patient_id': 3, 'time_slot': '09:30-10:00', 'status': 'pending', 'notes': ''},
            {'id': 4, 'patient_id': 4, 'time_slot': '09:30-10:00', 'status': 'confirmed', 'notes': ''},
            {'id': 5, 'patient_id': 5, 'time_slot': '09:00-09:30', 'status': 'cancelled', 'notes': ''},
            {'id': 6, 'patient_id': 5, 'time_slot': '10:00-10:30', 'status': 'pending', 'notes': ''},
        ]:
            connection.execute(INSERT_APPOINTMENT, row)

    try:
        yield engine
    finally:
        engine.dispose()


def statuses(engine) -> dict[int, tuple[str, str]]:
    with engine.connect() as connection:
        rows = connection.execute(text('SELECT id, status, notes FROM appointments ORDER BY id')).all()
    return {row.id: (row.status, row.notes) for row in rows}


def test_schema_check_rejects_duplicate_active_rows_before_indexing(legacy_engine, caplog) -> None:
    common.ensure_database_ready()
    common.ensure_database_ready()

    assert database._appointment_schema_checked is True
    assert statuses(legacy_engine) == {
        1: ('pending', ''),
        2: ('rejected', f'Follow-up {database.DUPLICATE_SLOT_NOTE}'),
        3: ('rejected', database.DUPLICATE_SLOT_NOTE),
        4: ('confirmed', ''),
        5: ('cancelled', ''),
        6: ('pending', ''),
    }
    assert 'Rejected appointment 2: duplicates active appointment 1' in caplog.text
    assert 'Rejected appointment 3: duplicates active appointment 4' in caplog.text


def test_schema_check_installs_active_slot_index(legacy_engine) -> None:
    database.ensure_appointment_schema()

    with pytest.raises(IntegrityError):
        with legacy_engine.begin() as connection:
            connection.execute(
                INSERT_APPOINTMENT,
                {'id': 7, 'patient_id': 8, 'time_slot': '10:00-10:30', 'status': 'pending', 'notes': ''},
            )

    with legacy_engine.begin() as connection:
        connection.execute(
            INSERT_APPOINTMENT,
            {'id': 8, 'patient_id': 8, 'time_slot': '10:00-10:30', 'status': 'rejected', 'notes': ''},
        )
    assert statuses(legacy_engine)[8] == ('rejected', '')
