"""Unit tests for the equipment write workflow."""
import pytest

from common import inventory
from common.audit_log import AuditLogRecorder
from common.errors import PersistenceError
from common.models import Equipment, EquipmentLog, EquipmentType, Location


def _refuse(self, **values):
    raise PersistenceError("log table unavailable")


@pytest.fixture()
def seeded(db_session):
    light = EquipmentType(name="Light")
    lager = Location(name="Lager")
    stage = Location(name="Stage A")
    db_session.add_all([light, lager, stage])
    db_session.commit()
    return {"type_id": light.id, "lager": lager.id, "stage": stage.id}


def test_create_writes_row_and_log_together(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "location_id": seeded["stage"]}
    )

    assert equipment.type == "Light"
    assert equipment.status == "in-use"
    logs = db_session.query(EquipmentLog).filter(EquipmentLog.equipment_id == equipment.id).all()
    assert [log.action_type for log in logs] == ["created"]


def test_failed_log_write_rolls_back_equipment(db_session, seeded, monkeypatch):
    monkeypatch.setattr(AuditLogRecorder, "_append", _refuse)

    with pytest.raises(PersistenceError):
        inventory.create_equipment(db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7"})

    assert db_session.query(Equipment).count() == 0


def test_failed_update_keeps_previous_state(db_session, seeded, monkeypatch):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "location_id": seeded["lager"]}
    )
    monkeypatch.setattr(AuditLogRecorder, "_append", _refuse)

    with pytest.raises(PersistenceError):
        inventory.update_equipment(db_session, equipment, None, {"location_id": seeded["stage"]})

    db_session.expire_all()
    stored = db_session.get(Equipment, equipment.id)
    assert stored.location == "Lager"
    assert stored.status == "available"


def test_unchanged_status_patch_is_not_logged(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "location_id": seeded["lager"]}
    )

    inventory.change_status(db_session, equipment, None, "in-use")

    assert equipment.status == "available"
    assert db_session.query(EquipmentLog).count() == 1


def test_delete_without_cascade_keeps_history(db_session, seeded, monkeypatch):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "serial_number": "K-1"}
    )
    equipment_id = equipment.id
    monkeypatch.setattr(inventory.get_settings(), "cascade_delete_logs", False)

    inventory.delete_equipment(db_session, equipment, None)

    actions = [
        log.action_type
        for log in db_session.query(EquipmentLog).filter(EquipmentLog.equipment_id == equipment_id).order_by(EquipmentLog.id)
    ]
    assert actions == ["created", "deleted"]
    assert db_session.get(Equipment, equipment_id) is None


def test_refresh_references_counts_rows(db_session, seeded):
    for serial in ("R-1", "R-2"):
        inventory.create_equipment(
            db_session,
            None,
            {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "serial_number": serial, "location_id": seeded["stage"]},
        )
    stage = db_session.get(Location, seeded["stage"])
    stage.name = "Main Stage"
    db_session.commit()

    touched = inventory.refresh_references(db_session, "location_id", seeded["stage"], None)

    assert touched == 2
    assert {row.location for row in db_session.query(Equipment)} == {"Main Stage"}


def test_refresh_commits_pending_rename_with_rows(db_session, seeded, monkeypatch):
    inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "location_id": seeded["stage"]}
    )
    monkeypatch.setattr(AuditLogRecorder, "_append", _refuse)
    db_session.get(Location, seeded["stage"]).name = "Main Stage"

    with pytest.raises(PersistenceError):
        inventory.refresh_references(db_session, "location_id", seeded["stage"], None)

    db_session.expire_all()
    assert db_session.get(Location, seeded["stage"]).name == "Stage A"
    assert db_session.query(Equipment).one().location == "Stage A"


def test_refresh_without_rows_still_commits_rename(db_session, seeded):
    db_session.get(Location, seeded["stage"]).name = "Main Stage"

    assert inventory.refresh_references(db_session, "location_id", seeded["stage"], None) == 0

    db_session.expire_all()
    assert db_session.get(Location, seeded["stage"]).name == "Main Stage"


def test_fixed_installation_moves_item_and_logs(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session,
        None,
        {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "quantity": 4, "location_id": seeded["lager"]},
    )

    inventory.set_installation(
        db_session,
        equipment,
        None,
        {"installation_type": "fixed", "installation_location_id": seeded["stage"], "installation_quantity": 3},
    )

    assert equipment.status == "in-use"
    assert (equipment.location, equipment.location_id) == ("Stage A", seeded["stage"])
    assert equipment.installation_location == "Stage A"
    entry = db_session.query(EquipmentLog).order_by(EquipmentLog.id.desc()).first()
    assert entry.action_type == "status_change"
    assert 'Installation type changed from "portable" to "fixed"' in entry.details


def test_partial_return_keeps_installation(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "quantity": 4}
    )
    inventory.set_installation(
        db_session,
        equipment,
        None,
        {"installation_type": "fixed", "installation_location": "Orchestra pit", "installation_quantity": 3},
    )

    equipment, returned, remaining = inventory.return_from_installation(db_session, equipment, None, 2)

    assert (returned, remaining) == (2, 1)
    assert equipment.installation_type == "fixed"
    assert equipment.installation_quantity == 1
    assert equipment.status == "in-use"


def test_full_return_sends_item_home(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "quantity": 2}
    )
    inventory.set_installation(
        db_session,
        equipment,
        None,
        {"installation_type": "fixed", "installation_location_id": seeded["stage"], "installation_quantity": 2},
    )

    equipment, returned, remaining = inventory.return_from_installation(db_session, equipment, None)

    assert (returned, remaining) == (2, 0)
    assert equipment.installation_type == "portable"
    assert equipment.installation_location is None
    assert (equipment.location, equipment.location_id) == ("Lager", seeded["lager"])
    assert equipment.status == "available"


def test_availability_counts_installed_units(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "quantity": 10}
    )
    inventory.set_installation(
        db_session,
        equipment,
        None,
        {"installation_type": "semi-permanent", "installation_location": "Foyer", "installation_quantity": 9},
    )

    report = inventory.availability(equipment)

    assert report["total_unavailable"] == 9
    assert report["available_quantity"] == 1
    assert report["warnings"] == [{"type": "warning", "message": "Low availability: Only 1 of 10 units available."}]


def test_availability_without_free_units(db_session, seeded):
    equipment = inventory.create_equipment(
        db_session, None, {"type_id": seeded["type_id"], "brand": "ARRI", "model": "L7", "quantity": 2}
    )
    inventory.set_installation(
        db_session,
        equipment,
        None,
        {"installation_type": "fixed", "installation_location": "Foyer", "installation_quantity": 2},
    )

    report = inventory.availability(equipment)

    assert report["available_quantity"] == 0
    assert report["warnings"][0]["type"] == "error"
