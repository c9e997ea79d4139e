from common.audit_log import AuditLogRecorder
from common.errors import PersistenceError


def _refuse(self, **values):
    raise PersistenceError("log table unavailable")


def test_catalog_crud_and_unique_names(catalog_client, admin_headers):
    created = catalog_client.post("/categories", json={"name": "Audio"}, headers=admin_headers)
    assert created.status_code == 201

    duplicate = catalog_client.post("/categories", json={"name": "Audio"}, headers=admin_headers)
    assert duplicate.status_code == 400

    category_id = created.json()["id"]
    updated = catalog_client.put(
        f"/categories/{category_id}", json={"description": "Sound gear"}, headers=admin_headers
    )
    assert updated.json()["description"] == "Sound gear"

    listing = catalog_client.get("/categories", headers=admin_headers)
    assert [row["name"] for row in listing.json()] == ["Audio"]

    assert catalog_client.delete(f"/categories/{category_id}", headers=admin_headers).status_code == 204
    assert catalog_client.get(f"/categories/{category_id}", headers=admin_headers).status_code == 404


def test_listing_cache_is_dropped_on_write(catalog_client, admin_headers):
    catalog_client.post("/locations", json={"name": "Lager"}, headers=admin_headers)
    first = catalog_client.get("/locations", headers=admin_headers).json()

    catalog_client.post("/locations", json={"name": "Stage A"}, headers=admin_headers)
    second = catalog_client.get("/locations", headers=admin_headers).json()

    assert [row["name"] for row in first] == ["Lager"]
    assert [row["name"] for row in second] == ["Lager", "Stage A"]


def test_catalog_writes_are_admin_only(catalog_client, basic_headers, advanced_headers):
    assert catalog_client.post("/locations", json={"name": "Pit"}, headers=basic_headers).status_code == 403
    assert catalog_client.post("/locations", json={"name": "Pit"}, headers=advanced_headers).status_code == 403
    assert catalog_client.get("/locations", headers=basic_headers).status_code == 200


def test_locations_in_use_cannot_be_deleted(catalog_client, admin_headers, catalog, make_equipment):
    make_equipment(location_id=catalog["stage_a"])

    in_use = catalog_client.delete(f"/locations/{catalog['stage_a']}", headers=admin_headers)
    type_in_use = catalog_client.delete(f"/equipment-types/{catalog['light']}", headers=admin_headers)
    free = catalog_client.delete(f"/equipment-types/{catalog['speaker']}", headers=admin_headers)

    assert in_use.status_code == 400
    assert type_in_use.status_code == 400
    assert free.status_code == 204


def test_rename_refreshes_equipment(catalog_client, equipment_client, logs_client, admin_headers, catalog, make_equipment):
    item = make_equipment(location_id=catalog["stage_a"])

    renamed = catalog_client.put(
        f"/locations/{catalog['stage_a']}", json={"name": "Main Stage"}, headers=admin_headers
    )
    assert renamed.status_code == 200

    refreshed = equipment_client.get(f"/equipment/{item['id']}", headers=admin_headers).json()
    assert refreshed["location"] == "Main Stage"
    assert refreshed["status"] == "in-use"

    latest = logs_client.get(f"/equipment-logs/equipment/{item['id']}", headers=admin_headers).json()["logs"][0]
    assert latest["action_type"] == "location_change"
    assert latest["details"] == 'Location changed from "Stage A" to "Main Stage"'


def test_renaming_to_storage_makes_equipment_available(catalog_client, equipment_client, admin_headers, catalog, make_equipment):
    catalog_client.put(f"/locations/{catalog['lager']}", json={"name": "Old Lager"}, headers=admin_headers)
    depot = catalog_client.post("/locations", json={"name": "Depot"}, headers=admin_headers).json()
    item = make_equipment(location_id=depot["id"])
    assert item["status"] == "in-use"

    catalog_client.put(f"/locations/{depot['id']}", json={"name": "lager"}, headers=admin_headers)

    refreshed = equipment_client.get(f"/equipment/{item['id']}", headers=admin_headers).json()
    assert refreshed["status"] == "available"


def test_deleting_category_keeps_equipment_name(catalog_client, equipment_client, admin_headers, catalog, make_equipment):
    item = make_equipment(category_id=catalog["lighting"])

    assert catalog_client.delete(f"/categories/{catalog['lighting']}", headers=admin_headers).status_code == 204

    refreshed = equipment_client.get(f"/equipment/{item['id']}", headers=admin_headers).json()
    assert refreshed["category_id"] is None
    assert refreshed["category"] == "Lighting"


def test_failed_rename_refresh_keeps_the_old_name(
    catalog_client, equipment_client, admin_headers, catalog, make_equipment, monkeypatch
):
    item = make_equipment(location_id=catalog["stage_a"])
    monkeypatch.setattr(AuditLogRecorder, "_append", _refuse)

    renamed = catalog_client.put(f"/locations/{catalog['stage_a']}", json={"name": "Main Stage"}, headers=admin_headers)

    assert renamed.status_code == 500
    location = catalog_client.get(f"/locations/{catalog['stage_a']}", headers=admin_headers).json()
    assert location["name"] == "Stage A"
    stored = equipment_client.get(f"/equipment/{item['id']}", headers=admin_headers).json()
    assert stored["location"] == "Stage A"


def test_installation_location_follows_rename(catalog_client, equipment_client, admin_headers, catalog, make_equipment):
    item = make_equipment(quantity=2)
    equipment_client.put(
        f"/equipment/{item['id']}/installation",
        json={"installation_type": "fixed", "installation_location_id": catalog["stage_a"], "installation_quantity": 1},
        headers=admin_headers,
    )

    catalog_client.put(f"/locations/{catalog['stage_a']}", json={"name": "Main Stage"}, headers=admin_headers)

    refreshed = equipment_client.get(f"/equipment/{item['id']}", headers=admin_headers).json()
    assert refreshed["installation_location"] == "Main Stage"
    assert refreshed["location"] == "Main Stage"
    in_use = catalog_client.delete(f"/locations/{catalog['stage_a']}", headers=admin_headers)
    assert in_use.status_code == 400
