def test_admin_log_listing_filters_and_pages(logs_client, equipment_client, admin_headers, catalog, make_equipment):
    first = make_equipment(serial_number="L-1", location_id=catalog["lager"])
    second = make_equipment(serial_number="L-2", type_id=catalog["speaker"])
    equipment_client.put(f"/equipment/{first['id']}", json={"location_id": catalog["stage_a"]}, headers=admin_headers)
    equipment_client.patch(f"/equipment/{second['id']}/status", json={"status": "maintenance"}, headers=admin_headers)

    everything = logs_client.get("/equipment-logs", headers=admin_headers).json()
    moves = logs_client.get("/equipment-logs", params={"action_type": "location_change"}, headers=admin_headers).json()
    speakers = logs_client.get("/equipment-logs", params={"type": "Speaker"}, headers=admin_headers).json()
    searched = logs_client.get("/equipment-logs", params={"search": "L-2"}, headers=admin_headers).json()
    paged = logs_client.get("/equipment-logs", params={"limit": 3, "page": 2}, headers=admin_headers).json()

    assert everything["total"] == 4
    assert everything["logs"][0]["action_type"] == "status_change"
    assert everything["logs"][0]["equipment"]["serial_number"] == "L-2"
    assert [log["equipment_id"] for log in moves["logs"]] == [first["id"]]
    assert speakers["total"] == 2
    assert searched["total"] == 2
    assert paged["total_pages"] == 2
    assert paged["current_page"] == 2
    assert len(paged["logs"]) == 1


def test_full_log_is_admin_only(logs_client, basic_headers, make_equipment):
    item = make_equipment()

    assert logs_client.get("/equipment-logs", headers=basic_headers).status_code == 403
    per_item = logs_client.get(f"/equipment-logs/equipment/{item['id']}", headers=basic_headers)
    assert per_item.status_code == 200
    assert per_item.json()["total"] == 1


def test_user_activity_lists_own_entries(users_client, equipment_client, admin_headers, advanced_headers, make_equipment):
    item = make_equipment()
    equipment_client.put(f"/equipment/{item['id']}", json={"model": "L10"}, headers=advanced_headers)

    own = users_client.get("/users/techie/logs", headers=advanced_headers)
    admin_view = users_client.get("/users/admin/logs", headers=admin_headers)
    forbidden = users_client.get("/users/admin/logs", headers=advanced_headers)

    assert own.status_code == 200
    assert [log["details"] for log in own.json()["logs"]] == ['Model changed from "L7" to "L10"']
    assert admin_view.json()["total"] == 1
    assert forbidden.status_code == 403
