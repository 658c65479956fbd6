def _auth(client, device_id="d1", display_id="disp1"):
    return client.post("/api/device/auth", json={
        "deviceId": device_id,
        "displayId": display_id,
        "userAgent": "kiosk/1.0",
        "screenResolution": "1920x1080",
    })


def _register(client, name="Lobby TV", device_id="d1", display_id="disp1"):
    return client.post("/api/device/register", json={
        "deviceId": device_id,
        "displayId": display_id,
        "deviceName": name,
        "userAgent": "kiosk/1.0",
        "screenResolution": "1920x1080",
    })


def _record_id(client, device_id="d1"):
    devices = client.get("/api/admin/devices").json()["data"]
    return next(d["id"] for d in devices if d["device_id"] == device_id)


def test_pairing_end_to_end(client):
    body = _auth(client).json()
    assert body["success"] is True
    assert body["needsRegistration"] is True
    assert body["authorized"] is False

    body = _register(client).json()
    assert body["success"] is True
    assert body["status"] == "pending"

    body = _auth(client).json()
    assert body["status"] == "pending"
    assert body["authorized"] is False

    response = client.patch(f"/api/admin/devices/{_record_id(client)}", json={"status": "authorized"})
    assert response.status_code == 200
    assert response.json()["device"]["status"] == "authorized"

    body = _auth(client).json()
    assert body["authorized"] is True
    assert body["deviceName"] == "Lobby TV"


def test_auth_answer_explains_unpaired_states(client):
    assert _auth(client).json()["message"] == "Device not registered for this display"
    _register(client)
    assert "approval" in _auth(client).json()["message"]

    client.patch(f"/api/admin/devices/{_record_id(client)}", json={"status": "authorized"})
    assert _auth(client).json()["message"] is None


def test_auth_with_missing_fields_is_400(client):
    response = client.post("/api/device/auth", json={"deviceId": "d1"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_register_with_short_name_is_400(client):
    response = _register(client, name="ab")
    assert response.status_code == 400
    assert "at least 3" in response.json()["message"]


def test_admin_revoke_and_delete(client):
    _register(client)
    record_id = _record_id(client)
    client.patch(f"/api/admin/devices/{record_id}", json={"status": "authorized"})
    client.patch(f"/api/admin/devices/{record_id}", json={"status": "rejected"})
    body = _auth(client).json()
    assert body["authorized"] is False
    assert body["status"] == "rejected"

    assert client.patch(f"/api/admin/devices/{record_id}", json={"status": "maybe"}).status_code == 400
    assert client.delete(f"/api/admin/devices/{record_id}").status_code == 200
    assert client.delete(f"/api/admin/devices/{record_id}").status_code == 404
    assert _auth(client).json()["needsRegistration"] is True


def test_unknown_device_id_is_404(client):
    response = client.patch("/api/admin/devices/999", json={"status": "authorized"})
    assert response.status_code == 404


def test_health_and_tasks(client, signage_app):
    assert client.get("/api/health").json()["status"] == "ok"
    signage_app.schedule_maintenance()
    names = [t["name"] for t in client.get("/api/tasks").json()["active_timers"]]
    assert names == ["preview_purge"]
