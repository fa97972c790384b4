from conftest import SUPER_ADMIN, as_user
from familytrips import models


def _create_family(client, name="Smith", email="alex@smith.test"):
    resp = client.post(
        "/api/families",
        json={
            "name": name,
            "adults": [{"name": "Alex", "email": email}],
            "children": [{"name": "Sam", "age": 7}],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_create_family_is_public_and_pending(client):
    family = _create_family(client)

    assert family["status"] == "PENDING"
    assert family["adult_count"] == 1
    assert family["child_count"] == 1


def test_create_family_requires_an_adult(client):
    resp = client.post("/api/families", json={"name": "Empty", "adults": []})

    assert resp.status_code == 422
    assert resp.json()["error_type"] == "validation_error"


def test_duplicate_adult_email_is_rejected(client):
    _create_family(client)
    resp = client.post(
        "/api/families",
        json={"name": "Other", "adults": [{"name": "Alex", "email": "alex@smith.test"}]},
    )

    assert resp.status_code == 400


def test_reading_families_requires_authentication(client):
    assert client.get("/api/families").status_code == 401
    assert client.get("/api/families", headers={"X-User-Id": "u1", "X-User-Role": "GUEST"}).status_code == 401


def test_family_principal_only_sees_own_family(client):
    smith = _create_family(client, "Smith", "a@smith.test")
    jones = _create_family(client, "Jones", "a@jones.test")
    headers = as_user("u-smith", "FAMILY", smith["id"])

    listed = client.get("/api/families", headers=headers).json()
    own = client.get(f"/api/families/{smith['id']}", headers=headers)
    other = client.get(f"/api/families/{jones['id']}", headers=headers)

    assert [family["id"] for family in listed] == [smith["id"]]
    assert own.status_code == 200
    assert other.status_code == 403


def test_trip_admin_sees_families_attending_managed_trips(client):
    smith = _create_family(client, "Smith", "a@smith.test")
    _create_family(client, "Jones", "a@jones.test")
    trip_admin = as_user("ta-1", "TRIP_ADMIN")
    trip = client.post("/api/trips", json={"name": "Lake"}, headers=trip_admin).json()["data"]
    client.post(f"/api/trips/{trip['id']}/attendance", json={"family_id": smith["id"]}, headers=trip_admin)

    listed = client.get("/api/families", headers=trip_admin).json()

    assert [family["id"] for family in listed] == [smith["id"]]


def test_family_list_is_cached_per_caller(client, cache, db):
    family = _create_family(client)
    first = client.get("/api/families", headers=SUPER_ADMIN).json()

    # Change data behind the API's back; the cached response is still served
    db.query(models.Family).filter(models.Family.id == family["id"]).update({"name": "Renamed"})
    db.commit()
    second = client.get("/api/families", headers=SUPER_ADMIN).json()

    assert "GET:/api/families:admin-1|SUPER_ADMIN:{}" in cache
    assert first == second
    assert second[0]["name"] == "Smith"


def test_family_update_invalidates_cached_reads(client, cache):
    family = _create_family(client)
    headers = as_user("u-smith", "FAMILY", family["id"])
    client.get("/api/families", headers=SUPER_ADMIN)
    client.get(f"/api/families/{family['id']}", headers=headers)

    resp = client.put(f"/api/families/{family['id']}", json={"name": "Smith-Jones"}, headers=headers)

    assert resp.status_code == 200
    assert cache.stats()["size"] == 0
    assert client.get(f"/api/families/{family['id']}", headers=headers).json()["name"] == "Smith-Jones"
    assert client.get("/api/families", headers=SUPER_ADMIN).json()[0]["name"] == "Smith-Jones"


def test_forbidden_update_leaves_cache_untouched(client, cache):
    smith = _create_family(client, "Smith", "a@smith.test")
    jones = _create_family(client, "Jones", "a@jones.test")
    client.get("/api/families", headers=SUPER_ADMIN)

    other_family = client.put(
        f"/api/families/{smith['id']}",
        json={"name": "Hijacked"},
        headers=as_user("u-jones", "FAMILY", jones["id"]),
    )
    wrong_role = client.put(
        f"/api/families/{smith['id']}",
        json={"name": "Hijacked"},
        headers=as_user("ta-1", "TRIP_ADMIN"),
    )

    assert other_family.status_code == 403
    assert wrong_role.status_code == 403
    assert "GET:/api/families:admin-1|SUPER_ADMIN:{}" in cache


def test_approval_workflow_is_super_admin_only(client):
    family = _create_family(client)

    denied = client.post(f"/api/families/{family['id']}/approve", headers=as_user("u", "FAMILY", family["id"]))
    approved = client.post(f"/api/families/{family['id']}/approve", headers=SUPER_ADMIN)
    deactivated = client.post(f"/api/families/{family['id']}/deactivate", headers=SUPER_ADMIN)
    inactive = client.get("/api/families", params={"is_active": "false"}, headers=SUPER_ADMIN).json()
    reactivated = client.post(f"/api/families/{family['id']}/reactivate", headers=SUPER_ADMIN)

    assert denied.status_code == 403
    assert approved.json()["data"]["status"] == "ACTIVE"
    assert deactivated.json()["data"]["is_active"] is False
    assert [f["id"] for f in inactive] == [family["id"]]
    assert reactivated.json()["data"]["status"] == "ACTIVE"


def test_member_management(client):
    family = _create_family(client)
    headers = as_user("u-smith", "FAMILY", family["id"])

    added = client.post(
        f"/api/families/{family['id']}/members",
        json={"type": "CHILD", "name": "Robin", "age": 4},
        headers=headers,
    )
    children = client.get(f"/api/families/{family['id']}/members", params={"type": "CHILD"}, headers=headers)

    assert added.status_code == 201
    assert sorted(member["name"] for member in children.json()) == ["Robin", "Sam"]

    adults = client.get(f"/api/families/{family['id']}/members", params={"type": "ADULT"}, headers=headers).json()
    last_adult = client.delete(f"/api/families/{family['id']}/members/{adults[0]['id']}", headers=headers)
    removed = client.delete(f"/api/families/{family['id']}/members/{added.json()['data']['id']}", headers=headers)

    assert last_adult.status_code == 400
    assert removed.status_code == 200


def test_adult_member_requires_email(client):
    family = _create_family(client)

    resp = client.post(
        f"/api/families/{family['id']}/members",
        json={"type": "ADULT", "name": "Jo"},
        headers=SUPER_ADMIN,
    )

    assert resp.status_code == 422


def test_delete_family(client):
    family = _create_family(client)

    assert client.delete(f"/api/families/{family['id']}", headers=as_user("ta", "TRIP_ADMIN")).status_code == 403
    assert client.delete(f"/api/families/{family['id']}", headers=SUPER_ADMIN).status_code == 200
    assert client.get(f"/api/families/{family['id']}", headers=SUPER_ADMIN).status_code == 404


def test_family_delete_refreshes_cached_trip_and_gear_reads(client):
    family = _create_family(client)
    trip_admin = as_user("ta-1", "TRIP_ADMIN")
    trip = client.post("/api/trips", json={"name": "Lake"}, headers=trip_admin).json()["data"]
    client.post(f"/api/trips/{trip['id']}/attendance", json={"family_id": family["id"]}, headers=trip_admin)
    tent = client.post(
        "/api/gear",
        json={"trip_id": trip["id"], "name": "Tent", "quantity_needed": 1},
        headers=trip_admin,
    ).json()["data"]
    client.post(f"/api/gear/{tent['id']}/assign", json={"family_id": family["id"]}, headers=trip_admin)
    assert client.get(f"/api/trips/{trip['id']}", headers=trip_admin).json()["attending_families"] == 1
    assert client.get(f"/api/gear/{tent['id']}", headers=trip_admin).json()["total_assigned"] == 1

    client.delete(f"/api/families/{family['id']}", headers=SUPER_ADMIN)

    assert client.get(f"/api/trips/{trip['id']}", headers=trip_admin).json()["attending_families"] == 0
    assert client.get(f"/api/gear/{tent['id']}", headers=trip_admin).json()["total_assigned"] == 0


def test_role_change_does_not_replay_the_narrower_view(client, cache):
    smith = _create_family(client, "Smith", "a@smith.test")
    jones = _create_family(client, "Jones", "a@jones.test")

    as_family = client.get("/api/families", headers=as_user("u1", "FAMILY", smith["id"])).json()
    as_admin = client.get("/api/families", headers=as_user("u1", "SUPER_ADMIN")).json()

    assert [family["id"] for family in as_family] == [smith["id"]]
    assert [family["id"] for family in as_admin] == [smith["id"], jones["id"]]
    assert len(cache) == 2
