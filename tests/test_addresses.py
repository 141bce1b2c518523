from tests.conftest import auth

ADDRESS = {
    "label": "Home",
    "type": "home",
    "full_name": "Ama Mensah",
    "phone": "0244123456",
    "region": "Greater Accra",
    "city": "Accra",
    "street_address": "12 Oxford Street, Osu",
    "gps_address": "",
}


def _create(client, headers, **overrides):
    res = client.post("/api/users/addresses", json=dict(ADDRESS, **overrides), headers=headers)
    assert res.status_code == 201, res.json()
    return res.json()["data"]["address"]


def _defaults(client, headers):
    addresses = client.get("/api/users/addresses", headers=headers).json()["data"]["addresses"]
    return [a["id"] for a in addresses if a["is_default"]]


def test_first_address_becomes_default(client, buyer):
    headers = auth(buyer)
    first = _create(client, headers)
    assert first["is_default"] is True
    assert first["gps_address"] is None

    second = _create(client, headers, label="Work", type="work")
    assert second["is_default"] is False


def test_setting_default_clears_the_flag_elsewhere(client, buyer):
    headers = auth(buyer)
    first = _create(client, headers)
    second = _create(client, headers, label="Work")
    third = _create(client, headers, label="Mum's", is_default=True)
    assert _defaults(client, headers) == [third["id"]]

    res = client.patch(f"/api/users/addresses/{second['id']}/default", headers=headers)
    assert res.status_code == 200
    assert _defaults(client, headers) == [second["id"]]

    client.put(f"/api/users/addresses/{first['id']}", json={"is_default": True}, headers=headers)
    assert _defaults(client, headers) == [first["id"]]


def test_deleting_default_promotes_newest_remaining(client, buyer):
    headers = auth(buyer)
    first = _create(client, headers)
    _create(client, headers, label="Work")
    newest = _create(client, headers, label="Shop")

    assert client.delete(f"/api/users/addresses/{first['id']}", headers=headers).status_code == 200
    assert _defaults(client, headers) == [newest["id"]]


def test_addresses_are_private(client, db, buyer, seller):
    address = _create(client, auth(buyer))
    res = client.put(f"/api/users/addresses/{address['id']}", json={"label": "Mine"}, headers=auth(seller))
    assert res.status_code == 404
    assert client.delete(f"/api/users/addresses/{address['id']}", headers=auth(seller)).status_code == 404


def test_address_validation(client, buyer):
    res = client.post(
        "/api/users/addresses",
        json=dict(ADDRESS, phone="12345", gps_address="bad"),
        headers=auth(buyer),
    )
    assert res.status_code == 400
    fields = {err["field"] for err in res.json()["errors"]}
    assert {"body.phone", "body.gps_address"} <= fields


def test_profile_includes_addresses(client, buyer):
    headers = auth(buyer)
    _create(client, headers, gps_address="GA-123-4567")
    data = client.get("/api/users/profile", headers=headers).json()["data"]
    assert data["user"]["email"] == buyer.email
    assert data["addresses"][0]["gps_address"] == "GA-123-4567"
