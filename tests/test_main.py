from circulation.models.models import AuditLog, BorrowTransaction


def _as(user_id):
    return {"X-Actor-Id": str(user_id)}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_borrow_sign_return_close_flow(client, people):
    # Create staff member and borrower
    r = client.post("/users/", headers=_as(people.admin),
                    json={"name": "Test Tech", "email": "tech@example.com", "role": "Technician"})
    assert r.status_code == 200
    tech_id = r.json()["id"]
    r = client.post("/users/", headers=_as(tech_id), json={"name": "Test Borrower", "email": "borrower@example.com"})
    assert r.status_code == 200
    borrower_id = r.json()["id"]

    # Create asset
    r = client.post("/assets/", headers=_as(tech_id),
                    json={"asset_code": "LAP-001", "name": "Laptop", "total_stock": 1})
    assert r.status_code == 200
    asset_id = r.json()["id"]
    assert (r.json()["current_stock"], r.json()["status"]) == (1, "Available")

    # Open assignment
    r = client.post("/assignments/", headers=_as(tech_id),
                    json={"user_id": borrower_id, "academic_year": "2024-2025", "semester": 1})
    assert r.status_code == 200
    assignment_id = r.json()["id"]
    assert r.json()["assignment_number"] == "AS-2024-2025-0001"

    # Borrow
    r = client.post(f"/assignments/{assignment_id}/borrow", headers=_as(tech_id),
                    json={"items": [{"asset_id": asset_id, "quantity": 1}]})
    assert r.status_code == 200
    tx = r.json()
    assert tx["transaction_number"].startswith("TR-")
    assert tx["is_signed"] is False
    item_id = tx["items"][0]["id"]
    assert client.get(f"/assets/{asset_id}").json()["status"] == "Reserved"
    assert asset_id not in [a["id"] for a in client.get("/assets/available").json()]

    # Sign
    r = client.post(f"/borrow-transactions/{tx['id']}/sign", headers=_as(borrower_id),
                    json={"signature_path": "signatures/borrow.png"})
    assert r.status_code == 200
    assert r.json()["is_signed"] is True
    assert client.get(f"/assets/{asset_id}").json()["status"] == "Borrowed"

    # Return
    r = client.post(f"/assignments/{assignment_id}/returns", headers=_as(tech_id),
                    json={"items": [{"borrow_item_id": item_id, "condition": "Good"}]})
    assert r.status_code == 200
    assert r.json()["return_number"].startswith("RT-")
    asset = client.get(f"/assets/{asset_id}").json()
    assert (asset["current_stock"], asset["status"]) == (1, "Available")

    # Close
    r = client.post(f"/assignments/{assignment_id}/close", headers=_as(tech_id), json={"notes": "done"})
    assert r.status_code == 200
    assert r.json()["status"] == "Closed"

    detail = client.get(f"/assignments/{assignment_id}").json()
    assert detail["outstanding_count"] == 0
    assert len(detail["borrow_transactions"]) == 1
    assert detail["return_transactions"][0]["items"][0]["condition"] == "Good"


def test_missing_actor_is_unauthorized(client, people):
    r = client.post("/assignments/", json={"user_id": people.borrower, "academic_year": "2024-2025", "semester": 1})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    r = client.post("/assignments/", headers=_as(9999),
                    json={"user_id": people.borrower, "academic_year": "2024-2025", "semester": 1})
    assert r.status_code == 401


def test_creating_users_needs_an_actor_and_admin_for_roles(client, people, assignment):
    r = client.post("/users/", json={"name": "Mallory", "email": "mallory@example.com", "role": "Admin"})
    assert r.status_code == 401

    r = client.post("/users/", headers=_as(people.staff),
                    json={"name": "Mallory", "email": "mallory@example.com", "role": "Admin"})
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"

    r = client.post("/users/", headers=_as(people.staff), json={"name": "Mallory", "email": "mallory@example.com"})
    assert r.status_code == 200
    assert r.json()["role"] == "Staff"
    mallory = r.json()["id"]
    assert client.delete(f"/assignments/{assignment}", headers=_as(mallory)).status_code == 403

    r = client.post("/users/", headers=_as(people.admin),
                    json={"name": "Second Admin", "email": "admin2@example.com", "role": "Admin"})
    assert r.status_code == 200
    assert r.json()["role"] == "Admin"


def test_creating_assets_needs_an_actor(client, session_factory, people):
    r = client.post("/assets/", json={"asset_code": "X-1", "name": "Extension lead", "total_stock": 4})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    r = client.post("/assets/", headers=_as(people.staff),
                    json={"asset_code": "X-1", "name": "Extension lead", "total_stock": 4})
    assert r.status_code == 200
    assert (r.json()["current_stock"], r.json()["status"]) == (4, "Available")

    r = client.post("/assets/", headers=_as(people.staff),
                    json={"asset_code": " X-1 ", "name": "Extension lead", "total_stock": 4})
    assert r.status_code == 400

    with session_factory() as s:
        entry = s.query(AuditLog).filter_by(action="CREATE_ASSET").one()
        assert entry.user_id == people.staff


def test_unknown_borrower_is_not_found(client, people):
    r = client.post("/assignments/", headers=_as(people.staff),
                    json={"user_id": 9999, "academic_year": "2024-2025", "semester": 1})
    assert r.status_code == 404


def test_insufficient_stock_is_conflict(client, people, make_asset, assignment):
    asset_id = make_asset(total_stock=2)
    r = client.post(f"/assignments/{assignment}/borrow", headers=_as(people.staff),
                    json={"items": [{"asset_id": asset_id, "quantity": 3}]})
    assert r.status_code == 409
    assert r.json()["code"] == "INSUFFICIENT_STOCK"
    assert client.get(f"/assets/{asset_id}").json()["current_stock"] == 2


def test_empty_borrow_is_rejected(client, people, assignment):
    r = client.post(f"/assignments/{assignment}/borrow", headers=_as(people.staff), json={"items": []})
    assert r.status_code == 422


def test_over_return_is_unprocessable(client, people, make_asset, assignment):
    asset_id = make_asset(total_stock=5)
    r = client.post(f"/assignments/{assignment}/borrow", headers=_as(people.staff),
                    json={"items": [{"asset_id": asset_id, "quantity": 2}]})
    item_id = r.json()["items"][0]["id"]
    r = client.post(f"/assignments/{assignment}/returns", headers=_as(people.staff),
                    json={"items": [{"borrow_item_id": item_id, "condition": "Good", "quantity": 3}]})
    assert r.status_code == 422
    assert r.json()["code"] == "INVALID_QUANTITY"


def test_delete_assignment_permissions(client, people, assignment):
    r = client.delete(f"/assignments/{assignment}", headers=_as(people.staff))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"

    r = client.delete(f"/assignments/{assignment}", headers=_as(people.admin))
    assert r.status_code == 200
    assert r.json() == {"ok": True, "assignment_number": "AS-2024-2025-0001"}
    assert client.get(f"/assignments/{assignment}").status_code == 404


def test_delete_borrow_transaction(client, session_factory, people, make_asset, assignment):
    asset_id = make_asset(total_stock=3)
    signed = client.post(f"/assignments/{assignment}/borrow", headers=_as(people.staff),
                         json={"items": [{"asset_id": asset_id, "quantity": 1}]}).json()
    unsigned = client.post(f"/assignments/{assignment}/borrow", headers=_as(people.staff),
                           json={"items": [{"asset_id": asset_id, "quantity": 2}]}).json()
    client.post(f"/borrow-transactions/{signed['id']}/sign", headers=_as(people.borrower))

    r = client.delete(f"/borrow-transactions/{signed['id']}", headers=_as(people.admin))
    assert r.status_code == 409
    assert r.json()["code"] == "SIGNED_TRANSACTION_IMMUTABLE"

    r = client.delete(f"/borrow-transactions/{unsigned['id']}", headers=_as(people.staff))
    assert r.status_code == 200
    assert r.json()["message"] == f"Transaction {unsigned['transaction_number']} deleted successfully"
    assert client.get(f"/assets/{asset_id}").json()["current_stock"] == 2

    with session_factory() as s:
        assert [t.id for t in s.query(BorrowTransaction).all()] == [signed["id"]]
