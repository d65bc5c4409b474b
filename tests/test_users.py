from datetime import date

from conftest import login, login_as, login_superadmin
from schoolchat.models.user import Role, User


def _new_student(**overrides):
    body = {
        "username": "7b12",
        "display_name": "Meera Nair",
        "role": "USER",
        "class": "7B",
        "roll": "12",
        "dob": "2012-03-09",
        "father_name": "Suresh Nair",
    }
    body.update(overrides)
    return body


def test_admin_creates_user_with_derived_password(client, make_user):
    login_as(client, make_user(Role.ADMIN))

    r = client.post("/api/users", json=_new_student())
    assert r.status_code == 201
    data = r.json()
    assert data["default_password"] == "20120309sure"
    assert data["user"]["class"] == "7B"
    assert data["user"]["must_change_password"] is True

    client.post("/api/auth/logout")
    me = login(client, "7b12", "20120309sure")
    assert me.json()["user"]["must_change_password"] is True


def test_duplicate_username_rejected(client, make_user):
    login_as(client, make_user(Role.ADMIN))
    assert client.post("/api/users", json=_new_student()).status_code == 201
    r = client.post("/api/users", json=_new_student())
    assert r.status_code == 400
    assert r.json()["detail"] == "Username already exists"


def test_role_hierarchy_on_create(client, make_user):
    login_as(client, make_user(Role.ADMIN))
    r = client.post("/api/users", json=_new_student(username="newadmin", role="ADMIN"))
    assert r.status_code == 403
    assert r.json()["detail"] == "Insufficient permissions"

    login_superadmin(client)
    assert client.post("/api/users", json=_new_student(username="newadmin", role="ADMIN")).status_code == 201
    assert client.post("/api/users", json=_new_student(username="boss", role="SUPERADMIN")).status_code == 403


def test_user_cannot_reach_admin_endpoints(client, make_user):
    login_as(client, make_user())
    assert client.get("/api/users").status_code == 403
    assert client.post("/api/users", json=_new_student()).status_code == 403
    assert client.get("/api/reports/stats").status_code == 403
    assert client.get("/api/admin/settings").status_code == 403


def test_list_users_paginates_and_filters(client, make_user):
    for i in range(5):
        make_user(class_name="8A", username=f"8a{i}")
    make_user(class_name="9C")
    login_as(client, make_user(Role.ADMIN))

    r = client.get("/api/users", params={"class": "8A", "page": 2, "limit": 2})
    assert r.status_code == 200
    data = r.json()
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
    assert len(data["users"]) == 2
    assert all(u["class"] == "8A" for u in data["users"])
    for u in data["users"]:
        assert "default_password" not in u
        assert "dob" not in u
        assert "father_name" not in u

    admins = client.get("/api/users", params={"role": "ADMIN"}).json()
    assert admins["pagination"]["total"] == 1


def test_superadmin_listing_rederives_default_password(client, make_user):
    make_user(username="6a1", class_name="6A", dob=date(2013, 1, 2), mother_name="Lakshmi Devi")
    login_superadmin(client)

    users = client.get("/api/users", params={"class": "6A"}).json()["users"]
    assert users[0]["default_password"] == "20130102laks"
    assert users[0]["mother_name"] == "Lakshmi Devi"


def test_superadmin_cannot_be_deleted(client, make_user, db_session):
    root = db_session.query(User).filter_by(role=Role.SUPERADMIN).one()
    login_as(client, make_user(Role.ADMIN))
    r = client.delete(f"/api/users/{root.id}")
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot delete super admin"


def test_delete_user(client, make_user, db_session):
    victim = make_user()
    victim_id = victim.id
    peer = make_user(Role.ADMIN)
    login_as(client, make_user(Role.ADMIN))

    assert client.delete(f"/api/users/{peer.id}").status_code == 403
    assert client.delete(f"/api/users/{victim_id}").status_code == 200
    assert client.delete(f"/api/users/{victim_id}").status_code == 404
    db_session.expire_all()
    assert db_session.query(User).filter_by(id=victim_id).count() == 0


def test_reset_password(client, make_user):
    student = make_user(username="5d3", dob=date(2014, 7, 1), class_teacher_name="Ms Rao")
    login_as(client, make_user(Role.ADMIN))

    r = client.post(f"/api/users/{student.id}/reset-password")
    assert r.status_code == 200
    assert r.json()["default_password"] == "20140701msra"

    client.post("/api/auth/logout")
    me = login(client, "5d3", "20140701msra")
    assert me.json()["user"]["must_change_password"] is True


def test_reset_password_unknown_user(client, make_user):
    login_as(client, make_user(Role.ADMIN))
    assert client.post("/api/users/9999/reset-password").status_code == 404
