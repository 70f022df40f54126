"""Tests for fildas.accounts: user directory scoping, updates and their notifications."""

import pytest
from sqlalchemy.exc import IntegrityError

from fildas import accounts
from fildas.errors import AlreadyExists, InvalidInput, NotFound
from fildas.models import Department, Notification, User


class TestListUsers:

    def test_super_admin_sees_all(self, db, seed):
        users = accounts.list_users(db, seed.root)
        assert len(users) == 7
        assert [u.name for u in users] == sorted(u.name for u in users)

    def test_admin_is_scoped_to_department(self, db, seed):
        names = [u.name for u in accounts.list_users(db, seed.eng_admin)]
        assert names == ["Alice", "Bob", "Erin", "Idle"]
        assert accounts.list_users(db, seed.eng_admin, department_id=seed.hr.id) == []

    def test_admin_without_department_sees_nobody(self, db, seed):
        loose = User(name="Lou", email="lou@example.com", password_hash="x", role_id=seed.roles["Admin"].id)
        db.add(loose)
        db.commit()
        assert accounts.list_users(db, loose) == []

    def test_deleted_users_are_hidden(self, db, seed):
        accounts.delete_user(db, seed.root, seed.bob)
        assert seed.bob.id not in {u.id for u in accounts.list_users(db, seed.root)}


class TestUpdateUser:

    @pytest.mark.parametrize("field", ["name", "email", "status"])
    def test_required_fields_reject_null(self, db, seed, field):
        with pytest.raises(InvalidInput):
            accounts.update_user(db, seed.root, seed.alice, {field: None})
        db.expire_all()
        assert db.get(User, seed.alice.id).name == "Alice"

    def test_duplicate_email(self, db, seed):
        with pytest.raises(AlreadyExists):
            accounts.update_user(db, seed.root, seed.alice, {"email": "Bob@example.com"})

    def test_change_type_priority(self):
        assert accounts.user_change_type(["status", "role_id"]) == "role_changed"
        assert accounts.user_change_type(["password", "department_id"]) == "department_changed"
        assert accounts.user_change_type(["status", "password"]) == "status_changed"
        assert accounts.user_change_type(["password"]) == "password_changed"
        assert accounts.user_change_type(["name"]) == "updated"

    def test_department_move_notifies_user(self, db, seed, notifier, mailer):
        accounts.update_user(
            db, seed.root, seed.alice, {"department_id": seed.hr.id, "status": "inactive"}, notifier=notifier
        )
        note = db.query(Notification).filter(Notification.user_id == seed.alice.id).one()
        assert note.data["item_type"] == "user"
        assert note.data["change_type"] == "department_changed"
        assert note.data["updated_by"] == "Root"
        assert mailer.sent[0]["to"] == "alice@example.com"

    def test_password_change_notifies(self, db, seed, notifier):
        accounts.update_user(db, seed.root, seed.alice, {"password": "new-secret"}, notifier=notifier)
        note = db.query(Notification).filter(Notification.user_id == seed.alice.id).one()
        assert note.data["change_type"] == "password_changed"

    def test_no_op_update_sends_nothing(self, db, seed, notifier, mailer):
        accounts.update_user(db, seed.root, seed.alice, {"name": "Alice"}, notifier=notifier)
        assert db.query(Notification).count() == 0
        assert mailer.sent == []


class TestDepartments:

    def test_unknown_owner(self, db, seed):
        with pytest.raises(NotFound):
            accounts.update_department(db, seed.root, seed.eng, {"owner_id": 9999})
        with pytest.raises(NotFound):
            accounts.create_department(db, seed.root, {"name": "Legal", "owner_id": 9999})

    def test_owner_is_set(self, db, seed):
        dept = accounts.update_department(db, seed.root, seed.eng, {"owner_id": seed.eng_admin.id})
        assert dept.owner_id == seed.eng_admin.id

    def test_null_name_rejected(self, db, seed):
        with pytest.raises(InvalidInput):
            accounts.update_department(db, seed.root, seed.eng, {"name": None})

    def test_duplicate_name(self, db, seed):
        with pytest.raises(AlreadyExists):
            accounts.update_department(db, seed.root, seed.hr, {"name": "Engineering"})
        assert db.get(Department, seed.hr.id).name == "Human Resources"


class TestUniqueViolation:

    def test_only_unique_errors_count(self):
        unique = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: users.email"))
        not_null = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: users.name"))
        foreign = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        assert accounts._is_unique_violation(unique) is True
        assert accounts._is_unique_violation(not_null) is False
        assert accounts._is_unique_violation(foreign) is False

    def test_non_unique_integrity_error_propagates(self, db, seed, monkeypatch):
        def flush():
            raise IntegrityError("UPDATE", {}, Exception("CHECK constraint failed"))

        monkeypatch.setattr(db, "flush", flush)
        with pytest.raises(IntegrityError):
            accounts._flush_unique(db, "Email is already registered")
