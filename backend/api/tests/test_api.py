"""HTTP-level tests through FastAPI's TestClient."""

import io
import zipfile

from fastapi.testclient import TestClient
from sqlalchemy import inspect

from fildas import main
from fildas.db import create_db_engine
from fildas.models import ROLE_STAFF, Document

PASSWORD = "secret123"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class TestAuth:

    def test_login_and_me(self, client, seed):
        r = client.post("/login", json={"email": "alice@example.com", "password": PASSWORD})
        assert r.status_code == 200
        body = r.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["role_name"] == ROLE_STAFF

        me = client.get("/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == seed.alice.id

    def test_bad_password(self, client, seed):
        r = client.post("/login", json={"email": "alice@example.com", "password": "wrong"})
        assert r.status_code == 401

    def test_inactive_account(self, client, seed, auth):
        r = client.post("/login", json={"email": "idle@example.com", "password": PASSWORD})
        assert r.status_code == 403
        assert client.get("/me", headers=auth(seed.idle)).status_code == 403

    def test_missing_or_bad_token(self, client, seed):
        assert client.get("/me").status_code in (401, 403)
        assert client.get("/me", headers={"Authorization": "Bearer nonsense"}).status_code == 401

    def test_admin_only_routes(self, client, seed, auth):
        assert client.get("/activity-logs", headers=auth(seed.alice)).status_code == 403
        assert client.get("/activity-logs", headers=auth(seed.eng_admin)).status_code == 200


class TestUsersAndDepartments:

    def test_create_user_and_duplicate_email(self, client, seed, auth):
        payload = {
            "name": "Dana",
            "email": "dana@example.com",
            "password": "pw123456",
            "department_id": seed.eng.id,
        }
        r = client.post("/users", json=payload, headers=auth(seed.eng_admin))
        assert r.status_code == 201
        assert r.json()["email"] == "dana@example.com"

        r = client.post("/users", json=payload, headers=auth(seed.eng_admin))
        assert r.status_code == 409
        assert r.json()["error"] == "already_exists"

    def test_staff_cannot_create_users(self, client, seed, auth):
        r = client.post(
            "/users",
            json={"name": "X", "email": "x@example.com", "password": "pw"},
            headers=auth(seed.alice),
        )
        assert r.status_code == 403

    def test_admin_cannot_delete_self(self, client, seed, auth):
        r = client.delete(f"/users/{seed.eng_admin.id}", headers=auth(seed.eng_admin))
        assert r.status_code == 400

    def test_department_contents(self, client, seed, auth, make_folder, make_doc):
        folder = make_folder(seed.alice, "Specs")
        make_doc(seed.alice, filename="root.pdf")

        r = client.get(f"/departments/{seed.eng.id}/contents", headers=auth(seed.bob))
        assert r.status_code == 200
        body = r.json()
        assert [f["id"] for f in body["folders"]] == [folder.id]
        assert [d["original_filename"] for d in body["documents"]] == ["root.pdf"]

        r = client.get(f"/departments/{seed.eng.id}/contents", headers=auth(seed.carol))
        assert r.json() == {"folders": [], "documents": []}


class TestDocuments:

    def test_upload_list_and_download(self, client, seed, auth):
        r = client.post(
            "/documents",
            files={"file": ("notes.txt", b"hello world", "text/plain")},
            data={"title": "Notes", "description": "meeting"},
            headers=auth(seed.alice),
        )
        assert r.status_code == 201
        doc = r.json()
        assert doc["title"] == "Notes"
        assert doc["file_size_formatted"] == "11 B"
        assert doc["department_id"] == seed.eng.id

        r = client.get("/documents", headers=auth(seed.bob))
        assert r.json()["total"] == 1
        assert r.json()["per_page"] == 15

        r = client.get(f"/documents/{doc['id']}/download", headers=auth(seed.alice))
        assert r.status_code == 200
        assert r.content == b"hello world"

        r = client.get(f"/documents/{doc['id']}/download", headers=auth(seed.carol))
        assert r.status_code == 403
        assert r.json()["error"] == "forbidden"

    def test_upload_with_relative_path(self, client, seed, auth):
        r = client.post(
            "/documents",
            files={"file": ("a.pdf", b"%PDF", "application/pdf")},
            data={"relative_path": "Projects/2024"},
            headers=auth(seed.alice),
        )
        assert r.status_code == 201
        assert r.json()["folder_id"] is not None

    def test_missing_document(self, client, seed, auth):
        r = client.get("/documents/999", headers=auth(seed.alice))
        assert r.status_code == 404
        assert r.json()["error"] == "document_not_found"

    def test_bad_sort_order(self, client, seed, auth):
        r = client.get("/documents?sort_order=sideways", headers=auth(seed.alice))
        assert r.status_code == 422

    def test_versions_endpoints(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        r = client.post(
            f"/documents/{doc.id}/versions",
            files={"file": ("report-v2.pdf", b"%PDF-1.4 v2", "application/pdf")},
            headers=auth(seed.alice),
        )
        assert r.status_code == 201
        assert r.json()["version_number"] == 2

        r = client.get(f"/documents/{doc.id}/versions", headers=auth(seed.alice))
        assert [v["version_number"] for v in r.json()] == [2, 1]

        r = client.get(f"/documents/{doc.id}/versions/1/download", headers=auth(seed.alice))
        assert r.content == b"%PDF-1.4 test"

        r = client.post(f"/documents/{doc.id}/versions/1/restore", headers=auth(seed.alice))
        assert r.json()["version_number"] == 3

    def test_trash_and_restore(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        assert client.delete(f"/documents/{doc.id}", headers=auth(seed.alice)).status_code == 200

        r = client.get("/trash/documents", headers=auth(seed.alice))
        assert [d["id"] for d in r.json()] == [doc.id]

        r = client.post(f"/documents/{doc.id}/restore", headers=auth(seed.alice))
        assert r.status_code == 200
        assert r.json()["deleted_at"] is None

    def test_statistics(self, client, seed, auth, make_doc):
        make_doc(seed.alice)
        r = client.get("/documents/statistics/summary", headers=auth(seed.alice))
        assert r.status_code == 200
        assert r.json()["total_documents"] == 1
        assert r.json()["documents_by_type"] == [{"mime_type": "application/pdf", "count": 1}]


class TestStreaming:

    def test_pdf_is_served_inline(self, client, seed, make_doc, converter):
        doc = make_doc(seed.alice)
        r = client.get(f"/documents/{doc.id}/stream")
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert r.headers["content-disposition"].startswith("inline")
        assert converter.calls == []

    def test_office_file_is_converted_once(self, client, db, seed, make_doc, converter):
        doc = make_doc(seed.alice, filename="minutes.docx", content_type=DOCX, contents=b"PK docx")

        r = client.get(f"/documents/{doc.id}/stream")
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 converted"
        assert r.headers["content-disposition"].startswith("inline")
        assert 'filename="minutes.pdf"' in r.headers["content-disposition"]

        client.get(f"/documents/{doc.id}/stream")
        assert len(converter.calls) == 1
        assert db.get(Document, doc.id).preview_path is not None

    def test_failed_conversion_falls_back_to_original(self, client, seed, make_doc, converter):
        converter.fail = True
        doc = make_doc(seed.alice, filename="minutes.docx", content_type=DOCX, contents=b"PK docx")

        r = client.get(f"/documents/{doc.id}/stream")
        assert r.status_code == 200
        assert r.content == b"PK docx"
        assert r.headers["content-disposition"].startswith("attachment")
        assert converter.calls == [doc.file_path]

    def test_preview_metadata(self, client, seed, make_doc):
        doc = make_doc(seed.alice, filename="minutes.docx", content_type=DOCX, contents=b"PK docx")
        r = client.get(f"/documents/{doc.id}/preview")
        assert r.json()["previewable"] is True
        assert r.json()["stream_url"] == f"/documents/{doc.id}/stream"

        zip_doc = make_doc(seed.alice, filename="a.zip", content_type="application/zip", contents=b"PK")
        assert client.get(f"/documents/{zip_doc.id}/preview").json()["previewable"] is False


class TestFoldersAndErrors:

    def test_create_and_get_folder(self, client, seed, auth):
        r = client.post("/folders", json={"name": "Plans"}, headers=auth(seed.alice))
        assert r.status_code == 201
        folder = r.json()
        assert folder["department_id"] == seed.eng.id

        r = client.get(f"/folders/{folder['id']}", headers=auth(seed.carol))
        assert r.status_code == 403

    def test_cycle_maps_to_conflict(self, client, seed, auth, make_folder):
        a = make_folder(seed.alice, "A")
        b = make_folder(seed.alice, "B", parent=a)

        r = client.post(f"/folders/{a.id}/move", json={"new_parent_id": b.id}, headers=auth(seed.alice))
        assert r.status_code == 409
        assert r.json()["error"] == "cycle_detected"

    def test_cross_department_maps_to_conflict(self, client, seed, auth, make_folder):
        a = make_folder(seed.eng_admin, "A")
        r = client.post(
            f"/folders/{a.id}/move",
            json={"department_id": seed.hr.id},
            headers=auth(seed.eng_admin),
        )
        assert r.status_code == 409
        assert r.json()["error"] == "cross_department"

    def test_invalid_parent_maps_to_bad_request(self, client, seed, auth):
        r = client.post("/folders", json={"name": "Loose"}, headers=auth(seed.root))
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_parent"


class TestSharesAndNotifications:

    def test_share_by_email_then_inbox(self, client, seed, auth, mailer, make_folder):
        folder = make_folder(seed.alice, "Plans")
        r = client.post(
            "/shares",
            json={"type": "folder", "item_id": folder.id, "email": "carol@example.com", "permission": "editor"},
            headers=auth(seed.alice),
        )
        assert r.status_code == 201
        share = r.json()
        assert share["permission"] == "editor"
        assert mailer.sent[0]["to"] == "carol@example.com"

        r = client.get("/folders/shared", headers=auth(seed.carol))
        assert [(f["id"], f["permission"]) for f in r.json()] == [(folder.id, "editor")]

        r = client.get("/notifications", headers=auth(seed.carol))
        body = r.json()
        assert body["unread_count"] == 1
        note_id = body["notifications"][0]["id"]

        r = client.post(f"/notifications/{note_id}/read", headers=auth(seed.carol))
        assert r.status_code == 200
        assert client.get("/notifications", headers=auth(seed.carol)).json()["unread_count"] == 0
        assert client.post(f"/notifications/{note_id}/read", headers=auth(seed.bob)).status_code == 404

        r = client.delete(f"/shares/{share['id']}", headers=auth(seed.alice))
        assert r.json() == {"message": "Share removed"}

    def test_share_needs_a_target(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        r = client.post("/shares", json={"type": "document", "item_id": doc.id}, headers=auth(seed.alice))
        assert r.status_code == 422

    def test_non_owner_cannot_share(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        r = client.post(
            "/shares",
            json={"type": "document", "item_id": doc.id, "target_user_id": seed.carol.id},
            headers=auth(seed.bob),
        )
        assert r.status_code == 403
        assert r.json()["error"] == "not_owner"

    def test_read_all(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        for user in (seed.carol, seed.bob):
            client.post(
                "/shares",
                json={"type": "document", "item_id": doc.id, "target_user_id": user.id},
                headers=auth(seed.alice),
            )
        r = client.post("/notifications/read-all", headers=auth(seed.carol))
        assert r.json() == {"updated": 1}


class TestReviewEndpoints:

    def test_submit_approve_flow(self, client, seed, auth, mailer, make_doc):
        doc = make_doc(seed.alice)

        r = client.post(f"/documents/{doc.id}/submit", headers=auth(seed.alice))
        assert r.json()["status"] == "submitted"
        assert "quinn@example.com" in [m["to"] for m in mailer.sent]

        r = client.get("/qa/approvals", headers=auth(seed.quinn))
        assert [d["id"] for d in r.json()] == [doc.id]
        assert client.get("/qa/approvals", headers=auth(seed.bob)).status_code == 403

        r = client.post(f"/documents/{doc.id}/approve", headers=auth(seed.quinn))
        assert r.json()["status"] == "approved"
        assert r.json()["approved_by"] == seed.quinn.id

        r = client.post(f"/documents/{doc.id}/reject", json={"reason": "late"}, headers=auth(seed.quinn))
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_transition"


class TestUserDirectory:

    def test_staff_cannot_list_users(self, client, seed, auth):
        assert client.get("/users", headers=auth(seed.carol)).status_code == 403

    def test_admin_sees_own_department(self, client, seed, auth):
        r = client.get("/users", headers=auth(seed.eng_admin))
        assert r.status_code == 200
        assert {u["department_id"] for u in r.json()} == {seed.eng.id}
        assert [u["name"] for u in r.json()] == ["Alice", "Bob", "Erin", "Idle"]

        r = client.get(f"/users?department_id={seed.hr.id}", headers=auth(seed.eng_admin))
        assert r.json() == []

    def test_super_admin_sees_everyone(self, client, seed, auth):
        r = client.get("/users", headers=auth(seed.root))
        assert len(r.json()) == 7

    def test_null_name_is_rejected(self, client, seed, auth):
        r = client.patch(f"/users/{seed.alice.id}", json={"name": None}, headers=auth(seed.eng_admin))
        assert r.status_code == 422
        assert r.json()["error"] == "invalid_input"

    def test_unknown_department_owner(self, client, seed, auth):
        r = client.patch(f"/departments/{seed.eng.id}", json={"owner_id": 9999}, headers=auth(seed.root))
        assert r.status_code == 404
        assert r.json()["detail"] == "Department owner not found"

    def test_role_change_notifies_user(self, client, seed, auth, mailer):
        r = client.patch(
            f"/users/{seed.alice.id}",
            json={"role_id": seed.roles["Admin"].id},
            headers=auth(seed.root),
        )
        assert r.status_code == 200
        assert mailer.sent[0]["to"] == "alice@example.com"
        assert mailer.sent[0]["subject"] == "Account Role changed in FilDAS"

        r = client.get("/notifications", headers=auth(seed.alice))
        assert r.json()["notifications"][0]["data"]["change_type"] == "role_changed"


class TestFolderCopyAndDownload:

    def test_copy_folder(self, client, seed, auth, make_folder, make_doc):
        src = make_folder(seed.alice, "Specs")
        make_folder(seed.alice, "Drafts", parent=src)
        make_doc(seed.alice, filename="a.pdf", folder=src)

        r = client.post(f"/folders/{src.id}/copy", json={}, headers=auth(seed.bob))
        assert r.status_code == 201
        body = r.json()
        assert body["name"] == "Specs"
        assert body["id"] != src.id
        assert body["owner_id"] == seed.bob.id

        r = client.get(f"/departments/{seed.eng.id}/contents", headers=auth(seed.bob))
        assert sorted(f["name"] for f in r.json()["folders"]) == ["Specs", "Specs"]

    def test_download_folder_as_zip(self, client, seed, auth, make_folder, make_doc):
        src = make_folder(seed.alice, "Q1 Reports")
        sub = make_folder(seed.alice, "Jan", parent=src)
        make_doc(seed.alice, filename="summary.pdf", folder=src)
        make_doc(seed.alice, filename="jan.pdf", folder=sub)

        r = client.get(f"/folders/{src.id}/download", headers=auth(seed.bob))
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/zip"
        assert 'filename="Q1_Reports_' in r.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(r.content)) as archive:
            assert sorted(archive.namelist()) == ["Jan/jan.pdf", "summary.pdf"]

    def test_download_empty_folder(self, client, seed, auth, make_folder):
        empty = make_folder(seed.alice, "Empty")
        r = client.get(f"/folders/{empty.id}/download", headers=auth(seed.alice))
        assert r.status_code == 404
        assert r.json()["detail"] == "No files in this folder"


class TestComments:

    def test_post_and_list(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        r = client.post(f"/documents/{doc.id}/comments", json={"body": "Looks good"}, headers=auth(seed.bob))
        assert r.status_code == 201
        assert r.json()["user"] == {"id": seed.bob.id, "name": "Bob", "email": "bob@example.com"}

        r = client.get(f"/documents/{doc.id}/comments", headers=auth(seed.alice))
        assert [c["body"] for c in r.json()] == ["Looks good"]

    def test_body_limits(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        for body in ("", "x" * 5001):
            r = client.post(f"/documents/{doc.id}/comments", json={"body": body}, headers=auth(seed.alice))
            assert r.status_code == 422

    def test_outsider_cannot_read(self, client, seed, auth, make_doc):
        doc = make_doc(seed.alice)
        assert client.get(f"/documents/{doc.id}/comments", headers=auth(seed.carol)).status_code == 403


def test_lifespan_prepares_storage_and_schema(tmp_path, monkeypatch):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'boot.db'}")
    monkeypatch.setattr(main, "engine", eng)
    monkeypatch.setattr(main.settings, "STORAGE_DIR", str(tmp_path / "disk"))

    with TestClient(main.app) as c:
        assert c.get("/health").json() == {"ok": True}

    assert (tmp_path / "disk").is_dir()
    assert "documents" in inspect(eng).get_table_names()
    eng.dispose()
