import io
import json
import os
import shutil
import tempfile
import time
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient
from PIL import Image

from takeoffs.app import create_app
from takeoffs.auth import issue_token
from takeoffs.config import Settings, get_settings
from takeoffs.db import InMemoryTakeoffStore
from takeoffs.dependencies import get_takeoff_store, get_uploader
from takeoffs.storage import InMemoryMediaStore
from takeoffs.uploader import BufferUploader, DiskUploader


def make_pdf_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (612, 792), "white").save(buf, format="PDF")
    return buf.getvalue()


def make_doc(i: int, **overrides) -> dict:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=i)
    doc = {
        "id": f"takeoff-{i:02d}",
        "title": f"Takeoff {i}",
        "description": None,
        "project_type": "residential",
        "project_size": "small",
        "zip_code": "10001",
        "address": None,
        "price": float(50 * i),
        "features": [],
        "specifications": None,
        "tags": [],
        "is_active": True,
        "expiration_date": None,
        "created_by": None,
        "files": [],
        "pdf_preview": [],
        "created_at": created,
        "updated_at": created,
    }
    doc.update(overrides)
    return doc


BASE_FIELDS = {
    "title": "Warehouse slab",
    "projectType": "Commercial",
    "projectSize": "Large",
    "zipCode": "30301",
    "price": "250",
}


class TakeoffApiTestBase(unittest.TestCase):
    use_buffer = False

    def setUp(self):
        self.upload_dir = tempfile.mkdtemp()
        self.settings = Settings(
            jwt_secret="test-secret",
            serverless=self.use_buffer,
            upload_dir=self.upload_dir,
            use_in_memory_backends=True,
        )
        self.store = InMemoryTakeoffStore()
        self.media = InMemoryMediaStore()
        if self.use_buffer:
            self.uploader = BufferUploader(self.media)
        else:
            self.uploader = DiskUploader(self.media, self.upload_dir)

        app = create_app()
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_takeoff_store] = lambda: self.store
        app.dependency_overrides[get_uploader] = lambda: self.uploader
        self.client = TestClient(app)

    def tearDown(self):
        shutil.rmtree(self.upload_dir, ignore_errors=True)

    def auth_headers(self, role: str = "user", user_id: str = "user-1") -> dict:
        token = issue_token({"id": user_id, "role": role}, self.settings)
        return {"Authorization": f"Bearer {token}"}

    def create(self, fields=None, files=None):
        return self.client.post(
            "/takeoffs",
            data=fields or BASE_FIELDS,
            files=files,
            headers=self.auth_headers(),
        )


class CreateTakeoffTests(TakeoffApiTestBase):
    def test_create_with_pdf_in_disk_mode(self):
        response = self.create(
            files=[("files", ("plans.pdf", make_pdf_bytes(), "application/pdf"))]
        )
        self.assertEqual(response.status_code, 201, response.text)
        payload = response.json()
        self.assertEqual(payload["projectType"], "commercial")
        self.assertEqual(payload["projectSize"], "large")
        self.assertEqual(payload["price"], 250.0)
        self.assertEqual(payload["createdBy"], "user-1")

        self.assertEqual(len(payload["files"]), 1)
        attachment = payload["files"][0]
        self.assertTrue(attachment["isPdf"])
        self.assertEqual(attachment["resourceType"], "raw")
        self.assertEqual(attachment["originalName"], "plans.pdf")
        self.assertTrue(self.media.exists(attachment["publicId"], "raw"))
        self.assertIsNotNone(attachment["firstPagePreviewUrl"])
        self.assertTrue(
            self.media.exists(attachment["firstPagePreviewPublicId"], "image")
        )
        # Staged originals and rendered previews are removed after upload.
        self.assertEqual(os.listdir(self.upload_dir), [])

    def test_broken_pdf_degrades_to_no_preview(self):
        response = self.create(
            files=[("files", ("broken.pdf", b"not really a pdf", "application/pdf"))]
        )
        self.assertEqual(response.status_code, 201, response.text)
        attachment = response.json()["files"][0]
        self.assertTrue(attachment["isPdf"])
        self.assertIsNone(attachment["firstPagePreviewUrl"])

    def test_pdf_preview_group_is_always_pdf(self):
        response = self.create(
            files=[
                ("files", ("quantities.xlsx", b"xlsx-bytes", "application/vnd.ms-excel")),
                ("pdfPreview[]", ("cover.pdf", make_pdf_bytes(), "application/pdf")),
            ]
        )
        self.assertEqual(response.status_code, 201, response.text)
        payload = response.json()
        self.assertFalse(payload["files"][0]["isPdf"])
        self.assertIsNone(payload["files"][0]["firstPagePreviewUrl"])
        self.assertEqual(len(payload["pdfPreview"]), 1)
        self.assertTrue(payload["pdfPreview"][0]["isPdf"])
        self.assertIsNotNone(payload["pdfPreview"][0]["firstPagePreviewUrl"])

    def test_features_round_trip_and_raw_fallback(self):
        features = ["rebar schedule", "concrete volumes"]
        fields = dict(
            BASE_FIELDS,
            features=json.dumps(features),
            specifications=json.dumps({"floors": 2}),
            tags="not json [",
        )
        response = self.create(fields=fields)
        self.assertEqual(response.status_code, 201, response.text)
        takeoff_id = response.json()["id"]

        fetched = self.client.get(f"/takeoffs/{takeoff_id}").json()
        self.assertEqual(fetched["features"], features)
        self.assertEqual(fetched["specifications"], {"floors": 2})
        self.assertEqual(fetched["tags"], "not json [")

    def test_json_body_is_accepted(self):
        response = self.client.post(
            "/takeoffs",
            json={**BASE_FIELDS, "price": 99.5, "tags": ["hvac"]},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["tags"], ["hvac"])

    def test_validation_errors_are_listed(self):
        fields = {"projectType": "commercial", "price": "-5"}
        response = self.create(fields=fields)
        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        joined = " ".join(errors)
        self.assertIn("title", joined)
        self.assertIn("price", joined)
        self.assertEqual(self.store.takeoffs, {})

    def test_create_requires_token(self):
        response = self.client.post("/takeoffs", data=BASE_FIELDS)
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()["success"])
        self.assertEqual(self.store.takeoffs, {})

    def test_expired_token_is_rejected(self):
        token = issue_token({"id": "user-1"}, self.settings, expires_in=-60)
        response = self.client.post(
            "/takeoffs",
            data=BASE_FIELDS,
            headers={"Authorization": f"Bearer {token}"},
        )
        self.assertEqual(response.status_code, 401)


class FailedUploadTests(TakeoffApiTestBase):
    def test_failed_upload_rolls_back_earlier_files(self):
        original = self.media.upload_file
        calls = []

        def flaky_upload(src_path, public_id, resource_type="raw"):
            calls.append(public_id)
            if len(calls) == 2:
                raise RuntimeError("media store unavailable")
            return original(src_path, public_id, resource_type)

        self.media.upload_file = flaky_upload
        response = self.create(
            files=[
                ("files", ("a.docx", b"first", "application/msword")),
                ("files", ("b.docx", b"second", "application/msword")),
            ]
        )
        self.assertEqual(response.status_code, 500)
        self.assertIn("media store unavailable", response.json()["error"])
        self.assertEqual(self.media.stored_objects, {})
        self.assertEqual(self.store.takeoffs, {})
        self.assertEqual(os.listdir(self.upload_dir), [])


class BufferModeTests(TakeoffApiTestBase):
    use_buffer = True

    def test_pdf_is_flagged_without_preview(self):
        response = self.create(
            files=[("files", ("plans.pdf", make_pdf_bytes(), "application/pdf"))]
        )
        self.assertEqual(response.status_code, 201, response.text)
        attachment = response.json()["files"][0]
        self.assertTrue(attachment["isPdf"])
        self.assertIsNone(attachment["firstPagePreviewUrl"])
        self.assertTrue(attachment["publicId"].startswith("takeoffs/"))
        self.assertTrue(attachment["publicId"].endswith("-plans.pdf"))
        self.assertEqual(len(self.media.stored_objects), 1)

    def test_same_named_files_in_one_millisecond_keep_separate_objects(self):
        frozen = time.time()
        with patch("takeoffs.uploader.time.time", return_value=frozen):
            response = self.create(
                files=[
                    ("files", ("plan.pdf", b"AAAA-first", "application/pdf")),
                    ("files", ("plan.pdf", b"BBBB-second", "application/pdf")),
                ]
            )
        self.assertEqual(response.status_code, 201, response.text)
        public_ids = [f["publicId"] for f in response.json()["files"]]
        self.assertEqual(len(set(public_ids)), 2)
        self.assertEqual(
            [self.media.stored_objects[f"raw/{public_id}"] for public_id in public_ids],
            [b"AAAA-first", b"BBBB-second"],
        )


class ReadTakeoffTests(TakeoffApiTestBase):
    def setUp(self):
        super().setUp()
        for i in range(1, 21):
            self.store.insert_takeoff(make_doc(i))

    def test_get_missing_returns_404(self):
        response = self.client.get("/takeoffs/does-not-exist")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Takeoff not found"})

    def test_default_listing_is_newest_first_page_of_nine(self):
        payload = self.client.get("/takeoffs").json()
        self.assertEqual(len(payload), 9)
        self.assertEqual(payload[0]["id"], "takeoff-20")
        self.assertEqual(payload[-1]["id"], "takeoff-12")

    def test_price_range_sorted_descending(self):
        response = self.client.get(
            "/takeoffs",
            params={
                "priceMin": 100,
                "priceMax": 500,
                "sort": "price_desc",
                "page": 1,
                "limit": 9,
            },
        )
        self.assertEqual(response.status_code, 200)
        prices = [item["price"] for item in response.json()]
        self.assertEqual(prices, [500.0, 450.0, 400.0, 350.0, 300.0, 250.0, 200.0, 150.0, 100.0])

    def test_pagination_returns_later_slice_and_empty_past_end(self):
        full = self.client.get(
            "/takeoffs", params={"sort": "price_asc", "limit": 100}
        ).json()
        page_two = self.client.get(
            "/takeoffs", params={"sort": "price_asc", "page": 2, "limit": 5}
        ).json()
        self.assertEqual([t["id"] for t in page_two], [t["id"] for t in full[5:10]])

        past_end = self.client.get("/takeoffs", params={"page": 10, "limit": 5})
        self.assertEqual(past_end.status_code, 200)
        self.assertEqual(past_end.json(), [])

    def test_large_limit_is_clamped_instead_of_rejected(self):
        response = self.client.get("/takeoffs", params={"limit": 200})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 20)

    def test_type_filter_ignores_case(self):
        self.store.insert_takeoff(make_doc(30, project_type="commercial"))
        self.store.insert_takeoff(make_doc(31, project_type="industrial"))
        for value in ("Commercial,INDUSTRIAL", "commercial, industrial"):
            response = self.client.get("/takeoffs", params={"type": value})
            types = {item["projectType"] for item in response.json()}
            self.assertEqual(types, {"commercial", "industrial"})

    def test_search_and_creator_expansion(self):
        self.store.save_user(
            {"id": "user-9", "email": "e@x.test", "first_name": "Ada", "last_name": "Lovelace"}
        )
        self.store.insert_takeoff(
            make_doc(40, title="Hospital Annex", created_by="user-9")
        )
        payload = self.client.get("/takeoffs", params={"search": "annex"}).json()
        self.assertEqual(len(payload), 1)
        self.assertEqual(
            payload[0]["createdBy"],
            {"id": "user-9", "email": "e@x.test", "firstName": "Ada", "lastName": "Lovelace"},
        )


class UpdateTakeoffTests(TakeoffApiTestBase):
    def test_update_appends_files_and_overwrites_supplied_fields(self):
        created = self.create(
            files=[("files", ("first.docx", b"one", "application/msword"))]
        ).json()

        response = self.client.put(
            f"/takeoffs/{created['id']}",
            data={"title": "Warehouse slab rev B", "price": "300"},
            files=[("files", ("second.docx", b"two", "application/msword"))],
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["title"], "Warehouse slab rev B")
        self.assertEqual(payload["price"], 300.0)
        self.assertEqual(payload["zipCode"], "30301")
        self.assertEqual(
            [f["originalName"] for f in payload["files"]], ["first.docx", "second.docx"]
        )

    def test_update_missing_returns_404_without_uploading(self):
        response = self.client.put(
            "/takeoffs/nope",
            data={"title": "x"},
            files=[("files", ("a.docx", b"a", "application/msword"))],
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.media.stored_objects, {})

    def test_update_validation_error(self):
        created = self.create().json()
        response = self.client.put(
            f"/takeoffs/{created['id']}",
            data={"price": "cheap"},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertTrue(any("price" in e for e in response.json()["errors"]))


class DeleteTakeoffTests(TakeoffApiTestBase):
    def setUp(self):
        super().setUp()
        response = self.create(
            files=[
                ("files", ("plans.pdf", make_pdf_bytes(), "application/pdf")),
                ("files", ("sheet.xlsx", b"xlsx", "application/vnd.ms-excel")),
                ("pdfPreview", ("cover.pdf", make_pdf_bytes(), "application/pdf")),
            ]
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.takeoff = response.json()

    def test_unauthenticated_delete_changes_nothing(self):
        objects_before = dict(self.media.stored_objects)
        response = self.client.delete(f"/takeoffs/{self.takeoff['id']}")
        self.assertEqual(response.status_code, 401)
        self.assertIn(self.takeoff["id"], self.store.takeoffs)
        self.assertEqual(self.media.stored_objects, objects_before)

    def test_non_admin_delete_is_forbidden(self):
        response = self.client.delete(
            f"/takeoffs/{self.takeoff['id']}", headers=self.auth_headers("user")
        )
        self.assertEqual(response.status_code, 403)
        self.assertIn(self.takeoff["id"], self.store.takeoffs)

    def test_admin_delete_removes_remote_objects_then_record(self):
        response = self.client.delete(
            f"/takeoffs/{self.takeoff['id']}", headers=self.auth_headers("admin")
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Takeoff deleted"})

        self.assertEqual(
            self.client.get(f"/takeoffs/{self.takeoff['id']}").status_code, 404
        )
        for attachment in self.takeoff["files"] + self.takeoff["pdfPreview"]:
            self.assertFalse(self.media.exists(attachment["publicId"], "raw"))
        self.assertEqual(self.media.stored_objects, {})

    def test_remote_delete_failure_keeps_record(self):
        def failing_destroy(public_id, resource_type="raw"):
            raise RuntimeError("delete refused")

        self.media.destroy = failing_destroy
        response = self.client.delete(
            f"/takeoffs/{self.takeoff['id']}", headers=self.auth_headers("admin")
        )
        self.assertEqual(response.status_code, 500)
        self.assertIn(self.takeoff["id"], self.store.takeoffs)

    def test_delete_missing_returns_404(self):
        response = self.client.delete(
            "/takeoffs/missing", headers=self.auth_headers("admin")
        )
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
