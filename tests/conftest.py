from __future__ import annotations

import sys
from itertools import count
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from panchayat import create_app
from panchayat.core.config import Config
from panchayat.core.extensions import db
from panchayat.core.models import seed_demo_data
from panchayat.warish.collaborators import NOTIFIER_KEY, STORAGE_KEY, StorageGateway, StoredObject

PDF_BYTES = b"%PDF-1.4\n% test document\n%%EOF"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    WARISH_LINEAGE_MAX_DEPTH = None
    WARISH_REJECTION_REMARK_MIN_LENGTH = 10


class MemoryStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self._ids = count(1)

    def upload(self, content: bytes, mime_type: str, folder_hint: str, filename: str) -> StoredObject:
        storage_id = f"{folder_hint}/{next(self._ids)}-{filename}"
        self.objects[storage_id] = content
        return StoredObject(url=f"memory://{storage_id}", storage_id=storage_id)

    def delete(self, storage_id: str) -> None:
        self.deleted.append(storage_id)
        self.objects.pop(storage_id, None)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []
        self.fail = False

    def notify(self, recipient: str, event: str, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("notification gateway down")
        self.events.append((recipient, event, payload))


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(memory_storage, notifier):
    app = create_app(TestConfig)
    app.extensions[STORAGE_KEY] = StorageGateway(memory_storage, timeout_seconds=2)
    app.extensions[NOTIFIER_KEY] = notifier
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_admin(client):
    def _login():
        return client.post(
            "/auth/login",
            json={"email": "admin@panchayat.local", "password": "admin123"},
        )

    return _login


@pytest.fixture
def login_staff(client):
    def _login():
        return client.post(
            "/auth/login",
            json={"email": "staff@panchayat.local", "password": "staff123"},
        )

    return _login


@pytest.fixture
def application_payload():
    def _payload(**overrides):
        payload = {
            "applicant_name": "Sourav Pal",
            "applicant_mobile": "9000000002",
            "relation_with_deceased": "Son",
            "deceased_name": "Bimal Pal",
            "date_of_death": "2026-03-04",
            "reporting_date": "2026-03-20",
            "father_name": "Nitai Pal",
            "village_name": "Raipur",
            "post_office": "Raipur",
            "family_members": [
                {"name": "Kalpana Pal", "relation": "Wife"},
                {
                    "name": "Sourav Pal",
                    "relation": "Son",
                    "children": [{"name": "Riya Pal", "relation": "Grand Daughter", "gender": "female"}],
                },
            ],
        }
        payload.update(overrides)
        return payload

    return _payload


@pytest.fixture
def under_review(app, application_payload):
    """Id of a fresh application moved to UNDER_REVIEW with one uploaded proof."""
    from panchayat.warish.services import assign_staff, begin_review, submit_application, upload_document

    with app.app_context():
        application = submit_application(application_payload())
        assign_staff(application.id, "staff-1", "admin-1")
        upload_document(application.id, "death_certificate", PDF_BYTES, "application/pdf", "death.pdf", "staff-1")
        begin_review(application.id, "staff-1")
        return application.id


@pytest.fixture
def approved(app, under_review):
    from panchayat.warish.services import approve_application

    with app.app_context():
        approve_application(under_review, "12/WB/2026", "2026-04-10", "staff-1")
        return under_review
