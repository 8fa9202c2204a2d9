"""Unit tests for the MedicalRecordService facade."""

import base64
import os

import pytest

from medvault.core.exceptions import (
    DecryptionError,
    EncodingError,
    FileTooLargeError,
    KeyUnwrapError,
    RecordNotFoundError,
    UserExistsError,
    UserNotFoundError,
)
from medvault.core.models import AppointmentMetadata, DocumentMetadata, ExamMetadata
from medvault.core.records import MedicalRecordService
from medvault.core.storage import EncryptedFileStorage
from medvault.database.connection import DatabaseConnection
from medvault.security.codecs import encrypt_field
from medvault.security.envelope import KeyEnvelope
from medvault.security.metadata import decrypt_metadata
from medvault.security.provider import MasterKeyProvider


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def db(tmp_path):
    conn = DatabaseConnection(tmp_path / "medvault.db")
    conn.initialize()
    yield conn
    conn.close()


@pytest.fixture
def envelope():
    return KeyEnvelope(MasterKeyProvider.from_key(os.urandom(32)))


@pytest.fixture
def service(db, envelope, tmp_path):
    storage = EncryptedFileStorage(tmp_path / "uploads", max_bytes=64 * 1024)
    return MedicalRecordService(db, envelope, storage)


@pytest.fixture
def alice(service):
    return service.register_user("Alice@Example.com", "alice-pass", name="Alice")


@pytest.fixture
def bob(service):
    return service.register_user("bob@example.com", "bob-pass")


def _flip_b64(value: str) -> str:
    raw = bytearray(base64.b64decode(value))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


RESULTS = {"hemoglobina": {"value": 13.5, "unit": "g/dL"}, "glucosa": {"value": 95, "unit": "mg/dL"}}


# ==============================================================================
# Tests: Users
# ==============================================================================

def test_register_user_stores_envelope_and_hash(service, alice, envelope):
    assert alice["email"] == "alice@example.com"
    assert alice["password_hash"] != "alice-pass"
    assert len(envelope.unwrap_user_key(alice["encryption_key"])) == 32


def test_each_user_gets_own_envelope(alice, bob):
    assert alice["encryption_key"] != bob["encryption_key"]


def test_register_duplicate_email(service, alice):
    with pytest.raises(UserExistsError):
        service.register_user("alice@example.com", "other")


def test_authenticate(service, alice):
    assert service.authenticate("alice@example.com", "alice-pass")["user_id"] == alice["user_id"]
    assert service.authenticate("alice@example.com", "wrong") is None
    assert service.authenticate("nobody@example.com", "alice-pass") is None


def test_unknown_user(service):
    with pytest.raises(UserNotFoundError):
        service.create_exam("ghost", RESULTS, ExamMetadata(exam_type="Hemograma"))


def test_broken_envelope_aborts(service, alice, db):
    exam = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    db.execute(
        "UPDATE users SET encryption_key = ? WHERE user_id = ?",
        (_flip_b64(alice["encryption_key"]), alice["user_id"]),
    )
    with pytest.raises(KeyUnwrapError):
        service.get_exam(alice["user_id"], exam.exam_id)


# ==============================================================================
# Tests: Exams
# ==============================================================================

def test_exam_roundtrip(service, alice):
    uid = alice["user_id"]
    meta = ExamMetadata(exam_type="Hemograma", institution="Clínica Central", laboratory="LabX")
    created = service.create_exam(uid, RESULTS, meta, notes="Ayuno 8 horas", exam_date="2024-03-01")

    exam = service.get_exam(uid, created.exam_id)
    assert exam.results == RESULTS
    assert exam.notes == "Ayuno 8 horas"
    assert exam.metadata == meta
    assert exam.exam_date == "2024-03-01"


def test_exam_row_holds_no_plaintext(service, alice):
    created = service.create_exam(
        alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"), notes="Ayuno 8 horas"
    )
    row = service.exams.get(created.exam_id)
    assert row["exam_type"] is None
    flat = " ".join(str(v) for v in row.values())
    assert "hemoglobina" not in flat
    assert "Ayuno" not in flat
    assert "Hemograma" not in flat


def test_exam_without_notes_or_metadata(service, alice):
    created = service.create_exam(alice["user_id"], {}, ExamMetadata(exam_type=""))
    row = service.exams.get(created.exam_id)
    assert row["encrypted_notes"] is None and row["notes_iv"] is None
    assert row["encrypted_metadata"] is None and row["metadata_iv"] is None
    assert created.results == {}
    assert created.notes is None


def test_other_user_cannot_read_exam(service, alice, bob):
    created = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    with pytest.raises(RecordNotFoundError):
        service.get_exam(bob["user_id"], created.exam_id)


def test_cross_user_ciphertext_never_decrypts(service, alice, bob, db):
    """Even if a row is reassigned, the other user's key can't open it."""
    created = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    db.execute("UPDATE medical_exams SET user_id = ? WHERE exam_id = ?", (bob["user_id"], created.exam_id))
    with pytest.raises(DecryptionError):
        service.get_exam(bob["user_id"], created.exam_id)


def test_tampered_results_fail_loudly(service, alice, db):
    created = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    row = service.exams.get(created.exam_id)
    db.execute(
        "UPDATE medical_exams SET encrypted_data = ? WHERE exam_id = ?",
        (_flip_b64(row["encrypted_data"]), created.exam_id),
    )
    with pytest.raises(DecryptionError):
        service.get_exam(alice["user_id"], created.exam_id)


def test_deeply_nested_results_are_encoding_error(service, alice, envelope, db):
    created = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    key = envelope.unwrap_user_key(alice["encryption_key"])
    nested = encrypt_field("[" * 100000 + "]" * 100000, key)
    db.execute(
        "UPDATE medical_exams SET encrypted_data = ?, data_iv = ? WHERE exam_id = ?",
        (nested.ciphertext, nested.iv, created.exam_id),
    )
    with pytest.raises(EncodingError):
        service.get_exam(alice["user_id"], created.exam_id)


def test_tampered_notes_become_none(service, alice, db):
    created = service.create_exam(
        alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"), notes="nota privada"
    )
    row = service.exams.get(created.exam_id)
    db.execute(
        "UPDATE medical_exams SET encrypted_notes = ? WHERE exam_id = ?",
        (_flip_b64(row["encrypted_notes"]), created.exam_id),
    )
    exam = service.get_exam(alice["user_id"], created.exam_id)
    assert exam.notes is None
    assert exam.results == RESULTS


def test_update_notes_replaces_ciphertext(service, alice):
    uid = alice["user_id"]
    created = service.create_exam(uid, RESULTS, ExamMetadata(exam_type="Hemograma"), notes="v1")
    before = service.exams.get(created.exam_id)

    updated = service.update_exam_notes(uid, created.exam_id, "v2")
    after = service.exams.get(created.exam_id)
    assert updated.notes == "v2"
    assert after["notes_iv"] != before["notes_iv"]
    assert after["encrypted_notes"] != before["encrypted_notes"]
    # results untouched
    assert after["encrypted_data"] == before["encrypted_data"]


def test_update_notes_to_none_clears(service, alice):
    uid = alice["user_id"]
    created = service.create_exam(uid, RESULTS, ExamMetadata(exam_type="Hemograma"), notes="v1")
    assert service.update_exam_notes(uid, created.exam_id, None).notes is None
    row = service.exams.get(created.exam_id)
    assert row["encrypted_notes"] is None and row["notes_iv"] is None


def test_update_exam_results_and_metadata(service, alice):
    uid = alice["user_id"]
    created = service.create_exam(uid, RESULTS, ExamMetadata(exam_type="Hemograma"))
    updated = service.update_exam(
        uid,
        created.exam_id,
        results={"ldl": 100},
        metadata=ExamMetadata(exam_type="Perfil lipídico"),
        status="reviewed",
    )
    assert updated.results == {"ldl": 100}
    assert updated.metadata.exam_type == "Perfil lipídico"
    assert updated.status == "reviewed"


def test_legacy_exam_metadata_is_read(service, alice):
    uid = alice["user_id"]
    service.exams.insert("legacy1", uid, {"exam_type": "Orina", "institution": "Hospital Norte"})
    exam = service.get_exam(uid, "legacy1")
    assert exam.metadata == ExamMetadata(exam_type="Orina", institution="Hospital Norte", laboratory=None)
    assert exam.results is None


def test_list_exams(service, alice, bob):
    service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="A"))
    service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="B"))
    service.create_exam(bob["user_id"], RESULTS, ExamMetadata(exam_type="C"))
    types = sorted(e.metadata.exam_type for e in service.list_exams(alice["user_id"]))
    assert types == ["A", "B"]


def test_delete_exam_removes_documents_and_files(service, alice):
    uid = alice["user_id"]
    exam = service.create_exam(uid, RESULTS, ExamMetadata(exam_type="Hemograma"))
    doc = service.upload_document(uid, b"%PDF-1.4", "hemo.pdf", exam_id=exam.exam_id)
    assert service.storage.exists(doc.file_path)

    service.delete_exam(uid, exam.exam_id)
    assert service.exams.get(exam.exam_id) is None
    assert service.documents.get(doc.document_id) is None
    assert not service.storage.exists(doc.file_path)


# ==============================================================================
# Tests: Appointments
# ==============================================================================

def test_appointment_roundtrip(service, alice):
    uid = alice["user_id"]
    meta = AppointmentMetadata(doctor_name="Dra. Pérez", location="Consultorio 4")
    created = service.create_appointment(
        uid, meta, appointment_date="2024-05-10T09:30", notes="Llevar exámenes", specialty="Cardiología"
    )
    appointment = service.get_appointment(uid, created.appointment_id)
    assert appointment.metadata == meta
    assert appointment.notes == "Llevar exámenes"
    assert appointment.specialty == "Cardiología"
    assert appointment.status == "scheduled"


def test_update_appointment_replaces_metadata(service, alice):
    uid = alice["user_id"]
    created = service.create_appointment(uid, AppointmentMetadata(doctor_name="Dr. A", location="Sala 1"))
    updated = service.update_appointment(
        uid, created.appointment_id, metadata=AppointmentMetadata(doctor_name="Dr. B"), status="completed"
    )
    # replaced, not merged: location is gone
    assert updated.metadata == AppointmentMetadata(doctor_name="Dr. B")
    assert updated.status == "completed"


def test_legacy_appointment_then_encrypted_wins(service, alice):
    uid = alice["user_id"]
    service.appointments.insert("ap1", uid, {"doctor_name": "Dr. Legacy", "location": "Viejo"})
    assert service.get_appointment(uid, "ap1").metadata.doctor_name == "Dr. Legacy"

    service.update_appointment(uid, "ap1", metadata=AppointmentMetadata(doctor_name="Dr. Nuevo"))
    appointment = service.get_appointment(uid, "ap1")
    assert appointment.metadata.doctor_name == "Dr. Nuevo"
    # legacy column kept as-is
    assert service.appointments.get("ap1")["doctor_name"] == "Dr. Legacy"


def test_delete_appointment(service, alice, bob):
    created = service.create_appointment(alice["user_id"], AppointmentMetadata(doctor_name="Dr. A"))
    with pytest.raises(RecordNotFoundError):
        service.delete_appointment(bob["user_id"], created.appointment_id)
    service.delete_appointment(alice["user_id"], created.appointment_id)
    assert service.list_appointments(alice["user_id"]) == []


# ==============================================================================
# Tests: Documents
# ==============================================================================

def test_upload_and_read_document(service, alice, envelope):
    uid = alice["user_id"]
    data = os.urandom(4096)
    doc = service.upload_document(uid, data, "scan.pdf", mime_type="application/pdf", document_type="lab_report")

    assert doc.file_path.startswith(f"{uid}_")
    assert doc.metadata == DocumentMetadata(file_name="scan.pdf", document_type="lab_report")
    row = service.documents.get(doc.document_id)
    assert row["file_name"] is None
    user_key = envelope.unwrap_user_key(alice["encryption_key"])
    assert decrypt_metadata(row["encrypted_metadata"], row["metadata_iv"], user_key)["fileName"] == "scan.pdf"

    record, out = service.read_document(uid, doc.document_id)
    assert out == data
    assert record.file_size == len(data)


def test_other_user_cannot_read_document(service, alice, bob):
    doc = service.upload_document(alice["user_id"], b"private", "a.pdf")
    with pytest.raises(RecordNotFoundError):
        service.read_document(bob["user_id"], doc.document_id)


def test_upload_to_foreign_exam_is_rejected(service, alice, bob):
    exam = service.create_exam(alice["user_id"], RESULTS, ExamMetadata(exam_type="Hemograma"))
    with pytest.raises(RecordNotFoundError):
        service.upload_document(bob["user_id"], b"x", "a.pdf", exam_id=exam.exam_id)


def test_upload_too_large(service, alice):
    with pytest.raises(FileTooLargeError):
        service.upload_document(alice["user_id"], b"x" * (64 * 1024 + 1), "big.pdf")
    assert service.list_documents(alice["user_id"]) == []


def test_corrupted_document_fails(service, alice):
    doc = service.upload_document(alice["user_id"], b"document body" * 10, "a.pdf")
    path = service.storage.root / doc.file_path
    blob = bytearray(path.read_bytes())
    blob[0] ^= 0xFF
    path.write_bytes(bytes(blob))
    with pytest.raises(DecryptionError):
        service.read_document(alice["user_id"], doc.document_id)


def test_delete_document(service, alice):
    doc = service.upload_document(alice["user_id"], b"bytes", "a.pdf")
    service.delete_document(alice["user_id"], doc.document_id)
    assert not service.storage.exists(doc.file_path)
    with pytest.raises(RecordNotFoundError):
        service.get_document(alice["user_id"], doc.document_id)


def test_delete_document_with_missing_file(service, alice):
    doc = service.upload_document(alice["user_id"], b"bytes", "a.pdf")
    service.storage.delete_file(doc.file_path)
    service.delete_document(alice["user_id"], doc.document_id)
    assert service.documents.get(doc.document_id) is None
