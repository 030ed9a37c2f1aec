from __future__ import annotations

import logging

import pyarrow as pa
import pyarrow.parquet as pq
import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from propvault.codec.envelope import Envelope
from propvault.codec.snapshot import encode_snapshot
from propvault.core.audit import to_row
from propvault.core.property import Property
from propvault.errors import (
    AuditEntryNotFoundError,
    EnvelopeError,
    FormatDetectionError,
    NotRestorableError,
    PayloadDecodeError,
    PropertyNotFoundError,
)
from propvault.persistence.models import AuditLogRow
from propvault.runtime import PropertyVault


def _values(vault: PropertyVault) -> dict:
    return {p.id: p.value for p in vault.properties()}


@pytest.fixture
def loaded(vault, conf_folder) -> PropertyVault:
    vault.load_folder(conf_folder)
    return vault


def test_open_creates_tables(tmp_path):
    vault = PropertyVault.open(f"sqlite:///{tmp_path / 'x.db'}", user_id="ops")

    assert vault.properties() == []
    assert vault.session.user_id == "ops"
    assert vault.session.session_id.startswith("session_")


def test_initial_load_is_not_audited(loaded):
    assert len(loaded.properties()) == 6
    assert loaded.environments() == ["production", "staging"]
    assert loaded.components() == ["app", "env"]
    assert loaded.audit_log() == []


def test_load_of_empty_folder_leaves_store_unchanged(loaded, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()

    assert loaded.load_folder(empty) == []
    assert len(loaded.properties()) == 6


def test_single_update_then_restore(loaded):
    prop = loaded.store.get_property("production_db.url")

    entry = loaded.save_property(prop.touched(value="jdbc:prod2"))

    assert entry.action == "UPDATE"
    assert (entry.old_value, entry.new_value) == ("jdbc:prod", "jdbc:prod2")

    outcome = loaded.restore(entry.id)

    restored = loaded.store.get_property("production_db.url")
    assert restored.value == "jdbc:prod"
    assert restored.description == "Database URL"
    assert restored.line_order == prop.line_order
    assert [e.action for e in outcome.entries] == ["RESTORE"]
    assert outcome.entries[0].old_value == "jdbc:prod2"
    assert outcome.entries[0].new_value == "jdbc:prod"
    assert outcome.entries[0].change_details == f"Restored from audit log: {entry.id}"


def test_restore_of_create_removes_property(loaded):
    entry = loaded.save_property(Property.new("production", "new.key", "v"))
    assert entry.action == "CREATE"

    outcome = loaded.restore(entry.id)

    assert loaded.store.get_property("production_new.key") is None
    assert [e.action for e in outcome.entries] == ["DELETE"]
    assert outcome.entries[0].change_details == (
        f"Restored (deleted) property created in audit log: {entry.id}"
    )


def test_delete_then_restore_recreates(loaded):
    entry = loaded.delete_property("staging_db.pool", comment="cleanup")

    assert entry.action == "DELETE"
    assert entry.change_details == "cleanup"
    assert "staging_db.pool" not in _values(loaded)

    loaded.restore(entry.id)

    assert _values(loaded)["staging_db.pool"] == "10"


def test_delete_of_unknown_property_raises(loaded):
    with pytest.raises(PropertyNotFoundError):
        loaded.delete_property("production_nope")


def test_batch_save_then_restore_reverts_everything(loaded):
    before = _values(loaded)
    current = {p.id: p for p in loaded.properties()}
    changes = [
        current["production_db.url"].touched(value="x"),
        current["staging_db.url"].touched(value="y"),
        current["production_feature.x"].touched(value="off"),
    ]

    entries = loaded.batch_save(changes, [current["staging_db.pool"]])

    assert [e.action for e in entries] == ["BATCH"]
    assert entries[0].operation_count == 4

    outcome = loaded.restore(entries[0].id)

    assert len(outcome.plan.upserts) == 4
    assert outcome.plan.deletes == []
    assert _values(loaded) == before
    summary = outcome.entries[0]
    assert summary.action == "RESTORE"
    assert summary.old_value == "4 operations"
    assert summary.property_key == "batch_restore_4_properties"
    assert summary.change_details == (
        f"Restored batch operation from audit log: {entries[0].id} "
        "(4 restored, 0 deleted)"
    )


def test_restore_entries_cannot_be_restored(loaded):
    prop = loaded.store.get_property("production_db.url")
    entry = loaded.save_property(prop.touched(value="changed"))
    outcome = loaded.restore(entry.id)
    assert outcome.entries[0].action == "RESTORE"
    snapshot = _values(loaded)

    with pytest.raises(NotRestorableError):
        loaded.restore(outcome.entries[0].id)
    assert _values(loaded) == snapshot


def test_restore_of_unknown_entry_raises(loaded):
    with pytest.raises(AuditEntryNotFoundError):
        loaded.restore("audit_missing")


def test_malformed_batch_payload_restore_changes_nothing(loaded):
    current = {p.id: p for p in loaded.properties()}
    entries = loaded.batch_save(
        [
            current["production_db.url"].touched(value="x"),
            current["staging_db.url"].touched(value="y"),
        ]
    )
    with loaded.store.engine.begin() as conn:
        conn.execute(
            update(AuditLogRow)
            .where(AuditLogRow.id == entries[0].id)
            .values(new_value="{broken")
        )
    values = _values(loaded)
    trail = len(loaded.audit_log())

    with pytest.raises(PayloadDecodeError):
        loaded.restore(entries[0].id)

    assert _values(loaded) == values
    assert len(loaded.audit_log()) == trail


def test_audit_log_is_newest_first_and_history_is_per_property(loaded):
    prop = loaded.store.get_property("production_db.url")
    first = loaded.save_property(prop.touched(value="1"))
    second = loaded.save_property(prop.touched(value="2"))
    loaded.save_property(Property.new("staging", "other", "v"))

    assert loaded.audit_log(limit=2)[1].id == second.id
    assert [e.id for e in loaded.history("db.url", "production")] == [
        second.id,
        first.id,
    ]
    assert loaded.audit_stats().by_action == {"UPDATE": 2, "CREATE": 1}


def test_save_matrix_diffs_and_saves(loaded):
    rows = loaded.matrix("env")
    edited = [
        row.edit(values={"staging": "jdbc:stage2"}) if row.key == "db.url" else row
        for row in rows
    ]

    entries = loaded.save_matrix(rows, edited, component="env")

    assert [e.action for e in entries] == ["UPDATE"]
    assert _values(loaded)["staging_db.url"] == "jdbc:stage2"


def test_add_environment_copies_from_source(loaded):
    entries = loaded.add_environment("qa", "env", source="staging")

    assert [e.action for e in entries] == ["BATCH"]
    values = _values(loaded)
    assert values["qa_db.url"] == "jdbc:stage"
    assert values["qa_db.pool"] == "10"
    assert "qa_feature.x" not in values


def test_single_create_in_new_environment_is_noted(vault):
    vault.load([Property.new("production", "k", "v", component="solo")])

    entries = vault.add_environment("qa", "solo")

    assert entries[0].change_details == "Created property in new environment: qa"
    assert _values(vault)["qa_k"] == ""


def test_remove_environment(loaded):
    loaded.remove_environment("staging", "env")

    assert loaded.environments() == ["production", "staging"]
    assert [p.key for p in loaded.properties(environment="staging")] == ["feature.x"]
    with pytest.raises(PropertyNotFoundError):
        loaded.remove_environment("staging", "env")


def test_fill_missing_adds_empty_values(loaded):
    loaded.delete_property("staging_db.pool")

    entries = loaded.fill_missing("env")

    assert [e.action for e in entries] == ["CREATE"]
    assert _values(loaded)["staging_db.pool"] == ""


def test_import_properties_file_adds_to_every_environment(loaded):
    loaded.import_properties_file("mail.properties", "# SMTP\nmail.host=smtp\n")

    mail = [p for p in loaded.properties() if p.component == "mail"]
    assert sorted(p.id for p in mail) == [
        "production_mail.host",
        "staging_mail.host",
    ]
    assert {p.description for p in mail} == {"SMTP"}


def test_snapshot_export_import_reproduces_dataset(loaded, tmp_path):
    prop = loaded.store.get_property("production_db.url")
    loaded.save_property(prop.touched(value="jdbc:prod2"))
    loaded.delete_property("staging_db.pool")
    blob = loaded.export_snapshot()
    properties = loaded.properties()
    trail = [to_row(e) for e in loaded.store.audit_trail()]

    other = PropertyVault.open(f"sqlite:///{tmp_path / 'other.db'}")
    imported = other.import_snapshot(blob)

    assert imported == properties
    assert [to_row(e) for e in other.store.audit_trail()] == trail


def test_bad_snapshot_leaves_store_untouched(loaded):
    before = _values(loaded)

    with pytest.raises(FormatDetectionError):
        loaded.import_snapshot(b"garbage")

    assert _values(loaded) == before


def test_render_files_groups_by_environment_and_component(loaded):
    files = loaded.render_files()

    assert sorted(files) == ["production", "staging"]
    assert sorted(files["production"]) == [
        "app-properties.properties",
        "env.properties",
    ]
    assert files["production"]["env.properties"] == (
        "# Database URL\ndb.url=jdbc:prod\n\ndb.pool=10\n"
    )


class XorCipher:
    """Reversible stand-in for a real password-based cipher."""

    def encrypt(self, data: bytes, password: str) -> Envelope:
        key = password.encode()
        body = bytes(b ^ key[i % len(key)] for i, b in enumerate(data))
        return Envelope(b"s" * 16, b"i" * 12, body)

    def decrypt(self, envelope: Envelope, password: str) -> bytes:
        assert envelope.salt == b"s" * 16 and envelope.iv == b"i" * 12
        key = password.encode()
        return bytes(b ^ key[i % len(key)] for i, b in enumerate(envelope.ciphertext))


def test_encrypted_export_round_trip(loaded, tmp_path):
    blob = loaded.export_encrypted("secret", XorCipher())

    other = PropertyVault.open(f"sqlite:///{tmp_path / 'enc.db'}")
    other.import_encrypted(blob, "secret", XorCipher())

    assert _values(other) == _values(loaded)


def test_short_encrypted_blob_is_rejected(loaded):
    with pytest.raises(EnvelopeError):
        loaded.import_encrypted(b"x" * 28, "secret", XorCipher())


def test_add_environment_keeps_existing_values(loaded):
    before = _values(loaded)

    entries = loaded.add_environment("production", "env", source="staging")

    assert entries == []
    assert _values(loaded) == before
    assert loaded.audit_log() == []


def test_add_environment_leaves_other_components_ids_alone(vault, caplog):
    vault.load(
        [
            Property.new("production", "k", "app-value", component="app"),
            Property.new("staging", "k", "env-value", component="env"),
            Property.new("staging", "other", "x", component="env"),
        ]
    )

    with caplog.at_level(logging.WARNING, logger="propvault.runtime"):
        entries = vault.add_environment("production", "env")

    taken = vault.store.get_property("production_k")
    assert (taken.component, taken.value) == ("app", "app-value")
    assert [e.action for e in entries] == ["CREATE"]
    assert vault.store.get_property("production_other").component == "env"
    assert "production_k already exists" in caplog.text


def test_legacy_import_keeps_audit_trail(loaded):
    prop = loaded.store.get_property("production_db.url")
    loaded.save_property(prop.touched(value="jdbc:prod2"))
    trail = [e.id for e in loaded.store.audit_trail()]
    sink = pa.BufferOutputStream()
    pq.write_table(
        pa.table(
            {
                "id": ["qa_only"],
                "environment": ["qa"],
                "key": ["only"],
                "value": ["1"],
            }
        ),
        sink,
    )

    imported = loaded.import_snapshot(sink.getvalue().to_pybytes())

    assert [p.id for p in imported] == ["qa_only"]
    assert [e.id for e in loaded.store.audit_trail()] == trail


def test_rotate_session_stamps_new_entries(loaded):
    first = loaded.session
    before = loaded.save_property(Property.new("production", "a", "1"))

    rotated = loaded.rotate_session()
    after = loaded.save_property(Property.new("production", "b", "2"))

    assert rotated.session_id != first.session_id
    assert rotated.user_id == first.user_id
    assert loaded.session == rotated
    assert before.session_id == first.session_id
    assert after.session_id == rotated.session_id


def test_duplicate_audit_ids_in_snapshot_change_nothing(loaded):
    prop = loaded.store.get_property("production_db.url")
    entry = loaded.save_property(prop.touched(value="jdbc:prod2"))
    blob = encode_snapshot(loaded.properties(), [entry, entry])
    before = _values(loaded)

    with pytest.raises(IntegrityError):
        loaded.import_snapshot(blob)

    assert _values(loaded) == before
    assert len(loaded.store.audit_trail()) == 1
