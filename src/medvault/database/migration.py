"""Backfill encrypted metadata from legacy plaintext columns.

For every exam, appointment and document whose ``encrypted_metadata`` is still
NULL, the legacy columns are collected, encrypted under the owner's key and
written as the encrypted pair. Legacy columns are left untouched. Rows with no
legacy values are skipped (and stay NULL), so the migration can be re-run
safely.

A failure on one row (bad envelope, storage error) is logged and counted; it
never stops the batch.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from .connection import DatabaseConnection
from .models import AppointmentModel, DocumentModel, ExamModel
from ..core.exceptions import MedVaultError
from ..core.models import AppointmentMetadata, DocumentMetadata, ExamMetadata
from ..security.envelope import KeyEnvelope
from ..security.metadata import migrate_to_encrypted_metadata


logger = logging.getLogger(__name__)

MIGRATIONS = (
    (ExamModel, ExamMetadata),
    (AppointmentModel, AppointmentMetadata),
    (DocumentModel, DocumentMetadata),
)


@dataclass
class MigrationStats:
    migrated: int = 0
    skipped: int = 0
    failed: int = 0


def migrate_table(db: DatabaseConnection, envelope: KeyEnvelope, model_cls, metadata_type) -> MigrationStats:
    model = model_cls(db)
    stats = MigrationStats()

    for row in model.list_pending_metadata():
        record_id = row[model.KEY]
        try:
            user_key = envelope.unwrap_user_key(row["owner_encryption_key"])
            encrypted = migrate_to_encrypted_metadata(row, metadata_type, user_key)
            if encrypted is None:
                stats.skipped += 1
                continue
            model.update(
                record_id,
                {"encrypted_metadata": encrypted.ciphertext, "metadata_iv": encrypted.iv},
                touch=False,
            )
            stats.migrated += 1
        except MedVaultError as e:
            stats.failed += 1
            logger.error("Failed to migrate %s %s: %s", model.TABLE, record_id, e)

    logger.info(
        "%s: migrated=%d skipped=%d failed=%d",
        model.TABLE,
        stats.migrated,
        stats.skipped,
        stats.failed,
    )
    return stats


def migrate_metadata(db: DatabaseConnection, envelope: KeyEnvelope) -> Dict[str, MigrationStats]:
    """Run the migration over every table; returns stats keyed by table name."""
    return {
        model_cls.TABLE: migrate_table(db, envelope, model_cls, metadata_type)
        for model_cls, metadata_type in MIGRATIONS
    }
