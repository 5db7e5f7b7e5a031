"""
ResumeCustomizer Pro - Audit Integrity Tests

Tests for login audit log integrity and hash chain verification.
Ensures tamper-evidence and chain validation work correctly.

Run with: pytest tests/test_audit_integrity.py
"""

from datetime import datetime

from sqlmodel import select

from resumepro.audit import login_log
from resumepro.audit.hash_chain import (
    compute_event_hash,
    compute_genesis_hash,
    verify_chain,
)
from resumepro.audit.models import AuditEventType, AuditStatus, LoginAuditEntry


def _hash(**overrides):
    fields = dict(
        event_id="123",
        event_type="login",
        status="success",
        user_id="user1",
        ip_address="203.0.113.7",
        is_suspicious=False,
        created_at=datetime(2024, 1, 1, 12, 0, 0),
        prev_hash="abc123",
    )
    fields.update(overrides)
    return compute_event_hash(**fields)


class TestHashComputation:
    """Tests for hash computation functions."""

    def test_compute_event_hash_deterministic(self):
        """Same inputs should produce same hash."""
        assert _hash() == _hash()

    def test_compute_event_hash_different_inputs(self):
        """Different inputs should produce different hashes."""
        assert _hash() != _hash(event_id="124")
        assert _hash() != _hash(status="failure")
        assert _hash() != _hash(is_suspicious=True)

    def test_hash_includes_prev_hash(self):
        """Hash should change when prev_hash changes."""
        assert _hash(prev_hash="hash_a") != _hash(prev_hash="hash_b")

    def test_hash_format(self):
        """Hash should be 64-character hex string (SHA-256)."""
        result = _hash()

        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)

    def test_genesis_hash_stable(self):
        assert compute_genesis_hash() == compute_genesis_hash()


class TestChainVerification:
    """Tests for chain verification against stored entries."""

    async def _record(self, db, count=3):
        for i in range(count):
            await login_log.record_event(
                db,
                AuditEventType.LOGIN,
                AuditStatus.SUCCESS if i % 2 == 0 else AuditStatus.FAILURE,
                ip_address=f"203.0.113.{i}",
            )

    def test_empty_chain_valid(self):
        result = verify_chain([])

        assert result.is_valid is True
        assert result.event_count == 0
        assert result.final_hash is None

    async def test_recorded_chain_valid(self, db_session):
        await self._record(db_session)

        result = await login_log.verify_audit_chain(db_session)

        assert result.is_valid is True
        assert result.event_count == 3
        assert result.broken_at is None

    async def test_first_entry_links_to_genesis(self, db_session):
        await self._record(db_session, count=1)

        entry = db_session.exec(select(LoginAuditEntry)).one()
        assert entry.prev_hash == compute_genesis_hash()

    async def test_tampered_field_detected(self, db_session):
        """Editing a stored entry breaks the chain at that entry."""
        await self._record(db_session)
        entries = db_session.exec(select(LoginAuditEntry).order_by(LoginAuditEntry.id)).all()
        target = entries[1]
        target.ip_address = "198.51.100.1"
        db_session.add(target)
        db_session.commit()

        result = await login_log.verify_audit_chain(db_session)

        assert result.is_valid is False
        assert result.broken_at == target.id

    async def test_deleted_entry_detected(self, db_session):
        await self._record(db_session)
        entries = db_session.exec(select(LoginAuditEntry).order_by(LoginAuditEntry.id)).all()
        db_session.delete(entries[1])
        db_session.commit()

        result = await login_log.verify_audit_chain(db_session)

        assert result.is_valid is False
        assert result.broken_at == entries[2].id
