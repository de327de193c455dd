"""
Unit tests for message sealing and opening.
"""

import pytest

from qkey_service.models.envelope import SecurityLevel
from qkey_service.models.key_entry import KeyStatus
from qkey_service.services.key_service import ConsumptionOverrunError
from qkey_service.services.message_crypto import Attachment, OpenStatus


@pytest.fixture
def attachments():
    return [
        Attachment(filename="notes.txt", content=b"meeting at noon", content_type="text/plain"),
        Attachment(filename="blob.bin", content=bytes(range(256))),
    ]


class TestSeal:
    """Unit tests for sealing messages."""

    @pytest.mark.asyncio
    async def test_each_part_has_its_own_key(self, message_service, key_service, attachments):
        """Body and every attachment are encrypted under separate keys."""
        sealed = await message_service.seal("body", SecurityLevel.LEVEL1_OTP, attachments=attachments)

        assert len(sealed.key_ids) == 3
        assert len(set(sealed.key_ids)) == 3
        assert len(key_service.list_keys()) == 3

    @pytest.mark.asyncio
    async def test_level1_pad_sized_per_part(self, message_service, key_service, attachments):
        """Level 1 keys cover each part plus its tag key."""
        sealed = await message_service.seal("body", SecurityLevel.LEVEL1_OTP, attachments=attachments)

        lengths = {k["key_id"]: k["key_length"] for k in key_service.list_keys()}
        assert lengths[sealed.body.key_id] == 4 + 32
        assert lengths[sealed.attachments[1].envelope.key_id] == 256 + 32

    @pytest.mark.asyncio
    async def test_records_original_sizes(self, message_service, attachments):
        """Attachment names and sizes are kept alongside the ciphertext."""
        sealed = await message_service.seal("body", "level2", attachments=attachments)

        assert [a.original_size for a in sealed.attachments] == [15, 256]
        assert sealed.attachments[0].filename == "notes.txt"

    @pytest.mark.asyncio
    async def test_level4_has_no_keys(self, message_service):
        """Plain messages issue no keys."""
        sealed = await message_service.seal("plain body", "level4")
        assert sealed.key_ids == []

    @pytest.mark.asyncio
    async def test_failure_destroys_issued_keys(self, message_service, key_service, engine, monkeypatch, attachments):
        """A failed part destroys keys already issued for the message."""
        original = engine.encrypt
        calls = []

        async def fail_on_second(payload, level, recipient=None):
            calls.append(payload)
            if len(calls) == 2:
                raise ConsumptionOverrunError("qkey-x", 1, 0)
            return await original(payload, level, recipient)

        monkeypatch.setattr(engine, "encrypt", fail_on_second)

        with pytest.raises(ConsumptionOverrunError):
            await message_service.seal("body", SecurityLevel.LEVEL2_SEEDED_STREAM, attachments=attachments)

        keys = key_service.list_keys()
        assert len(keys) == 1
        assert keys[0]["status"] is KeyStatus.DESTROYED

    @pytest.mark.asyncio
    async def test_audits_seal(self, message_service, audit_sink):
        """Sealing is audited with the message key ids."""
        sealed = await message_service.seal("body", "level3", recipient="bob@example.com")

        action, details = audit_sink.events[-1]
        assert action == "message_sealed"
        assert details["key_ids"] == sealed.key_ids
        assert details["recipient"] == "bob@example.com"


class TestOpen:
    """Unit tests for opening messages."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", ["level2", "level3", "level4"])
    async def test_round_trip(self, message_service, attachments, level):
        """Reusable levels open to the original body and attachments."""
        sealed = await message_service.seal("hello bob", level, attachments=attachments)

        opened = await message_service.open(sealed)

        assert opened.status is OpenStatus.DECRYPTED
        assert opened.body == b"hello bob"
        assert [a.content for a in opened.attachments] == [a.content for a in attachments]
        assert opened.purge_required is False

    @pytest.mark.asyncio
    async def test_level2_can_be_reopened(self, message_service):
        """Level 2 messages can be opened more than once."""
        sealed = await message_service.seal("again", "level2")

        await message_service.open(sealed)
        opened = await message_service.open(sealed)

        assert opened.status is OpenStatus.DECRYPTED

    @pytest.mark.asyncio
    async def test_level1_is_view_once(self, message_service, key_service, attachments):
        """Level 1 messages are purged after the first successful open."""
        sealed = await message_service.seal("read once", SecurityLevel.LEVEL1_OTP, attachments=attachments)

        first = await message_service.open(sealed)
        second = await message_service.open(sealed)

        assert first.status is OpenStatus.DECRYPTED
        assert first.body == b"read once"
        assert first.purge_required is True
        for key_id in sealed.key_ids:
            assert key_service.key_status(key_id) is KeyStatus.DESTROYED

        assert second.status is OpenStatus.ALREADY_CONSUMED
        assert second.body is None

    @pytest.mark.asyncio
    async def test_tampered_attachment_hides_everything(self, message_service, key_service, attachments):
        """One tampered part withholds the whole message and skips the purge."""
        sealed = await message_service.seal("secret", SecurityLevel.LEVEL1_OTP, attachments=attachments)
        envelope = sealed.attachments[0].envelope
        envelope.ciphertext = bytes([envelope.ciphertext[0] ^ 0x01]) + envelope.ciphertext[1:]

        opened = await message_service.open(sealed)

        assert opened.status is OpenStatus.AUTHENTICATION_FAILED
        assert opened.body is None
        assert opened.attachments == []
        assert opened.purge_required is False
        assert key_service.key_status(sealed.body.key_id) is KeyStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_expired_key_reports_unavailable(self, message_service, clock):
        """Expired keys report the message as unavailable."""
        sealed = await message_service.seal("late", "level3")
        clock.advance(days=2)

        opened = await message_service.open(sealed)

        assert opened.status is OpenStatus.KEY_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unknown_key_reports_unavailable(self, message_service):
        """Missing keys report the message as unavailable."""
        sealed = await message_service.seal("lost", "level2")
        sealed.body.key_id = "qkey-0-0000000000000000"

        opened = await message_service.open(sealed)

        assert opened.status is OpenStatus.KEY_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_audits_open(self, message_service, audit_sink):
        """Opening is audited."""
        sealed = await message_service.seal("audited", "level1")
        await message_service.open(sealed)

        action, details = audit_sink.events[-1]
        assert action == "message_opened"
        assert details["status"] == "decrypted"
        assert details["purged"] is True
