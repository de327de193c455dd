"""
Message-level encryption on top of the cryptographic engine.

A message is a body plus zero or more attachments. Each part is encrypted as
an independent payload, so at level 1 every attachment draws its own one-time
pad sized to its own length (no key reuse across parts).

Opening a message classifies the outcome for the caller:
- decrypted: every part verified
- authentication_failed: at least one tag mismatch (no content surfaced)
- key_unavailable: a key is unknown, expired or exhausted
- already_consumed: a level-1 key was destroyed by an earlier read

After a verified level-1 open the service destroys all of the message's keys
and sets purge_required; the caller must then overwrite its stored envelopes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union

from fastapi import Request

from qkey_service.models.envelope import EncryptionEnvelope, SecurityLevel
from qkey_service.models.key_entry import KeyStatus
from qkey_service.services.audit import AuditSink, LoggingAuditSink
from qkey_service.services.crypto_engine import QuantumCryptoEngine, coerce_security_level
from qkey_service.services.key_service import KeyUnavailableError
from qkey_service.utils.logger import get_logger

logger = get_logger("crypto.messages")


class OpenStatus(str, Enum):
    """Outcome of opening a sealed message."""
    DECRYPTED = "decrypted"
    AUTHENTICATION_FAILED = "authentication_failed"
    KEY_UNAVAILABLE = "key_unavailable"
    ALREADY_CONSUMED = "already_consumed"


@dataclass
class Attachment:
    """Plaintext attachment."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class SealedAttachment:
    """Encrypted attachment with its original size for display."""
    filename: str
    content_type: str
    original_size: int
    envelope: EncryptionEnvelope


@dataclass
class SealedMessage:
    """Encrypted body plus independently encrypted attachments."""
    security_level: SecurityLevel
    body: EncryptionEnvelope
    attachments: List[SealedAttachment] = field(default_factory=list)

    @property
    def key_ids(self) -> List[str]:
        envelopes = [self.body] + [a.envelope for a in self.attachments]
        return [e.key_id for e in envelopes if e.key_id]


@dataclass
class OpenedMessage:
    """Result of opening a sealed message."""
    status: OpenStatus
    body: Optional[bytes] = None
    attachments: List[Attachment] = field(default_factory=list)
    purge_required: bool = False
    detail: Optional[str] = None


class MessageCryptoService:
    """Seals and opens multi-part messages through the engine."""

    def __init__(self, engine: QuantumCryptoEngine, audit_sink: Optional[AuditSink] = None):
        self.engine = engine
        self.key_service = engine.key_service
        self.audit = audit_sink or LoggingAuditSink()

    async def seal(
        self,
        body: Union[str, bytes],
        security_level: Union[SecurityLevel, str],
        recipient: Optional[str] = None,
        attachments: Optional[List[Attachment]] = None,
    ) -> SealedMessage:
        """
        Encrypt a body and its attachments.

        If any part fails, every key already issued for this message is
        destroyed before the error propagates; nothing partial is returned.

        Raises:
            UnsupportedLevelError: For an unknown level
            KeyServiceError: If key issuance or consumption fails
        """
        level = coerce_security_level(security_level)
        issued: List[str] = []

        try:
            body_envelope = await self.engine.encrypt(body, level, recipient)
            if body_envelope.key_id:
                issued.append(body_envelope.key_id)

            sealed_attachments = []
            for attachment in attachments or []:
                envelope = await self.engine.encrypt(attachment.content, level, recipient)
                if envelope.key_id:
                    issued.append(envelope.key_id)
                sealed_attachments.append(
                    SealedAttachment(
                        filename=attachment.filename,
                        content_type=attachment.content_type,
                        original_size=len(attachment.content),
                        envelope=envelope,
                    )
                )
        except Exception as e:
            logger.error(
                "Failed to seal message; destroying issued keys",
                security_level=level.value,
                issued_keys=len(issued),
                error=str(e),
            )
            for key_id in issued:
                await self.key_service.destroy_key(key_id)
            raise

        sealed = SealedMessage(
            security_level=level,
            body=body_envelope,
            attachments=sealed_attachments,
        )

        self.audit.record(
            "message_sealed",
            {
                "security_level": level.value,
                "recipient": recipient,
                "key_ids": sealed.key_ids,
                "attachment_count": len(sealed_attachments),
            },
        )

        return sealed

    async def open(self, sealed: SealedMessage) -> OpenedMessage:
        """
        Decrypt every part of a sealed message.

        Returns:
            OpenedMessage; content is only present when status is DECRYPTED
        """
        try:
            body_result = await self.engine.decrypt(sealed.body)
            attachment_results = [
                (attachment, await self.engine.decrypt(attachment.envelope))
                for attachment in sealed.attachments
            ]
        except KeyUnavailableError as e:
            status = (
                OpenStatus.ALREADY_CONSUMED
                if e.status is KeyStatus.DESTROYED
                else OpenStatus.KEY_UNAVAILABLE
            )
            self._record_open(sealed, status, key_status=e.status.value)
            return OpenedMessage(status=status, detail=str(e))

        results = [body_result] + [result for _, result in attachment_results]
        if not all(result.verified for result in results):
            self._record_open(sealed, OpenStatus.AUTHENTICATION_FAILED)
            return OpenedMessage(
                status=OpenStatus.AUTHENTICATION_FAILED,
                detail="Message failed integrity verification",
            )

        opened = OpenedMessage(
            status=OpenStatus.DECRYPTED,
            body=body_result.plaintext,
            attachments=[
                Attachment(
                    filename=attachment.filename,
                    content=result.plaintext,
                    content_type=attachment.content_type,
                )
                for attachment, result in attachment_results
            ],
        )

        if any(result.purge_required for result in results):
            for key_id in sealed.key_ids:
                await self.key_service.destroy_key(key_id)
            opened.purge_required = True
            logger.info("View-once message read; keys destroyed", key_count=len(sealed.key_ids))

        self._record_open(sealed, OpenStatus.DECRYPTED, purged=opened.purge_required)
        return opened

    def _record_open(self, sealed: SealedMessage, status: OpenStatus, **details) -> None:
        self.audit.record(
            "message_opened",
            {
                "security_level": sealed.security_level.value,
                "status": status.value,
                "key_ids": sealed.key_ids,
                **details,
            },
        )


# =============================================================================
# Dependency Injection Helper
# =============================================================================


def get_message_crypto_service(request: Request) -> MessageCryptoService:
    """
    Dependency to get the message crypto service from app state.

    Raises:
        RuntimeError: If the application started without the service
    """
    service = getattr(request.app.state, "message_crypto_service", None)
    if service is None:
        raise RuntimeError("Message crypto service unavailable")
    return service
