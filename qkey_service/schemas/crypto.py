"""
Pydantic schemas for encryption, decryption and message sealing.

Binary values cross the HTTP boundary base64 encoded. Payloads may instead be
sent as UTF-8 text by setting ``encoding`` to "utf-8".
"""
import base64
import binascii
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from qkey_service.models.envelope import EncryptionEnvelope, SecurityLevel
from qkey_service.services.message_crypto import OpenStatus, SealedAttachment

PAYLOAD_ENCODINGS = ("utf-8", "base64")


def decode_payload(value: str, encoding: str) -> bytes:
    """
    Turn a request payload into bytes.

    Raises:
        ValueError: If a base64 payload is malformed
    """
    if encoding == "base64":
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Payload is not valid base64: {e}") from e
    return value.encode("utf-8")


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def as_text(data: bytes) -> Optional[str]:
    """UTF-8 view of decrypted bytes, or None for binary content."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


class EnvelopeSchema(BaseModel):
    """Wire form of an EncryptionEnvelope."""
    security_level: SecurityLevel
    key_id: Optional[str] = Field(None, description="Key the envelope was sealed with (absent for level4)")
    ciphertext: str = Field(description="Base64 encoded framed ciphertext")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Framing metadata")

    @classmethod
    def from_envelope(cls, envelope: EncryptionEnvelope) -> "EnvelopeSchema":
        return cls(**envelope.to_wire())

    def to_envelope(self) -> EncryptionEnvelope:
        """
        Raises:
            ValueError: If the ciphertext is not valid base64
        """
        return EncryptionEnvelope.from_wire(self.model_dump(mode="json"))


class EncryptRequest(BaseModel):
    """Request to encrypt a single payload."""
    payload: str = Field(description="Data to encrypt")
    encoding: str = Field(default="utf-8", description="Payload encoding: 'utf-8' or 'base64'")
    security_level: str = Field(description="One of level1, level2, level3, level4")
    recipient: Optional[str] = Field(None, description="Optional recipient hint")

    @field_validator("encoding")
    @classmethod
    def validate_encoding(cls, v: str) -> str:
        if v not in PAYLOAD_ENCODINGS:
            raise ValueError(f"encoding must be one of {PAYLOAD_ENCODINGS}")
        return v


class DecryptRequest(BaseModel):
    """Request to decrypt an envelope."""
    envelope: EnvelopeSchema


class DecryptResponse(BaseModel):
    """
    Result of a decrypt call.

    Plaintext fields are only populated when ``verified`` is true.
    """
    verified: bool
    security_level: SecurityLevel
    key_id: Optional[str] = None
    plaintext_base64: Optional[str] = None
    plaintext: Optional[str] = Field(None, description="UTF-8 view of the plaintext when decodable")
    purge_required: bool = Field(
        default=False,
        description="Set after a verified level1 read; the caller must discard its stored envelope"
    )


class AttachmentIn(BaseModel):
    """Plaintext attachment in a seal request."""
    filename: str = Field(min_length=1)
    content: str = Field(description="Base64 encoded attachment content")
    content_type: str = Field(default="application/octet-stream")


class AttachmentOut(BaseModel):
    """Decrypted attachment."""
    filename: str
    content: str = Field(description="Base64 encoded attachment content")
    content_type: str


class SealedAttachmentSchema(BaseModel):
    """Encrypted attachment."""
    filename: str
    content_type: str
    original_size: int
    envelope: EnvelopeSchema

    @classmethod
    def from_sealed(cls, attachment: SealedAttachment) -> "SealedAttachmentSchema":
        return cls(
            filename=attachment.filename,
            content_type=attachment.content_type,
            original_size=attachment.original_size,
            envelope=EnvelopeSchema.from_envelope(attachment.envelope),
        )


class SealRequest(BaseModel):
    """Request to seal a message body and its attachments."""
    body: str = Field(description="Message body (UTF-8 text)")
    security_level: str = Field(description="One of level1, level2, level3, level4")
    recipient: Optional[str] = None
    attachments: List[AttachmentIn] = Field(default_factory=list)


class SealedMessageSchema(BaseModel):
    """Sealed message as returned by seal and accepted by open."""
    security_level: SecurityLevel
    body: EnvelopeSchema
    attachments: List[SealedAttachmentSchema] = Field(default_factory=list)


class OpenResponse(BaseModel):
    """Result of opening a sealed message."""
    status: OpenStatus
    body: Optional[str] = Field(None, description="Decrypted body when status is 'decrypted'")
    attachments: List[AttachmentOut] = Field(default_factory=list)
    purge_required: bool = False
    detail: Optional[str] = None
