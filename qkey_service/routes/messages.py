"""
Message sealing endpoints (body plus attachments).
"""
from fastapi import APIRouter, Depends, HTTPException, status

from qkey_service.schemas.crypto import (
    AttachmentOut,
    EnvelopeSchema,
    OpenResponse,
    SealedAttachmentSchema,
    SealedMessageSchema,
    SealRequest,
    as_text,
    decode_payload,
    encode_bytes,
)
from qkey_service.services.crypto_engine import UnsupportedLevelError
from qkey_service.services.key_service import CapacityExceededError, KeyServiceError
from qkey_service.services.message_crypto import (
    Attachment,
    MessageCryptoService,
    SealedAttachment,
    SealedMessage,
    get_message_crypto_service,
)
from qkey_service.utils.logger import get_logger

logger = get_logger("routes.messages")

router = APIRouter()


@router.post(
    "/seal",
    response_model=SealedMessageSchema,
    summary="Seal a message",
    responses={
        400: {"description": "Unsupported level, bad attachment or key too large"},
        409: {"description": "Key consumption was rejected"},
    }
)
async def seal_message(
    body: SealRequest,
    message_service: MessageCryptoService = Depends(get_message_crypto_service),
) -> SealedMessageSchema:
    """
    Encrypt a body and its attachments, each under its own key.

    Nothing is returned if any part fails; keys already issued for the
    message are destroyed.
    """
    try:
        attachments = [
            Attachment(
                filename=attachment.filename,
                content=decode_payload(attachment.content, "base64"),
                content_type=attachment.content_type,
            )
            for attachment in body.attachments
        ]
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        sealed = await message_service.seal(
            body.body,
            body.security_level,
            recipient=body.recipient,
            attachments=attachments,
        )
    except (UnsupportedLevelError, CapacityExceededError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except KeyServiceError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(
        "Message sealed",
        security_level=sealed.security_level.value,
        attachment_count=len(sealed.attachments),
    )

    return SealedMessageSchema(
        security_level=sealed.security_level,
        body=EnvelopeSchema.from_envelope(sealed.body),
        attachments=[SealedAttachmentSchema.from_sealed(a) for a in sealed.attachments],
    )


@router.post(
    "/open",
    response_model=OpenResponse,
    summary="Open a sealed message",
    responses={400: {"description": "Malformed envelope"}}
)
async def open_message(
    body: SealedMessageSchema,
    message_service: MessageCryptoService = Depends(get_message_crypto_service),
) -> OpenResponse:
    """
    Decrypt a sealed message.

    Key and integrity problems are reported through ``status`` rather than
    an error code so the client can show an appropriate notice. When
    ``purge_required`` is true the client must delete its stored copy.
    """
    try:
        sealed = SealedMessage(
            security_level=body.security_level,
            body=body.body.to_envelope(),
            attachments=[
                SealedAttachment(
                    filename=a.filename,
                    content_type=a.content_type,
                    original_size=a.original_size,
                    envelope=a.envelope.to_envelope(),
                )
                for a in body.attachments
            ],
        )
        opened = await message_service.open(sealed)
    except (UnsupportedLevelError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return OpenResponse(
        status=opened.status,
        body=as_text(opened.body) if opened.body is not None else None,
        attachments=[
            AttachmentOut(
                filename=a.filename,
                content=encode_bytes(a.content),
                content_type=a.content_type,
            )
            for a in opened.attachments
        ],
        purge_required=opened.purge_required,
        detail=opened.detail,
    )
