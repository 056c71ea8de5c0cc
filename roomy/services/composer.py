"""
Message composer service layer.

Validates a submission, uploads the optional attachment to object storage
and inserts the message row.
"""

import os
import time
from dataclasses import dataclass
from typing import Optional

from roomy.backend.client import BackendClient
from roomy.core.config import settings
from roomy.core.errors import ValidationException, ValidationError
from roomy.core.logging import get_logger, log_file_operation
from roomy.core.validators import Validator
from roomy.schemas.message import Message
from roomy.schemas.session import Session

logger = get_logger(__name__)


@dataclass
class Attachment:
    """업로드할 첨부 파일"""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        ext = os.path.splitext(self.filename or "")[1].lstrip(".").lower()
        return ext or "bin"


def attachment_path(user_id: str, attachment: Attachment, timestamp_ms: Optional[int] = None) -> str:
    """스토리지 저장 경로: {사용자 ID}/{밀리초 타임스탬프}.{확장자}"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{user_id}/{timestamp_ms}.{attachment.extension}"


class MessageComposer:
    """메시지 작성 및 전송"""

    def __init__(self, backend: BackendClient, session: Session, bucket: Optional[str] = None):
        self.backend = backend
        self.session = session
        self.bucket = bucket or settings.attachment_bucket

    async def send(
        self,
        room_id: str,
        content: Optional[str] = None,
        attachment: Optional[Attachment] = None,
    ) -> Message:
        """
        메시지 전송

        행이 저장된 뒤에만 성공으로 반환합니다. 업로드나 저장에 실패하면
        예외가 전달되고 메시지 행은 만들어지지 않습니다.

        Args:
            room_id: 채팅방 ID
            content: 메시지 내용 (앞뒤 공백 제거)
            attachment: 첨부 파일 (선택)

        Returns:
            저장된 메시지
        """
        text = Validator.validate_message_content(content)

        if not text and attachment is None:
            raise ValidationException(
                "Message cannot be empty",
                validation_errors=[
                    ValidationError(field="content", message="Enter a message or attach a file")
                ]
            )

        attachment_url = None
        if attachment is not None:
            # 크기 검사는 업로드 전에
            Validator.validate_attachment_size(attachment.size)
            attachment_url = await self._upload(attachment)

        rows = await self.backend.table("messages").insert({
            "room_id": room_id,
            "user_id": self.session.user_id,
            "content": text,
            "attachment_url": attachment_url,
        })

        record = rows[0] if isinstance(rows, list) else rows
        message = Message.from_record(record)
        if not message.author_name:
            message.author_name = self.session.display_name

        logger.info(f"Message {message.id} sent to room {room_id}", extra={
            "room_id": room_id,
            "user_id": self.session.user_id,
            "message_id": message.id,
            "has_attachment": attachment_url is not None,
            "event_type": "message_sent",
        })
        return message

    async def _upload(self, attachment: Attachment) -> str:
        path = attachment_path(self.session.user_id, attachment)
        content_type = attachment.content_type or "application/octet-stream"

        await self.backend.upload(self.bucket, path, attachment.data, content_type)

        log_file_operation(
            logger,
            operation="upload",
            file_path=f"{self.bucket}/{path}",
            user_id=self.session.user_id,
            file_size=attachment.size,
            content_type=content_type,
        )
        return self.backend.public_url(self.bucket, path)
