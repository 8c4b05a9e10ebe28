# app/services/evidence_storage.py

from fastapi import HTTPException, status, UploadFile
from pathlib import Path
import aiofiles
import logging
import uuid
import os

from app.core.config import settings
from app.models.dispute import EvidenceType

logger = logging.getLogger(__name__)

# --- 檔案上傳設定 ---
BASE_DIR = Path(__file__).resolve().parent.parent.parent
UPLOAD_DIR = BASE_DIR / settings.EVIDENCE_UPLOAD_DIR
UPLOAD_URL_PREFIX = settings.EVIDENCE_URL_PREFIX

# content_type -> (副檔名, 證據類型)
ALLOWED_CONTENT_TYPES = {
    "application/pdf": (".pdf", EvidenceType.file),
    "image/png": (".png", EvidenceType.screenshot),
    "image/jpeg": (".jpg", EvidenceType.screenshot),
}


def evidence_type_for(content_type: str) -> EvidenceType:
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="證據檔案僅支援 PDF / PNG / JPEG 格式"
        )
    return ALLOWED_CONTENT_TYPES[content_type][1]


async def save_evidence_file(file: UploadFile) -> str:
    """存到本機磁碟，回傳可公開存取的 URL"""
    evidence_type_for(file.content_type)
    file_extension = ALLOWED_CONTENT_TYPES[file.content_type][0]
    filename = f"{uuid.uuid4()}{file_extension}"
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    file_path = UPLOAD_DIR / filename
    try:
        async with aiofiles.open(file_path, 'wb') as f:
            content = await file.read()
            await f.write(content)
    except Exception as e:
        logger.error(f"證據檔案儲存失敗: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"檔案儲存失敗: {str(e)}"
        )
    return f"{UPLOAD_URL_PREFIX}{filename}"
