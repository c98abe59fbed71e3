from pathlib import Path, PurePath

from fastapi import HTTPException, UploadFile

from ..logs import get_logger

CHUNK_SIZE = 64 * 1024

logger = get_logger(__name__)


def upload_filename(original: str | None, file_id: str) -> str:
    suffix = PurePath(original or "").suffix
    return f"{file_id}{suffix}"


def save_upload(file: UploadFile, upload_dir: Path, file_id: str, max_bytes: int) -> str:
    """Stream ``file`` into ``upload_dir`` and return the stored filename."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = upload_filename(file.filename, file_id)
    target = upload_dir / filename
    written = 0
    try:
        with target.open("wb") as dst:
            while chunk := file.file.read(CHUNK_SIZE):
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(status_code=413, detail=f"file exceeds {max_bytes} bytes")
                dst.write(chunk)
    except HTTPException:
        target.unlink(missing_ok=True)
        raise
    except OSError as exc:
        target.unlink(missing_ok=True)
        logger.error("upload_failed", filename=filename, error=str(exc))
        raise HTTPException(status_code=500, detail="error saving file") from exc
    logger.info("upload_saved", filename=filename, size=written)
    return filename
