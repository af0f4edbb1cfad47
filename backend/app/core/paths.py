"""
Path utilities for converting between:
- Absolute filesystem paths
- Relative paths (stored in DB)

All paths stored in DB should be relative to DATA_DIR.
Example: "{organization_id}/sessions/{session_id}/evidence/{question_id}/photo.jpg"
"""
from pathlib import Path
import uuid

from app.core.config import settings


def to_relative_path(absolute_path: Path | str) -> str:
    """
    Convert absolute filesystem path to relative path for DB storage.

    Args:
        absolute_path: Absolute path like /data/auditflow/{org}/sessions/{session}/...

    Returns:
        Relative path like "{org}/sessions/{session}/..."
    """
    path = Path(absolute_path)
    try:
        return str(path.relative_to(settings.DATA_DIR))
    except ValueError:
        # Already relative or different base - return as-is
        return str(path)


def to_absolute_path(relative_path: str) -> Path:
    """Convert relative DB path to absolute filesystem path."""
    path = Path(relative_path)
    if path.is_absolute():
        return path
    return settings.DATA_DIR / path


def session_data_dir(organization_id: uuid.UUID, session_id: uuid.UUID) -> Path:
    """Root directory for files owned by one audit session."""
    return settings.DATA_DIR / str(organization_id) / "sessions" / str(session_id)


def evidence_dir(organization_id: uuid.UUID, session_id: uuid.UUID, question_id: str) -> Path:
    """Directory holding evidence attachments for one question of a session."""
    return session_data_dir(organization_id, session_id) / "evidence" / question_id
