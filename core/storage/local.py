"""Local file storage utilities."""

from pathlib import Path
import logging

logger = logging.getLogger(__name__)


class LocalStorage:
    """
    Resolves stored upload paths against the local upload root.

    Uploads are written by the admin upload flow; this side only needs to
    locate them again, e.g. to attach an allotment letter.
    """

    def __init__(self, base_path: str | Path = "./uploads"):
        """
        Initialize local storage.

        Args:
            base_path: Base directory that relative stored paths hang off
        """
        self.base_path = Path(base_path).resolve()

    def resolve(self, stored_path: str | Path) -> Path:
        """
        Convert a stored path into an absolute filesystem path.

        Absolute paths are returned unchanged; relative ones (including the
        ``uploads/...`` form some records carry) are joined to the base path.

        Args:
            stored_path: Path as recorded on the upload row

        Returns:
            Absolute path
        """
        path = Path(stored_path)
        if path.is_absolute():
            return path
        if path.parts and path.parts[0] == self.base_path.name:
            path = Path(*path.parts[1:])
        return self.base_path / path

    def exists(self, stored_path: str | Path) -> bool:
        """Check whether the stored file is present on disk."""
        resolved = self.resolve(stored_path)
        found = resolved.is_file()
        if not found:
            logger.warning(f"Stored file not found: {resolved}")
        return found


def get_upload_storage() -> LocalStorage:
    """Storage rooted at the configured upload directory."""
    from core.config import settings

    return LocalStorage(settings.upload_root)
