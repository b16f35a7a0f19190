"""Pack an export directory into a gzip-compressed tarball."""

from __future__ import annotations

import logging
import os
import tarfile
import tempfile
from pathlib import Path

from .utils import to_unix_path

logger: logging.Logger = logging.getLogger(__name__)


def create_archive(source_dir: Path, archive_path: Path | None = None) -> Path:
    """Create ``<source_dir>.tar.gz`` containing the directory's contents.

    Member names are relative to ``source_dir`` (the importer expects
    ``schema.json`` at the archive root). The tarball is written to a temporary
    file and renamed into place once complete.

    Args:
        source_dir: Export directory to pack
        archive_path: Destination (defaults to ``<source_dir>.tar.gz`` next to it)

    Returns:
        Path of the written archive

    Raises:
        OSError: If the directory cannot be read or the archive cannot be written
    """
    source_dir = source_dir.resolve()
    if archive_path is None:
        archive_path = source_dir.parent / f"{source_dir.name}.tar.gz"

    logger.info(f"Creating archive {archive_path} from {source_dir}")
    fd, tmp_name = tempfile.mkstemp(prefix=f".{archive_path.name}.", suffix=".tmp", dir=archive_path.parent)
    os.close(fd)
    try:
        with tarfile.open(tmp_name, "w:gz") as tar:
            for path in sorted(source_dir.rglob("*")):
                arcname = to_unix_path(path.relative_to(source_dir))
                tar.add(path, arcname=arcname, recursive=False)
        os.replace(tmp_name, archive_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return archive_path
