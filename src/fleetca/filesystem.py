"""
Persistence collaborator
Creates directories and writes CA files atomically with the expected modes
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from . import config

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _as_list(paths) -> List[Path]:
    if isinstance(paths, (str, Path)):
        return [Path(paths)]
    return [Path(p) for p in paths]


def to_pem(obj) -> str:
    """
    Serializes a single object the way it is stored on disk

    Args:
        obj: Certificate, CRL, private/public key, or text

    Returns:
        str: PEM (or plain) text
    """
    if isinstance(obj, str):
        return obj
    if isinstance(obj, bytes):
        return obj.decode("utf-8")
    if isinstance(obj, (x509.Certificate, x509.CertificateRevocationList, x509.CertificateSigningRequest)):
        return obj.public_bytes(serialization.Encoding.PEM).decode("ascii")
    if hasattr(obj, "private_bytes"):
        return obj.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ).decode("ascii")
    if hasattr(obj, "public_bytes"):
        return obj.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode("ascii")
    return str(obj)


class FileSystem:
    """
    File operations used by the CA once every validation has succeeded

    Ownership follows the running user; when running as root the files are
    handed to ``owner``/``group`` if those accounts exist.
    """

    def __init__(self, owner: Optional[str] = None, group: Optional[str] = None):
        self.owner = owner
        self.group = group

    # ============================================
    # 📁 DIRECTORIES
    # ============================================

    def ensure_dir(self, directory: PathLike, mode: int = config.DIR_PERMISSIONS) -> None:
        """
        Creates a directory and its parents if missing

        Args:
            directory: Directory to create
            mode: Mode applied to the directory when it is created
        """
        path = Path(directory)
        if not path.exists():
            path.mkdir(parents=True, mode=mode)
            os.chmod(path, mode)
            self._chown(path)
            logger.debug("Created directory %s", path)

    def ensure_dirs(self, directories: Iterable[PathLike]) -> None:
        for directory in directories:
            self.ensure_dir(directory)

    # ============================================
    # 💾 FILES
    # ============================================

    def write_file(self, path: PathLike, content, mode: int) -> None:
        """
        Replaces a file atomically

        The content is written to a temporary file in the same directory,
        flushed to disk, given ``mode`` and renamed over the target, so a
        reader sees either the old or the new content.

        Args:
            path: Target file
            content: One object or a list of objects (see ``to_pem``)
            mode: File mode (ex: 0o640 for private keys)
        """
        target = Path(path)
        objects = content if isinstance(content, (list, tuple)) else [content]
        text = "".join(self._line(to_pem(obj)) for obj in objects)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, mode)
            self._chown(Path(tmp_name))
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Wrote %s (mode %o)", target, mode)

    def remove_file(self, path: PathLike) -> None:
        Path(path).unlink()
        logger.debug("Removed %s", path)

    def read_text(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")

    # ============================================
    # 🔍 PRE-FLIGHT CHECKS
    # ============================================

    @staticmethod
    def validate_file_paths(paths) -> List[str]:
        """
        Checks that every path exists and is readable

        Returns:
            list: One message per unreadable file
        """
        errors = []
        for path in _as_list(paths):
            if not path.is_file() or not os.access(path, os.R_OK):
                errors.append(f"Could not read file '{path}'")
        return errors

    @staticmethod
    def check_for_existing_files(paths) -> List[str]:
        """
        Reports files that would be overwritten

        Returns:
            list: One message per existing file
        """
        return [f"Existing file at '{path}'" for path in _as_list(paths) if path.exists()]

    # ============================================
    # 🛠️ HELPERS
    # ============================================

    @staticmethod
    def _line(text: str) -> str:
        return text if text.endswith("\n") or not text else text + "\n"

    def _chown(self, path: Path) -> None:
        if os.name == "nt" or os.geteuid() != 0 or not (self.owner or self.group):
            return
        try:
            shutil.chown(path, user=self.owner, group=self.group)
        except LookupError:
            logger.warning("Could not hand %s to %s:%s", path, self.owner, self.group)


def write_files(fs: FileSystem, files: Sequence, mode: int) -> None:
    """Writes a list of ``(path, content)`` pairs with the same mode"""
    for path, content in files:
        fs.write_file(path, content, mode)


__all__ = ['FileSystem', 'to_pem', 'write_files']
