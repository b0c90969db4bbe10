"""
Blob store for uploaded and generated documents.

Keys are ``<uuid hex>_<sanitised file name>`` relative to UPLOAD_FOLDER.
The store performs no access control; callers (the application service)
check rights before reading.
"""

import logging
import os
import re
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from pmcrms.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class FileService:
    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    @classmethod
    def from_app(cls) -> "FileService":
        return cls(current_app.config["UPLOAD_FOLDER"])

    def _path_for(self, key: str) -> str:
        if not key or not _KEY_RE.match(key) or ".." in key:
            raise ValidationError(f"Invalid document key: {key!r}")
        return os.path.join(self.root, key)

    def save(self, file_name: str, data: bytes) -> str:
        """Store *data* under a fresh key derived from *file_name*."""
        safe = secure_filename(file_name) or "document"
        key = f"{uuid.uuid4().hex}_{safe}"
        self.write(key, data)
        return key

    def write(self, key: str, data: bytes) -> None:
        """Write (or replace) the content stored under *key*."""
        path = self._path_for(key)
        os.makedirs(self.root, exist_ok=True)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
        logger.debug("Stored document key=%s bytes=%d", key, len(data))

    def read(self, key: str) -> bytes:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise NotFoundError("Document", key)
        with open(path, "rb") as fh:
            return fh.read()

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self._path_for(key))
        except ValidationError:
            return False
