"""Distribution of the offline resource bundle to a node."""
import hashlib
import logging
import os
import posixpath
import time
from typing import Optional

from airgapctl.modules.errors import CommandError
from . import constants

logger = logging.getLogger("airgapctl.cluster.resources")

CHUNK_SIZE = 1024 * 1024


def file_sha256(path: str) -> str:
    """SHA-256 hex digest of a local file."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ResourceDistributor:
    """Uploads and unpacks the resource bundle unless the node already has it.

    The node keeps the SHA-256 of the last extracted bundle in a marker file;
    a matching marker means the upload can be skipped.
    """

    def __init__(self, conn, package_path: str, remote_tmp_dir: str, prefix: str = ""):
        self.conn = conn
        self.package_path = package_path
        self.remote_tmp_dir = remote_tmp_dir
        self.prefix = prefix
        self._local_hash: Optional[str] = None

    @property
    def remote_archive(self) -> str:
        return posixpath.join(self.remote_tmp_dir, constants.RESOURCE_ARCHIVE)

    @property
    def remote_marker(self) -> str:
        return posixpath.join(self.remote_tmp_dir, constants.EXTRACTED_MARKER)

    def local_hash(self) -> str:
        if self._local_hash is None:
            self._local_hash = file_sha256(self.package_path)
        return self._local_hash

    def check(self) -> bool:
        local = self.local_hash()
        try:
            remote = self.conn.run_command(f"cat {self.remote_marker}")
        except CommandError:
            return False
        return remote.strip() == local

    def distribute(self) -> None:
        local = self.local_hash()
        total = os.path.getsize(self.package_path)
        name = os.path.basename(self.package_path)
        start = time.monotonic()
        reported = {"percent": -10}

        def on_progress(sent: int, size: int) -> None:
            size = size or total
            percent = int(sent * 100 / size) if size else 100
            if percent - reported["percent"] < 10 and sent < size:
                return
            reported["percent"] = percent
            elapsed = max(time.monotonic() - start, 0.1)
            speed = sent / elapsed / 1024 / 1024
            logger.info(
                f"{self.prefix}  └─ uploading {name} {percent}% "
                f"({sent / 1024 / 1024:.1f}/{size / 1024 / 1024:.1f} MB) {speed:.2f} MB/s"
            )

        with open(self.package_path, 'rb') as f:
            self.conn.write_file(self.remote_archive, f, size=total, callback=on_progress)

        logger.info(f"{self.prefix}  └─ extracting resources on the node...")
        self.conn.run_command(f"cd {self.remote_tmp_dir} && tar -xzf {constants.RESOURCE_ARCHIVE}")
        self.conn.run_command(f"echo '{local}' > {self.remote_marker}")
