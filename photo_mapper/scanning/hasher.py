import hashlib
from pathlib import Path
from .. import config

class FileHasher:
    def compute_checksum(self, path: Path) -> str:
        """
        Computes a content checksum for change detection.

        Strategy:
        1. If file < SPARSE_HASH_THRESHOLD:
           -> Full Read (SHA-256).

        2. If file >= SPARSE_HASH_THRESHOLD:
           -> Sparse Hash (Header + Middle + Footer + Size).
           The modification time is compared alongside the checksum, so a
           sparse fingerprint is enough to notice a rewritten large file.
        """
        file_size = path.stat().st_size

        if file_size < config.SPARSE_HASH_THRESHOLD:
            return self._full_sha256(path)
        return self._sparse_hash(path, file_size)

    def _full_sha256(self, path: Path) -> str:
        """Reads entire file. High I/O cost."""
        h = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()

    def _sparse_hash(self, path: Path, file_size: int) -> str:
        """
        Reads Header (4KB), Middle (4KB), Footer (4KB) and mixes in file size.
        Prefixes with 's-' to distinguish from full hashes.
        """
        chunk_size = 4096
        h = hashlib.sha256()

        # Same data at different lengths must not collide
        h.update(str(file_size).encode('ascii'))

        with open(path, 'rb') as f:
            # 1. Start (Header)
            h.update(f.read(chunk_size))

            # 2. Middle
            if file_size > chunk_size * 3:
                f.seek(file_size // 2)
                h.update(f.read(chunk_size))

            # 3. End (Footer)
            if file_size > chunk_size * 2:
                f.seek(-chunk_size, 2)
                h.update(f.read(chunk_size))

        return f"s-{h.hexdigest()}"
