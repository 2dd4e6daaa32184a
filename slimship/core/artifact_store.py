"""Content-addressed, immutable store for rendered build files and manifests.

Layout: ``{base_path}/{hex[0:2]}/{hex[2:4]}/{hex}.dat``. Addresses are
``sha256:<hex>``; a bare hex digest is accepted wherever an address is.
There is no delete.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from slimship.core.hasher import canonical_json_bytes, sha256_hex
from slimship.models.artifacts import ContentAddressedArtifact

logger = logging.getLogger(__name__)


class ArtifactIntegrityError(RuntimeError):
    """Raised when stored bytes no longer hash to their address."""


class ContentAddressedStore:
    """SHA-256 keyed, write-once artifact store.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage. Created if missing.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    def _path_for(self, content_address: str) -> Path:
        digest = content_address.removeprefix("sha256:")
        return self._base / digest[:2] / digest[2:4] / f"{digest}.dat"

    def store(
        self,
        data: bytes,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> ContentAddressedArtifact:
        """Write *data* once under its digest and describe it.

        Storing bytes that are already present leaves the file untouched,
        after checking it has not been corrupted in the meantime.
        """
        digest = sha256_hex(data)
        path = self._path_for(digest)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            logger.debug("Stored %s (%d bytes) as %s", name or artifact_type, len(data), digest)
        elif not self.verify(digest):
            raise ArtifactIntegrityError(f"Existing artifact sha256:{digest} is corrupted")

        return ContentAddressedArtifact(
            content_address=f"sha256:{digest}",
            artifact_type=artifact_type,
            name=name or digest[:16],
            size_bytes=len(data),
            metadata=metadata or {},
        )

    def store_text(
        self, text: str, *, name: str = "", artifact_type: str = "text"
    ) -> ContentAddressedArtifact:
        return self.store(text.encode("utf-8"), name=name, artifact_type=artifact_type)

    def store_json(
        self, obj: Any, *, name: str = "", artifact_type: str = "json"
    ) -> ContentAddressedArtifact:
        """Store *obj* as canonical JSON, so equal objects share an address."""
        return self.store(canonical_json_bytes(obj), name=name, artifact_type=artifact_type)

    def retrieve(self, content_address: str) -> bytes:
        """Read an artifact back, re-checking its digest."""
        path = self._path_for(content_address)
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        data = path.read_bytes()
        if sha256_hex(data) != path.stem:
            raise ArtifactIntegrityError(f"Artifact {content_address} is corrupted")
        return data

    def retrieve_json(self, content_address: str) -> Any:
        return json.loads(self.retrieve(content_address))

    def exists(self, content_address: str) -> bool:
        return self._path_for(content_address).exists()

    def verify(self, content_address: str) -> bool:
        """True when the artifact exists and still hashes to its address."""
        path = self._path_for(content_address)
        return path.exists() and sha256_hex(path.read_bytes()) == path.stem
