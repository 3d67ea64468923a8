"""On-disk copies of published descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from hsbalance.crypto import normalize_onion_id
from hsbalance.descriptor import Descriptor
from hsbalance.errors import StoreError


@dataclass
class DescriptorStore:
    """Writes each signed descriptor to ``<front-identity>.<replica>`` under ``directory``."""

    directory: Path

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)

    def path_for(self, front_identity: str, replica: int) -> Path:
        return self.directory / f"{normalize_onion_id(front_identity)}.{replica}"

    def save(self, front_identity: str, descriptor: Descriptor) -> Path:
        """
        Write ``descriptor`` and return its path.

        Raises:
            StoreError: If the directory or file cannot be written.
        """
        path = self.path_for(front_identity, descriptor.replica)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(descriptor.to_bytes())
            tmp.replace(path)
        except OSError as e:
            if tmp.exists():
                tmp.unlink()
            raise StoreError(f"unable to write descriptor {path}: {e}") from e
        return path

    def load(self, front_identity: str, replica: int) -> bytes:
        return self.path_for(front_identity, replica).read_bytes()
