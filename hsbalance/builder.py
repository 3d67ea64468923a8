"""Assemble front descriptors from a replica assignment."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from cryptography.hazmat.primitives.asymmetric import rsa

from hsbalance.crypto.keys import PERMANENT_KEY_BITS
from hsbalance.descriptor import Descriptor, IntroductionPoint
from hsbalance.errors import DescriptorError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DescriptorBuilder:
    """
    Build unsigned descriptors for the front identity.

    Args:
        public_key: The front identity's permanent key.
        replica_count: Number of replicas R the assignment was made for.
        clock: Returns the current time; publication time is rounded down to
            the hour as Tor does.
    """

    def __init__(
        self,
        public_key: rsa.RSAPublicKey,
        *,
        replica_count: int,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise DescriptorError("front key must be an RSA public key")
        if public_key.key_size != PERMANENT_KEY_BITS:
            raise DescriptorError(f"front key must be {PERMANENT_KEY_BITS}-bit RSA")
        if replica_count < 1:
            raise DescriptorError("replica_count must be positive")
        self.public_key = public_key
        self.replica_count = replica_count
        self.clock = clock or _utcnow

    def build(
        self,
        assignment: Sequence[Sequence[IntroductionPoint]],
        replicas: Iterable[int] | None = None,
    ) -> list[Descriptor]:
        """
        Build one descriptor per replica.

        Args:
            assignment: Output of :func:`~hsbalance.allocator.allocate`.
            replicas: Replica indices to build, in order. Defaults to all.

        Raises:
            DescriptorError: If the assignment length or a replica index is invalid.
        """
        if len(assignment) != self.replica_count:
            raise DescriptorError(
                f"assignment has {len(assignment)} slots, expected {self.replica_count}"
            )
        published = self.clock().astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)

        indices = range(self.replica_count) if replicas is None else replicas
        descriptors = []
        for replica in indices:
            if not (0 <= replica < self.replica_count):
                raise DescriptorError(f"replica {replica} out of range 0..{self.replica_count - 1}")
            descriptors.append(
                Descriptor(
                    replica=replica,
                    permanent_key=self.public_key,
                    publication_time=published,
                    introduction_points=b"".join(ip.to_bytes() for ip in assignment[replica]),
                )
            )
        return descriptors
