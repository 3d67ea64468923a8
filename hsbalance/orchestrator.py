"""Balancing run: collect, allocate, build, sign, store, publish."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

import structlog

from hsbalance.allocator import ShuffleRNG, allocate, distribution
from hsbalance.builder import DescriptorBuilder
from hsbalance.collector import DescriptorCollector
from hsbalance.config import BalancerConfig
from hsbalance.control import ControlSession
from hsbalance.crypto import KeyDirectory, Signer, normalize_onion_id
from hsbalance.descriptor import Descriptor
from hsbalance.errors import ConfigError, ControlError, SigningError
from hsbalance.publisher import PublishReport, Publisher
from hsbalance.store import DescriptorStore

logger = structlog.get_logger(__name__)


@dataclass
class BalanceResult:
    """Summary of one completed run."""

    front_identity: str
    descriptors: list[Descriptor]
    pool_size: int
    distribution: list[int]
    report: PublishReport = field(default_factory=PublishReport)


class Balancer:
    """
    Produce and publish load-balanced descriptors for a front identity.

    Every capability the run needs is passed in: the control session, the
    signer for the front key and a key directory to resolve the front
    identity's public key.

    Example:
        >>> balancer = Balancer(conn, front_key, front_key, front_key.identity, config=config)
        >>> result = await balancer.run(["backend1abcdefgh", "backend2abcdefgh"])
    """

    def __init__(
        self,
        session: ControlSession,
        signer: Signer,
        keys: KeyDirectory,
        front_identity: str,
        *,
        config: Optional[BalancerConfig] = None,
        store: Optional[DescriptorStore] = None,
        rng: Optional[ShuffleRNG] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or BalancerConfig()
        errors = self.config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        self.session = session
        self.signer = signer
        self.keys = keys
        self.front_identity = normalize_onion_id(front_identity)
        self.store = store
        self.rng = rng
        self.clock = clock
        self.collector = DescriptorCollector(session, verify_signatures=self.config.verify_signatures)
        self.publisher = Publisher(session)
        self._last_distribution: list[int] = []
        self._last_pool_size = 0

    async def log_version(self) -> None:
        """Log the Tor version; failure here does not affect the run."""
        try:
            reply = await self.session.request("GETINFO version")
        except ControlError as e:
            logger.warning("Version query failed", error=str(e))
            return
        logger.info("Connected to Tor", version=reply.lines[0].partition("=")[2] if reply.lines else "")

    async def produce_descriptors(
        self, backends: Sequence[str], *, cancel: Optional[asyncio.Event] = None
    ) -> list[Descriptor]:
        """Collect backend introduction points and build unsigned descriptors."""
        if not backends:
            raise ConfigError("at least one backend identity is required")

        pool = await self.collector.collect(
            backends, timeout=self.config.collect_timeout, cancel=cancel
        )
        assignment = allocate(
            pool,
            self.config.replica_count,
            self.config.max_intro_points,
            distinct=self.config.distinct_descriptors,
            rng=self.rng,
        )
        self._last_pool_size = len(pool)
        self._last_distribution = distribution(assignment)
        logger.info(
            "Using the following introduction point distribution",
            pool_size=len(pool),
            distribution=self._last_distribution,
        )

        builder = DescriptorBuilder(
            self.keys.public_key_for(self.front_identity),
            replica_count=self.config.replica_count,
            clock=self.clock,
        )
        return builder.build(assignment, self.config.selected_replicas())

    def sign_descriptors(self, descriptors: Sequence[Descriptor]) -> None:
        """
        Sign every descriptor, or none of them.

        Raises:
            SigningError: If any signature cannot be produced.
        """
        signatures = []
        for desc in descriptors:
            try:
                signature = self.signer.sign(desc.body())
            except Exception as e:
                raise SigningError(f"signing replica {desc.replica} failed: {e}", replica=desc.replica) from e
            if not isinstance(signature, bytes) or not signature:
                raise SigningError(f"signer returned no signature for replica {desc.replica}", replica=desc.replica)
            signatures.append(signature)
        for desc, signature in zip(descriptors, signatures):
            desc.attach_signature(signature)

    async def run(self, backends: Sequence[str], *, cancel: Optional[asyncio.Event] = None) -> BalanceResult:
        """
        Execute a full balancing run.

        Raises:
            ControlError: If the control session fails before publishing.
            CollectionIncompleteError: If some backends never answered.
            SigningError: If the batch could not be signed.
            StoreError: If a descriptor copy could not be written.
            PublishError: If a descriptor was rejected; earlier ones stay published.
        """
        await self.log_version()
        descriptors = await self.produce_descriptors(backends, cancel=cancel)
        self.sign_descriptors(descriptors)

        if self.store is not None:
            for desc in descriptors:
                path = self.store.save(self.front_identity, desc)
                logger.debug("Saved descriptor", replica=desc.replica, path=str(path))

        report = await self.publisher.publish(descriptors)
        for outcome in report.outcomes:
            logger.info("Replica publish outcome", replica=outcome.replica, status=outcome.status.value)
        report.raise_for_failure()

        logger.info("Completed balancing", onion=f"{self.front_identity}.onion")
        return BalanceResult(
            front_identity=self.front_identity,
            descriptors=list(descriptors),
            pool_size=self._last_pool_size,
            distribution=self._last_distribution,
            report=report,
        )
