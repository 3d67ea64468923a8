"""Descriptor collection over a control session.

A run fetches one descriptor per backend identity and then consumes
``HS_DESC_CONTENT`` events until every identity has been matched. Matching
uses the identity derived from the descriptor's own permanent key, never the
address in the event header.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable

import structlog

from hsbalance.control import ControlReply, ControlSession
from hsbalance.crypto import normalize_onion_id
from hsbalance.descriptor import HiddenServiceDescriptor, IntroductionPoint, parse_descriptors
from hsbalance.errors import CollectionIncompleteError, DescriptorError

logger = structlog.get_logger(__name__)

DESC_CONTENT_EVENT = "HS_DESC_CONTENT"
# Field of an HS_DESC_CONTENT event holding the descriptor document.
PAYLOAD_FIELD = 1


@dataclass
class PendingRequest:
    identity: str
    satisfied: bool = False


class DescriptorCollector:
    """
    Resolve backend identities into a pool of introduction points.

    Args:
        session: Control session used for ``HSFETCH``/``SETEVENTS`` and events.
        verify_signatures: Skip descriptors whose signature does not verify
            against their own permanent key.
    """

    def __init__(self, session: ControlSession, *, verify_signatures: bool = True) -> None:
        self.session = session
        self.verify_signatures = verify_signatures

    async def collect(
        self,
        identities: Iterable[str],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[IntroductionPoint]:
        """
        Fetch descriptors for ``identities`` and pool their introduction points.

        Args:
            identities: Backend onion identities, with or without ``.onion``.
            timeout: Seconds to wait for all descriptors. ``None`` waits forever.
            cancel: Setting this event aborts collection.

        Returns:
            Introduction points of every matched descriptor, in event order.

        Raises:
            ValueError: If an identity is malformed.
            ControlError: If a fetch, the subscription or the session fails.
            CollectionIncompleteError: On timeout or cancellation.
        """
        pending: dict[str, PendingRequest] = {}
        for identity in identities:
            onion = normalize_onion_id(identity)
            pending.setdefault(onion, PendingRequest(identity=onion))

        logger.debug("Sending fetch requests for all descriptors", count=len(pending))
        for onion in pending:
            reply = await self.session.request(f"HSFETCH {onion}")
            logger.debug("HSFETCH response", onion=onion, message=reply.message)

        await self.session.request(f"SETEVENTS {DESC_CONTENT_EVENT}")

        pool: list[IntroductionPoint] = []
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while pending:
            if cancel is not None and cancel.is_set():
                raise CollectionIncompleteError(list(pending), reason="cancelled", collected=len(pool))
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                raise CollectionIncompleteError(list(pending), reason="timeout", collected=len(pool))

            event = await self._next_event(remaining, cancel)
            if event is None:
                continue
            self._handle_event(event, pending, pool)

        return pool

    async def _next_event(self, remaining: float | None, cancel: asyncio.Event | None) -> ControlReply | None:
        """Wait for an event; ``None`` when the deadline passed or ``cancel`` fired first."""
        if cancel is None:
            if remaining is None:
                return await self.session.next_event()
            try:
                return await asyncio.wait_for(self.session.next_event(), timeout=remaining)
            except asyncio.TimeoutError:
                return None

        get_event = asyncio.ensure_future(self.session.next_event())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {get_event, cancelled}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in (get_event, cancelled):
                if not waiter.done():
                    waiter.cancel()
        if get_event in done:
            return get_event.result()
        return None

    def _handle_event(
        self,
        event: ControlReply,
        pending: dict[str, PendingRequest],
        pool: list[IntroductionPoint],
    ) -> None:
        payload = event.data_at(PAYLOAD_FIELD)
        descriptors = parse_descriptors(payload) if payload else []
        if not descriptors:
            logger.debug(
                "There are no descriptors in this document. Skipping.",
                event_name=event.event_name,
                status=event.status,
            )
            return

        for desc in descriptors:
            onion = self._identity_of(desc)
            if onion is None:
                continue
            request = pending.get(onion)
            if request is None:
                logger.debug("Ignoring descriptor nobody asked for", onion=onion)
                continue

            request.satisfied = True
            del pending[onion]
            try:
                points = desc.introduction_points()
            except DescriptorError as e:
                logger.warning("Unusable introduction points", onion=onion, error=str(e))
                points = []
            pool.extend(points)
            logger.debug(
                "Got descriptor",
                onion=onion,
                intro_points=len(points),
                remaining=len(pending),
            )

    def _identity_of(self, desc: HiddenServiceDescriptor) -> str | None:
        try:
            onion = desc.onion_id()
            if self.verify_signatures and not desc.verify():
                logger.warning("Descriptor signature does not verify", onion=onion)
                return None
        except DescriptorError as e:
            logger.debug("Cannot derive descriptor identity", descriptor_id=desc.descriptor_id, error=str(e))
            return None
        return onion
