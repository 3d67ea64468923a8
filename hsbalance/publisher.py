"""Publication of signed descriptors with ``HSPOST``."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import structlog

from hsbalance.control import ControlSession
from hsbalance.descriptor import Descriptor
from hsbalance.errors import ControlError, PublishError

logger = structlog.get_logger(__name__)


class PublishStatus(Enum):
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PublishOutcome:
    index: int
    replica: int
    status: PublishStatus
    error: Optional[ControlError] = None


@dataclass
class PublishReport:
    """Per-descriptor results of one publishing pass."""

    outcomes: List[PublishOutcome] = field(default_factory=list)

    @property
    def published(self) -> List[int]:
        return [o.index for o in self.outcomes if o.status is PublishStatus.PUBLISHED]

    @property
    def failed(self) -> Optional[PublishOutcome]:
        for outcome in self.outcomes:
            if outcome.status is PublishStatus.FAILED:
                return outcome
        return None

    @property
    def failed_index(self) -> Optional[int]:
        failed = self.failed
        return None if failed is None else failed.index

    @property
    def ok(self) -> bool:
        return self.failed is None

    def raise_for_failure(self) -> None:
        failed = self.failed
        if failed is not None:
            raise PublishError(failed.index, published=self.published, cause=failed.error)


class Publisher:
    """
    Submit signed descriptors in order.

    Publication is not atomic across replicas: the first failure stops the
    pass, and descriptors already accepted stay published.
    """

    def __init__(self, session: ControlSession) -> None:
        self.session = session

    async def publish(self, descriptors: Sequence[Descriptor]) -> PublishReport:
        """
        Publish ``descriptors`` with ``HSPOST``.

        Raises:
            ValueError: If any descriptor is unsigned. Nothing is sent.
        """
        unsigned = [d.replica for d in descriptors if not d.is_signed]
        if unsigned:
            raise ValueError(f"refusing to publish unsigned replicas {unsigned}")

        report = PublishReport()
        failed = False
        for index, desc in enumerate(descriptors):
            if failed:
                report.outcomes.append(PublishOutcome(index, desc.replica, PublishStatus.SKIPPED))
                continue
            try:
                reply = await self.session.request("HSPOST", data=desc.to_bytes())
            except ControlError as e:
                logger.error("HSPOST failed", index=index, replica=desc.replica, error=str(e))
                report.outcomes.append(PublishOutcome(index, desc.replica, PublishStatus.FAILED, e))
                failed = True
                continue
            logger.debug("HSPOST response", index=index, replica=desc.replica, message=reply.message)
            report.outcomes.append(PublishOutcome(index, desc.replica, PublishStatus.PUBLISHED))
        return report
