"""Unit tests for hsbalance.collector module."""

import asyncio
from datetime import datetime, timezone

import pytest

from hsbalance.collector import DescriptorCollector
from hsbalance.descriptor import Descriptor
from hsbalance.errors import CollectionIncompleteError, ControlError


@pytest.fixture
def backends(backend_keys, make_intro_points):
    """Three backends with three distinct introduction points each."""
    return [(key, make_intro_points(3, start=10 * i)) for i, key in enumerate(backend_keys[:3])]


class TestCollectorCommands:
    """Init and subscribe states."""

    @pytest.mark.asyncio
    async def test_fetches_each_identity_then_subscribes(self, fake_session, backends, make_descriptor_text):
        for key, points in backends:
            fake_session.push(make_descriptor_text(key, points))

        collector = DescriptorCollector(fake_session)
        await collector.collect([key.identity for key, _ in backends], timeout=5)

        assert fake_session.commands == [f"HSFETCH {key.identity}" for key, _ in backends] + [
            "SETEVENTS HS_DESC_CONTENT"
        ]

    @pytest.mark.asyncio
    async def test_identities_are_normalized_and_deduplicated(self, fake_session, backends, make_descriptor_text):
        key, points = backends[0]
        fake_session.push(make_descriptor_text(key, points))

        pool = await DescriptorCollector(fake_session).collect(
            [key.identity.upper() + ".onion", key.identity], timeout=5
        )

        assert fake_session.commands.count(f"HSFETCH {key.identity}") == 1
        assert pool == points

    @pytest.mark.asyncio
    async def test_invalid_identity_rejected_before_any_command(self, fake_session):
        with pytest.raises(ValueError, match="invalid onion identity"):
            await DescriptorCollector(fake_session).collect(["not-an-onion"])
        assert fake_session.commands == []

    @pytest.mark.asyncio
    async def test_fetch_failure_is_fatal(self, fake_session, backends):
        fake_session.fail_commands.add("HSFETCH")
        with pytest.raises(ControlError):
            await DescriptorCollector(fake_session).collect([backends[0][0].identity], timeout=5)
        assert "SETEVENTS HS_DESC_CONTENT" not in fake_session.commands

    @pytest.mark.asyncio
    async def test_subscribe_failure_is_fatal(self, fake_session, backends):
        fake_session.fail_commands.add("SETEVENTS")
        with pytest.raises(ControlError):
            await DescriptorCollector(fake_session).collect([backends[0][0].identity], timeout=5)


class TestCollectorMatching:
    """Event correlation."""

    @pytest.mark.asyncio
    async def test_pool_is_union_in_arrival_order(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, p1), (k2, p2) = backends
        fake_session.push(make_descriptor_text(k2, p2))
        fake_session.push(None)
        fake_session.push("garbage that is not a descriptor")
        fake_session.push_unrelated()
        fake_session.push(make_descriptor_text(k0, p0))
        fake_session.push(make_descriptor_text(k1, p1))

        pool = await DescriptorCollector(fake_session).collect([k0.identity, k1.identity, k2.identity], timeout=5)

        assert pool == p2 + p0 + p1

    @pytest.mark.asyncio
    async def test_duplicate_descriptor_not_counted_twice(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, p1), _ = backends
        fake_session.push(make_descriptor_text(k0, p0))
        fake_session.push(make_descriptor_text(k0, p0, replica=1))
        fake_session.push(make_descriptor_text(k1, p1))

        pool = await DescriptorCollector(fake_session).collect([k0.identity, k1.identity], timeout=5)

        assert pool == p0 + p1

    @pytest.mark.asyncio
    async def test_unsolicited_descriptor_ignored(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, p1), _ = backends
        fake_session.push(make_descriptor_text(k1, p1))
        fake_session.push(make_descriptor_text(k0, p0))

        pool = await DescriptorCollector(fake_session).collect([k0.identity], timeout=5)

        assert pool == p0

    @pytest.mark.asyncio
    async def test_several_descriptors_in_one_payload(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, p1), _ = backends
        fake_session.push(make_descriptor_text(k0, p0) + make_descriptor_text(k1, p1))

        pool = await DescriptorCollector(fake_session).collect([k0.identity, k1.identity], timeout=5)

        assert pool == p0 + p1

    @pytest.mark.asyncio
    async def test_matching_uses_permanent_key_not_event_header(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, _), _ = backends
        fake_session.push(make_descriptor_text(k0, p0), header=f"HS_DESC_CONTENT {k1.identity} x y")

        pool = await DescriptorCollector(fake_session).collect([k0.identity], timeout=5)

        assert pool == p0

    @pytest.mark.asyncio
    async def test_bad_signature_skips_descriptor(self, fake_session, backends, make_descriptor_text):
        (k0, p0), _, _ = backends
        forged = make_descriptor_text(k0, p0).replace("protocol-versions 2,3", "protocol-versions 2", 1)
        fake_session.push(forged)
        fake_session.push(make_descriptor_text(k0, p0))

        pool = await DescriptorCollector(fake_session).collect([k0.identity], timeout=5)

        assert pool == p0

    @pytest.mark.asyncio
    async def test_signature_check_can_be_disabled(self, fake_session, backends, make_descriptor_text):
        (k0, p0), _, _ = backends
        doc = make_descriptor_text(k0, p0).replace("protocol-versions 2,3", "protocol-versions 2", 1)
        fake_session.push(doc)

        pool = await DescriptorCollector(fake_session, verify_signatures=False).collect([k0.identity], timeout=5)

        assert pool == p0

    @pytest.mark.asyncio
    async def test_descriptor_without_intro_points_satisfies_request(self, fake_session, backends, make_descriptor_text):
        (k0, _), (k1, p1), _ = backends
        fake_session.push(make_descriptor_text(k0, []))
        fake_session.push(make_descriptor_text(k1, p1))

        pool = await DescriptorCollector(fake_session).collect([k0.identity, k1.identity], timeout=5)

        assert pool == p1

    @pytest.mark.asyncio
    async def test_unreadable_intro_points_satisfy_request_empty(self, fake_session, backends, make_descriptor_text):
        (k0, _), (k1, p1), _ = backends
        desc = Descriptor(
            replica=0,
            permanent_key=k0.public_key,
            publication_time=datetime(2024, 3, 1, 12, tzinfo=timezone.utc),
            introduction_points=b"\x01\x02encrypted intro points",
        )
        desc.attach_signature(k0.sign(desc.body()))
        fake_session.push(desc.to_bytes().decode("ascii"))
        fake_session.push(make_descriptor_text(k1, p1))

        pool = await DescriptorCollector(fake_session).collect([k0.identity, k1.identity], timeout=5)

        assert pool == p1
        assert fake_session.events.empty()


class TestCollectorDeadline:
    """Unbounded waits become reported failures."""

    @pytest.mark.asyncio
    async def test_timeout_reports_unresolved(self, fake_session, backends, make_descriptor_text):
        (k0, p0), (k1, _), _ = backends
        fake_session.push(make_descriptor_text(k0, p0))

        with pytest.raises(CollectionIncompleteError) as excinfo:
            await DescriptorCollector(fake_session).collect([k0.identity, k1.identity], timeout=0.05)

        assert excinfo.value.unresolved == [k1.identity]
        assert excinfo.value.reason == "timeout"
        assert excinfo.value.collected == len(p0)

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_collection(self, fake_session, backends):
        k0, _ = backends[0]
        cancel = asyncio.Event()
        collector = DescriptorCollector(fake_session)

        task = asyncio.create_task(collector.collect([k0.identity], cancel=cancel))
        await asyncio.sleep(0.01)
        cancel.set()

        with pytest.raises(CollectionIncompleteError) as excinfo:
            await asyncio.wait_for(task, timeout=1)
        assert excinfo.value.reason == "cancelled"
        assert excinfo.value.unresolved == [k0.identity]

    @pytest.mark.asyncio
    async def test_cancel_with_deadline_still_collects(self, fake_session, backends, make_descriptor_text):
        k0, p0 = backends[0]
        fake_session.push(make_descriptor_text(k0, p0))

        pool = await DescriptorCollector(fake_session).collect([k0.identity], timeout=5, cancel=asyncio.Event())

        assert pool == p0
