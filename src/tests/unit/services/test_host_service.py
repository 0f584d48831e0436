"""Unit tests for host_service."""

import pytest
from sqlalchemy.exc import IntegrityError

from fleethub.core.domain import HostStatus
from fleethub.core.errors import HostInUseError, HostNotFoundError, ValidationFailedError
from fleethub.core.models import Host
from fleethub.services import host_service


def _host(**fields) -> Host:
    defaults = dict(id="h1", name="host-1", address="http://host-1:9000", status=HostStatus.ONLINE)
    defaults.update(fields)
    return Host(**defaults)


class TestCreateHost:
    async def test_starts_unknown(self, db) -> None:
        host = await host_service.create_host(db, "host-1", "http://host-1:9000/")

        assert host.status == HostStatus.UNKNOWN
        assert host.address == "http://host-1:9000"

    async def test_duplicate_name(self, db) -> None:
        db.commit.side_effect = IntegrityError("insert", {}, Exception("duplicate"))

        with pytest.raises(ValidationFailedError):
            await host_service.create_host(db, "host-1", "http://host-1:9000")

        db.rollback.assert_awaited_once()


class TestUpdateHost:
    async def test_address_change_leaves_reachability_to_prober(self, db) -> None:
        host = _host(latency_ms=3.0)
        db.get.return_value = host

        await host_service.update_host(db, "h1", address="http://host-1b:9000/")

        assert host.address == "http://host-1b:9000"
        assert host.status == HostStatus.ONLINE
        assert host.latency_ms == 3.0

    async def test_rename_keeps_reachability(self, db) -> None:
        host = _host(latency_ms=3.0)
        db.get.return_value = host

        await host_service.update_host(db, "h1", name="host-one")

        assert host.name == "host-one"
        assert host.status == HostStatus.ONLINE


class TestDeleteHost:
    async def test_not_found(self, db) -> None:
        with pytest.raises(HostNotFoundError):
            await host_service.delete_host(db, "h1")

    async def test_in_use(self, db, scalar_result) -> None:
        db.get.return_value = _host()
        db.execute.return_value = scalar_result(2)

        with pytest.raises(HostInUseError):
            await host_service.delete_host(db, "h1")

        db.delete.assert_not_called()

    async def test_empty_host_deleted(self, db, scalar_result) -> None:
        host = _host()
        db.get.return_value = host
        db.execute.return_value = scalar_result(0)

        await host_service.delete_host(db, "h1")

        db.delete.assert_awaited_once_with(host)


class TestSetReachability:
    async def test_unchanged(self, db) -> None:
        host = _host(latency_ms=1.5)
        db.get.return_value = host

        assert not await host_service.set_reachability(db, "h1", HostStatus.ONLINE, 1.5)
        assert host.last_probe_at is not None

    async def test_changed(self, db) -> None:
        host = _host(latency_ms=1.5)
        db.get.return_value = host

        assert await host_service.set_reachability(db, "h1", HostStatus.OFFLINE, None)
        assert host.status == HostStatus.OFFLINE

    async def test_deleted_host(self, db) -> None:
        assert not await host_service.set_reachability(db, "h1", HostStatus.ONLINE, 1.0)
