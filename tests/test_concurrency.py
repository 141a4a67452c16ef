"""
Concurrency safety tests.

Demonstrates:
1. Two approvals that load the same ride version never lose a passenger:
   the second save conflicts and the whole cycle is retried.
2. With retries exhausted the loser fails with ``ConflictError`` and the
   winner's addition survives.
3. Per-ride locks serialise writers so conflicts do not happen at all.
4. Distributed lock prevents simultaneous acquire.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.domain.entities import Ride
from src.domain.errors import ConflictError
from src.infrastructure.locks import (
    DistributedLock,
    LocalRideLocks,
    NoRideLocks,
    RedisRideLocks,
)
from src.infrastructure.memory import InMemoryRideRepository
from src.services.ride_service import RideService
from tests.conftest import ASHA, BILAL, CHEN, DEEPA, DRIVER, point


class InterleavingRideRepository(InMemoryRideRepository):
    """Yields after every read and can hold readers until N have loaded."""

    def __init__(self):
        super().__init__()
        self.conflicts = 0
        self._expected_readers = 0
        self._arrived = 0
        self._all_loaded = asyncio.Event()

    def hold_reads(self, readers: int) -> None:
        self._expected_readers = readers
        self._arrived = 0
        self._all_loaded = asyncio.Event()

    async def get(self, ride_id: int) -> Ride:
        ride = await super().get(ride_id)
        await asyncio.sleep(0)
        if self._expected_readers:
            self._arrived += 1
            if self._arrived >= self._expected_readers:
                self._expected_readers = 0
                self._all_loaded.set()
            await self._all_loaded.wait()
        return ride

    async def save(self, ride: Ride) -> Ride:
        try:
            return await super().save(ride)
        except ConflictError:
            self.conflicts += 1
            raise


async def _ride_with_two_requests(service: RideService) -> Ride:
    ride = await service.create_ride(ASHA.id, point(0, 0), point(0, 1))
    await service.accept_ride(ride.id, DRIVER.id, 50.0)
    await service.request_join(ride.id, BILAL.id, point(1, 0), point(1, 1))
    await service.request_join(ride.id, CHEN.id, point(2, 0), point(2, 1))
    return await service.get_ride(ride.id)


async def _approve_both(service: RideService, ride_id: int):
    return await asyncio.gather(
        service.approve_join(ride_id, BILAL.id, ASHA.id),
        service.approve_join(ride_id, CHEN.id, ASHA.id),
        return_exceptions=True,
    )


class TestConcurrentApprovals:
    @pytest.mark.asyncio
    async def test_stale_writer_retries_against_fresh_ride(self, users, broadcaster):
        repo = InterleavingRideRepository()
        service = RideService(repo, users, broadcaster, locks=NoRideLocks())
        ride = await _ride_with_two_requests(service)

        repo.hold_reads(2)
        results = await _approve_both(service, ride.id)

        assert not [r for r in results if isinstance(r, Exception)]
        assert repo.conflicts == 1

        stored = await repo.get(ride.id)
        assert sorted(p.user_id for p in stored.passengers) == [ASHA.id, BILAL.id, CHEN.id]
        assert sorted(p.seat_number for p in stored.passengers) == [1, 2, 3]
        assert stored.approvals == []
        assert sum(p.fare_share for p in stored.passengers) == pytest.approx(
            stored.pricing.current_total
        )

        # a fresh recomputation over the final list gives the stored fares
        expected = service.fare_engine.allocate(stored.passengers, stored.pricing.base_fare)
        assert [p.fare_share for p in stored.passengers] == [
            f.fare_share for f in expected.fares
        ]

    @pytest.mark.asyncio
    async def test_without_retries_loser_gets_conflict(self, users, broadcaster):
        repo = InterleavingRideRepository()
        service = RideService(
            repo, users, broadcaster, locks=NoRideLocks(), max_attempts=1
        )
        ride = await _ride_with_two_requests(service)

        repo.hold_reads(2)
        results = await _approve_both(service, ride.id)

        failures = [r for r in results if isinstance(r, ConflictError)]
        successes = [r for r in results if isinstance(r, Ride)]
        assert len(failures) == 1
        assert len(successes) == 1

        stored = await repo.get(ride.id)
        winner = successes[0].passengers[-1].user_id
        assert [p.user_id for p in stored.passengers] == [ASHA.id, winner]
        loser = CHEN.id if winner == BILAL.id else BILAL.id
        assert stored.pending_approval(loser) is not None

    @pytest.mark.asyncio
    async def test_local_locks_serialise_writers(self, users, broadcaster):
        repo = InterleavingRideRepository()
        service = RideService(repo, users, broadcaster, locks=LocalRideLocks())
        ride = await _ride_with_two_requests(service)

        results = await _approve_both(service, ride.id)

        assert all(isinstance(r, Ride) for r in results)
        assert repo.conflicts == 0
        stored = await repo.get(ride.id)
        assert len(stored.passengers) == 3

    @pytest.mark.asyncio
    async def test_many_concurrent_joins(self, users, broadcaster):
        repo = InterleavingRideRepository()
        service = RideService(
            repo, users, broadcaster, locks=NoRideLocks(), max_attempts=5
        )
        ride = await _ride_with_two_requests(service)
        await service.request_join(ride.id, DEEPA.id, point(3, 0), point(3, 1))

        # ride holds the creator plus three seats worth of requests
        stored = await repo.get(ride.id)
        stored.max_passengers = 4
        await repo.save(stored)

        results = await asyncio.gather(
            *(
                service.approve_join(ride.id, uid, ASHA.id)
                for uid in (BILAL.id, CHEN.id, DEEPA.id)
            ),
            return_exceptions=True,
        )

        assert all(isinstance(r, Ride) for r in results)
        final = await repo.get(ride.id)
        assert len({p.user_id for p in final.passengers}) == 4
        assert len({p.seat_number for p in final.passengers}) == 4


class TestRedisRideLocks:
    @pytest.mark.asyncio
    async def test_lock_key_is_per_ride(self, ride_repo, users, broadcaster):
        client = AsyncMock()
        client.set = AsyncMock(return_value=True)
        client.eval = AsyncMock(return_value=1)
        service = RideService(ride_repo, users, broadcaster, locks=RedisRideLocks(client))

        ride = await service.create_ride(ASHA.id, point(0, 0), point(0, 1))
        await service.accept_ride(ride.id, DRIVER.id, 50.0)

        key = client.set.call_args.args[0]
        assert key == f"lock:ride:{ride.id}"
        assert client.set.call_args.kwargs == {"nx": True, "ex": 10}
        client.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_busy_lock_surfaces_as_conflict(self, ride_repo, users, broadcaster):
        client = AsyncMock()
        client.set = AsyncMock(return_value=False)
        service = RideService(
            ride_repo,
            users,
            broadcaster,
            locks=RedisRideLocks(client, wait_seconds=0),
        )
        ride = await service.create_ride(ASHA.id, point(0, 0), point(0, 1))

        with pytest.raises(ConflictError):
            await service.accept_ride(ride.id, DRIVER.id, 50.0)

        stored = await ride_repo.get(ride.id)
        assert stored.driver_id is None
        assert stored.version == ride.version


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_acquire_within_retries_until_free(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(side_effect=[False, True])

        lock = DistributedLock(
            mock_redis, "test-key", ttl_seconds=10, wait_seconds=1.0, retry_interval=0
        )
        assert await lock.acquire_within() is True
        assert mock_redis.set.await_count == 2

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
        assert mock_redis.eval.call_args.args[2:] == ("lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(ConflictError, match="Could not acquire lock"):
            async with lock:
                pass


class TestLocalRideLocks:
    def test_same_ride_same_lock(self):
        locks = LocalRideLocks()
        first = locks(1)
        assert locks(1) is first
        assert locks(2) is not first
