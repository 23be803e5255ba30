import pytest

from core.breaker import CircuitBreaker, CircuitOpenError, breaker
from core.exceptions import NotFoundError
from core.friendly_msg import get_friendly_message
from repos.booking_repo import BookingRepo
from services.booking_service import BookingService
from services.chat_service import ConversationService


async def test_domain_errors_do_not_trip_the_breaker():
    breaker = CircuitBreaker(failure_threshold=2)

    async def missing():
        raise NotFoundError("Booking")

    for _ in range(5):
        with pytest.raises(NotFoundError):
            await breaker.call(missing)

    assert breaker.state == "CLOSED"
    assert breaker.failure_count == 0


async def test_opens_after_repeated_infrastructure_failures():
    breaker = CircuitBreaker(failure_threshold=2, base_recovery_time=30)
    calls = []

    async def flaky():
        calls.append(1)
        raise ConnectionError("database unreachable")

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(flaky)

    assert breaker.state == "OPEN"
    with pytest.raises(CircuitOpenError) as exc:
        await breaker.call(flaky)
    assert len(calls) == 2
    assert "recovering" in get_friendly_message(exc.value)


async def test_half_open_call_closes_again():
    breaker = CircuitBreaker(failure_threshold=1, base_recovery_time=0)

    async def broken():
        raise TimeoutError()

    async def healthy():
        return "ok"

    with pytest.raises(TimeoutError):
        await breaker.call(broken)
    assert breaker.state == "OPEN"

    assert await breaker.call(healthy) == "ok"
    assert breaker.state == "CLOSED"


async def test_services_share_one_breaker_across_requests(db, seed, monkeypatch):
    async def unreachable(self, *args, **kwargs):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(BookingRepo, "list_bookings", unreachable)
    monkeypatch.setattr(breaker, "base_recovery_time", 30)

    # each request builds its own service, as the routes do
    for _ in range(breaker.failure_threshold):
        with pytest.raises(ConnectionError):
            await BookingService(db).list_bookings(seed.admin)

    assert breaker.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await ConversationService(db).unread_count(seed.sales)
