import asyncio

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.errors import (
    AlreadyConfirmed,
    ConfirmationInProgress,
    InvalidSeatSelection,
    InvalidShowtime,
    NotReservationOwner,
    PaymentFailed,
    ReservationCancelled,
    ReservationExpired,
    ReservationNotFound,
    ReservationNotPending,
    SeatConflict,
    StorageFailure,
    UnknownSeat,
)
from cinebook.models.booking import Booking
from cinebook.models.reservation import PaymentStatus, Reservation, ReservationStatus
from cinebook.models.seat import SeatStatus
from cinebook.payments import CallbackPaymentGateway, PaymentOutcome
from cinebook.services.ledger_service import BookingLedger
from cinebook.services.reservation_service import ReservationService

from tests.conftest import booking_count, load_reservation


class TestCreateHold:
    async def test_hold_sets_ttl_and_amount(self, make_service, showtime, seat_map, clock):
        reservation = await make_service().create_hold(showtime, ["A3", "D1"], "U1", "sess-1")

        assert reservation.reservation_id.startswith("RS-")
        assert reservation.status == ReservationStatus.PENDING
        assert reservation.payment_status == PaymentStatus.NONE
        assert reservation.amount == 500
        assert reservation.session_id == "sess-1"
        assert (reservation.expires_at - reservation.created_at).total_seconds() == 300

        seats = await seat_map()
        assert seats["A3"] == SeatStatus.HELD
        assert seats["D1"] == SeatStatus.HELD

    async def test_disjoint_concurrent_holds_both_succeed(self, make_service, showtime):
        first, second = await asyncio.gather(
            make_service().create_hold(showtime, ["A3", "A4"], "U1"),
            make_service().create_hold(showtime, ["A5", "A6"], "U2"),
        )

        assert first.seat_codes == ["A3", "A4"]
        assert second.seat_codes == ["A5", "A6"]

    async def test_overlapping_concurrent_holds_one_wins(self, make_service, showtime, seat_map):
        results = await asyncio.gather(
            make_service().create_hold(showtime, ["A3", "A4"], "U1"),
            make_service().create_hold(showtime, ["A3", "A5"], "U2"),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Reservation)]
        losers = [r for r in results if isinstance(r, SeatConflict)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert losers[0].seats == ["A3"]

        # the loser held nothing
        seats = await seat_map()
        held = {code for code, status in seats.items() if status == SeatStatus.HELD}
        assert held == set(winners[0].seat_codes)

    async def test_conflict_with_prebooked_seat(self, make_service, showtime):
        with pytest.raises(SeatConflict) as exc_info:
            await make_service().create_hold(showtime, ["A2", "A3"], "U1")
        assert exc_info.value.seats == ["A2"]

    async def test_rejects_empty_duplicate_and_oversized(self, make_service, showtime):
        service = make_service()

        with pytest.raises(InvalidSeatSelection):
            await service.create_hold(showtime, [], "U1")
        with pytest.raises(InvalidSeatSelection) as exc_info:
            await service.create_hold(showtime, ["A3", "A4", "A3"], "U1")
        assert exc_info.value.seats == ["A3"]
        with pytest.raises(InvalidSeatSelection):
            await service.create_hold(showtime, [f"C{n}" for n in range(1, 8)], "U1")

    async def test_unknown_seat_and_showtime(self, make_service, showtime):
        with pytest.raises(UnknownSeat) as exc_info:
            await make_service().create_hold(showtime, ["A3", "Z1"], "U1")
        assert exc_info.value.seats == ["Z1"]

        with pytest.raises(InvalidShowtime):
            await make_service().create_hold("NOPE", ["A3"], "U1")

    async def test_unknown_showtimes_leave_no_locks_behind(self, make_service, showtime, locks):
        service = make_service()
        for n in range(200):
            with pytest.raises(InvalidShowtime):
                await service.create_hold(f"BOGUS-{n}", ["A3"], "U1")

        assert locks._locks == {}

    async def test_expired_hold_is_reclaimed_by_next_hold(
        self, make_service, session_factory, showtime, clock
    ):
        first = await make_service().create_hold(showtime, ["B1"], "U1")

        clock.advance(6 * 60)
        second = await make_service().create_hold(showtime, ["B1"], "U3")

        assert second.user_id == "U3"
        stale = await load_reservation(session_factory, first.reservation_id)
        assert stale.status == ReservationStatus.EXPIRED
        assert stale.close_reason == "hold_expired"


class TestConfirm:
    async def test_showtime_scenario(
        self, make_service, session_factory, showtime, seat_map, payment_gateway
    ):
        held, rejected = await asyncio.gather(
            make_service().create_hold(showtime, ["A3", "A4"], "U1"),
            make_service().create_hold(showtime, ["A3", "A5"], "U2"),
            return_exceptions=True,
        )
        assert isinstance(held, Reservation)
        assert isinstance(rejected, SeatConflict)
        assert rejected.seats == ["A3"]

        booking = await make_service().confirm(held.reservation_id, "card-ok", user_id="U1")

        assert booking.booking_id.startswith("BK-")
        assert booking.seat_codes == ["A3", "A4"]
        assert booking.total_amount == 700
        assert [(s.seat_code, s.price) for s in booking.booking_seats] == [("A3", 350), ("A4", 350)]
        assert payment_gateway.charges == [(700, held.reservation_id, "card-ok")]

        seats = await seat_map()
        assert seats["A3"] == SeatStatus.BOOKED
        assert seats["A4"] == SeatStatus.BOOKED
        assert seats["A5"] == SeatStatus.AVAILABLE

        retry = await make_service().create_hold(showtime, ["A5"], "U2")
        assert retry.seat_codes == ["A5"]

        stored = await load_reservation(session_factory, held.reservation_id)
        assert stored.status == ReservationStatus.CONFIRMED
        assert stored.payment_status == PaymentStatus.CAPTURED

    async def test_confirm_twice_same_key_is_one_booking(
        self, make_service, session_factory, showtime, payment_gateway
    ):
        reservation = await make_service().create_hold(showtime, ["B2", "B3"], "U1")

        first = await make_service().confirm(reservation.reservation_id, "card", "key-1")
        second = await make_service().confirm(reservation.reservation_id, "card", "key-1")

        assert first.booking_id == second.booking_id
        assert len(payment_gateway.charges) == 1
        assert await booking_count(session_factory) == 1

    async def test_default_key_is_reservation_id(self, make_service, showtime):
        reservation = await make_service().create_hold(showtime, ["B2"], "U1")

        first = await make_service().confirm(reservation.reservation_id, "card")
        second = await make_service().confirm(reservation.reservation_id, "card")

        assert first.booking_id == second.booking_id
        assert first.idempotency_key == reservation.reservation_id

    async def test_concurrent_confirms_charge_once(
        self, make_service, session_factory, showtime, payment_gateway
    ):
        reservation = await make_service().create_hold(showtime, ["B4"], "U1")

        results = await asyncio.gather(
            make_service().confirm(reservation.reservation_id, "card", "key-1"),
            make_service().confirm(reservation.reservation_id, "card", "key-2"),
            return_exceptions=True,
        )

        bookings = [r for r in results if isinstance(r, Booking)]
        assert len(bookings) == 1
        # the loser sees the payment running, or the finished booking under the other key
        assert isinstance(
            next(r for r in results if not isinstance(r, Booking)),
            (ConfirmationInProgress, AlreadyConfirmed),
        )
        assert len(payment_gateway.charges) == 1
        assert await booking_count(session_factory) == 1

    async def test_other_key_after_confirm_is_already_confirmed(self, make_service, showtime):
        reservation = await make_service().create_hold(showtime, ["B5"], "U1")
        await make_service().confirm(reservation.reservation_id, "card", "key-1")

        with pytest.raises(AlreadyConfirmed) as exc_info:
            await make_service().confirm(reservation.reservation_id, "card", "key-2")
        assert exc_info.value.seats == ["B5"]

    async def test_confirm_after_ttl_is_expired(
        self, make_service, session_factory, showtime, seat_map, clock, payment_gateway
    ):
        reservation = await make_service().create_hold(showtime, ["C3", "C4"], "U1")
        clock.advance(300)

        with pytest.raises(ReservationExpired) as exc_info:
            await make_service().confirm(reservation.reservation_id, "card")
        assert exc_info.value.seats == ["C3", "C4"]

        # and stays expired on retry
        with pytest.raises(ReservationExpired):
            await make_service().confirm(reservation.reservation_id, "card")

        assert payment_gateway.charges == []
        assert await booking_count(session_factory) == 0
        seats = await seat_map()
        assert seats["C3"] == SeatStatus.AVAILABLE
        assert seats["C4"] == SeatStatus.AVAILABLE

    async def test_declined_payment_releases_seats(
        self, make_service, session_factory, showtime, seat_map, payment_gateway
    ):
        payment_gateway.outcome = PaymentOutcome.DECLINED
        reservation = await make_service().create_hold(showtime, ["C5"], "U1")

        with pytest.raises(PaymentFailed) as exc_info:
            await make_service().confirm(reservation.reservation_id, "card")
        assert exc_info.value.seats == ["C5"]

        assert (await seat_map())["C5"] == SeatStatus.AVAILABLE
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.CANCELLED
        assert stored.close_reason == "payment_failed"
        assert stored.payment_status == PaymentStatus.DECLINED

        with pytest.raises(ReservationCancelled):
            await make_service().confirm(reservation.reservation_id, "card")

    async def test_payment_wait_is_bounded_by_hold_ttl(
        self, make_service, session_factory, showtime, seat_map, clock, payment_gateway
    ):
        payment_gateway.hang = True
        reservation = await make_service().create_hold(showtime, ["C6"], "U1")
        clock.advance(299.8)

        with pytest.raises(PaymentFailed):
            await make_service().confirm(reservation.reservation_id, "card")

        assert (await seat_map())["C6"] == SeatStatus.AVAILABLE
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.close_reason == "payment_timeout"

    async def test_reaper_wins_during_payment_refunds(
        self, make_service, session_factory, showtime, seat_map, clock, payment_gateway
    ):
        reservation = await make_service().create_hold(showtime, ["C7"], "U1")

        async def expire_during_payment(reference):
            clock.advance(301)
            assert await make_service().expire_stale_reservations() == 1

        payment_gateway.on_charge = expire_during_payment

        with pytest.raises(ReservationExpired):
            await make_service().confirm(reservation.reservation_id, "card")

        assert payment_gateway.refunds == ["txn_1"]
        assert await booking_count(session_factory) == 0
        assert (await seat_map())["C7"] == SeatStatus.AVAILABLE
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.EXPIRED
        assert stored.payment_status == PaymentStatus.REFUNDED

    async def test_confirm_and_reaper_race_after_expiry(
        self, make_service, session_factory, showtime, seat_map, clock
    ):
        reservation = await make_service().create_hold(showtime, ["C8"], "U1")
        clock.advance(301)

        confirmed, reaped = await asyncio.gather(
            make_service().confirm(reservation.reservation_id, "card"),
            make_service().expire_stale_reservations(),
            return_exceptions=True,
        )

        assert isinstance(confirmed, ReservationExpired)
        assert reaped in (0, 1)
        assert await booking_count(session_factory) == 0
        assert (await seat_map())["C8"] == SeatStatus.AVAILABLE

    async def test_owner_is_checked(self, make_service, showtime):
        reservation = await make_service().create_hold(showtime, ["C9"], "U1")

        with pytest.raises(NotReservationOwner):
            await make_service().confirm(reservation.reservation_id, "card", user_id="U2")

    async def test_unknown_reservation(self, make_service, showtime):
        with pytest.raises(ReservationNotFound):
            await make_service().confirm("RS-missing", "card")

    async def test_callback_payment(self, session_factory, locks, clock, settings, showtime):
        gateway = CallbackPaymentGateway()

        async with session_factory() as session:
            service = ReservationService(session, locks, gateway, clock, settings)
            reservation = await service.create_hold(showtime, ["D2", "D3"], "U1")

        async with session_factory() as session:
            service = ReservationService(session, locks, gateway, clock, settings)
            task = asyncio.create_task(service.confirm(reservation.reservation_id, "card"))

            for _ in range(500):
                if gateway.is_pending(reservation.reservation_id):
                    break
                await asyncio.sleep(0.01)
            assert gateway.resolve(reservation.reservation_id, True, "psp_42")

            booking = await asyncio.wait_for(task, timeout=5)

        assert booking.total_amount == 300
        assert booking.payment_transaction_id == "psp_42"
        assert not gateway.resolve(reservation.reservation_id, True, "psp_42")


class TestStorageFailure:
    @pytest.fixture
    def failing_append(self, monkeypatch):
        calls = {"count": 0, "fail": 10}
        original = BookingLedger.append

        async def append(self, draft, booking_id=None):
            calls["count"] += 1
            if calls["count"] <= calls["fail"]:
                raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))
            return await original(self, draft, booking_id)

        monkeypatch.setattr(BookingLedger, "append", append)
        return calls

    async def test_transient_error_is_retried(
        self, make_service, session_factory, showtime, failing_append
    ):
        failing_append["fail"] = 1
        reservation = await make_service().create_hold(showtime, ["D4"], "U1")

        booking = await make_service().confirm(reservation.reservation_id, "card")

        assert booking.seat_codes == ["D4"]
        assert failing_append["count"] == 2
        assert await booking_count(session_factory) == 1

    async def test_exhausted_retries_leave_no_half_booking(
        self, make_service, session_factory, showtime, seat_map, payment_gateway, failing_append
    ):
        reservation = await make_service().create_hold(showtime, ["D5"], "U1")

        with pytest.raises(StorageFailure) as exc_info:
            await make_service().confirm(reservation.reservation_id, "card", "key-1")
        assert exc_info.value.seats == ["D5"]

        # LEDGER_MAX_RETRIES=2 -> three attempts
        assert failing_append["count"] == 3
        assert (await seat_map())["D5"] == SeatStatus.HELD
        assert await booking_count(session_factory) == 0
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.PENDING
        assert stored.payment_status == PaymentStatus.CAPTURED

        # storage is back: retrying with the same key books without charging again
        failing_append["fail"] = 0
        booking = await make_service().confirm(reservation.reservation_id, "card", "key-1")

        assert booking.payment_transaction_id == "txn_1"
        assert len(payment_gateway.charges) == 1
        assert (await seat_map())["D5"] == SeatStatus.BOOKED

    async def test_captured_hold_expiring_is_refunded(
        self, make_service, session_factory, showtime, clock, payment_gateway, failing_append
    ):
        reservation = await make_service().create_hold(showtime, ["D6"], "U1")
        with pytest.raises(StorageFailure):
            await make_service().confirm(reservation.reservation_id, "card")

        clock.advance(301)
        assert await make_service().expire_stale_reservations() == 1

        assert payment_gateway.refunds == ["txn_1"]
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.payment_status == PaymentStatus.REFUNDED

    async def test_unrecorded_capture_is_refunded_and_released(
        self, make_service, session_factory, showtime, seat_map, payment_gateway, monkeypatch
    ):
        reservation = await make_service().create_hold(showtime, ["C7"], "U1")
        service = make_service()
        original_commit = AsyncSession.commit
        commits = {"count": 0}

        async def commit(self):
            if self is service.db:
                commits["count"] += 1
                # the first commit marks the payment PROCESSING; the next three record the capture
                if 2 <= commits["count"] <= 4:
                    raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            return await original_commit(self)

        monkeypatch.setattr(AsyncSession, "commit", commit)

        with pytest.raises(StorageFailure) as exc_info:
            await service.confirm(reservation.reservation_id, "card")
        assert exc_info.value.seats == ["C7"]

        assert payment_gateway.refunds == ["txn_1"]
        assert (await seat_map())["C7"] == SeatStatus.AVAILABLE
        assert await booking_count(session_factory) == 0
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.CANCELLED
        assert stored.close_reason == "payment_unrecorded"
        assert stored.payment_status == PaymentStatus.REFUNDED

    async def test_retry_after_reaper_refund_does_not_refund_again(
        self, make_service, session_factory, showtime, clock, payment_gateway, failing_append,
        monkeypatch,
    ):
        reservation = await make_service().create_hold(showtime, ["D7"], "U1")
        with pytest.raises(StorageFailure):
            await make_service().confirm(reservation.reservation_id, "card", "key-1")
        failing_append["fail"] = 0

        original_complete = ReservationService._complete

        async def reaped_first(self, *args):
            clock.advance(301)
            assert await make_service().expire_stale_reservations() == 1
            return await original_complete(self, *args)

        monkeypatch.setattr(ReservationService, "_complete", reaped_first)

        with pytest.raises(ReservationExpired):
            await make_service().confirm(reservation.reservation_id, "card", "key-1")

        assert payment_gateway.refunds == ["txn_1"]
        assert len(payment_gateway.charges) == 1
        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.EXPIRED
        assert stored.payment_status == PaymentStatus.REFUNDED


class TestCancel:
    async def test_cancel_releases_seats(self, make_service, showtime, seat_map):
        reservation = await make_service().create_hold(showtime, ["B6", "B7"], "U1")

        cancelled = await make_service().cancel(reservation.reservation_id, "U1")

        assert cancelled.status == ReservationStatus.CANCELLED
        assert cancelled.close_reason == "user_cancelled"
        seats = await seat_map()
        assert seats["B6"] == SeatStatus.AVAILABLE
        assert seats["B7"] == SeatStatus.AVAILABLE

    async def test_cancel_only_while_pending(self, make_service, showtime):
        reservation = await make_service().create_hold(showtime, ["B8"], "U1")
        await make_service().confirm(reservation.reservation_id, "card")

        with pytest.raises(ReservationNotPending):
            await make_service().cancel(reservation.reservation_id)

    async def test_cancel_expired_hold(self, make_service, session_factory, showtime, clock):
        reservation = await make_service().create_hold(showtime, ["C10"], "U1")
        clock.advance(400)

        with pytest.raises(ReservationExpired):
            await make_service().cancel(reservation.reservation_id)

        stored = await load_reservation(session_factory, reservation.reservation_id)
        assert stored.status == ReservationStatus.EXPIRED

    async def test_cancel_during_payment_is_refused(
        self, make_service, session_factory, showtime, payment_gateway
    ):
        reservation = await make_service().create_hold(showtime, ["D7"], "U1")
        refused = []

        async def cancel_during_payment(reference):
            with pytest.raises(ConfirmationInProgress):
                await make_service().cancel(reference)
            refused.append(reference)

        payment_gateway.on_charge = cancel_during_payment

        booking = await make_service().confirm(reservation.reservation_id, "card")

        assert refused == [reservation.reservation_id]
        assert booking.seat_codes == ["D7"]

    async def test_cancel_someone_elses_hold(self, make_service, showtime):
        reservation = await make_service().create_hold(showtime, ["D8"], "U1")

        with pytest.raises(NotReservationOwner):
            await make_service().cancel(reservation.reservation_id, "U2")


class TestQueries:
    async def test_list_user_reservations(self, make_service, showtime):
        kept = await make_service().create_hold(showtime, ["D9"], "U1")
        dropped = await make_service().create_hold(showtime, ["D10"], "U1")
        await make_service().cancel(dropped.reservation_id)

        active = await make_service().list_user_reservations("U1")
        everything = await make_service().list_user_reservations("U1", active_only=False)

        assert [r.reservation_id for r in active] == [kept.reservation_id]
        assert {r.reservation_id for r in everything} == {
            kept.reservation_id,
            dropped.reservation_id,
        }
