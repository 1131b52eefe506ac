"""Reservation manager: the hold -> confirm/cancel protocol."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncGenerator, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from cinebook.config import Settings, get_settings
from cinebook.errors import (
    AlreadyConfirmed,
    ConfirmationInProgress,
    InvalidSeatSelection,
    NotReservationOwner,
    PaymentFailed,
    ReservationCancelled,
    ReservationExpired,
    ReservationNotFound,
    ReservationNotPending,
    StaleReservation,
    StorageFailure,
)
from cinebook.locks import LockRegistry
from cinebook.models.booking import Booking
from cinebook.models.reservation import PaymentStatus, Reservation, ReservationStatus
from cinebook.payments import (
    PaymentGateway,
    PaymentGatewayError,
    PaymentOutcome,
    PaymentResult,
)
from cinebook.services.inventory_service import InventoryService
from cinebook.services.ledger_service import BookingDraft, BookingLedger
from cinebook.services.pricing import PriceTable, PricingEngine, Quote
from cinebook.services.showtime_service import ShowtimeService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReservationService:
    """
    Orchestrates holds, confirmation and release.

    This is the only caller of the inventory's mutating operations. Every
    seat or reservation transition happens inside the showtime lock, and the
    payment call happens outside it while the seats stay HELD, bounded by
    the remaining hold TTL.
    """

    def __init__(
        self,
        db: AsyncSession,
        locks: LockRegistry,
        payment_gateway: PaymentGateway,
        clock: Callable[[], datetime] = datetime.now,
        settings: Settings | None = None,
    ):
        self.db = db
        self.locks = locks
        self.payment_gateway = payment_gateway
        self.clock = clock
        self.settings = settings or get_settings()
        self.inventory = InventoryService(db, clock)
        self.ledger = BookingLedger(db)
        self.showtimes = ShowtimeService(db, clock)

    @staticmethod
    def generate_reservation_id() -> str:
        return f"RS-{str(ULID())}"

    @asynccontextmanager
    async def _locked(self, showtime_id: str) -> AsyncGenerator[None, None]:
        """Hold the showtime lock; roll back anything left uncommitted on error."""
        async with self.locks.showtime_lock(showtime_id):
            try:
                yield
            except BaseException:
                await self.db.rollback()
                raise

    # Holds

    async def create_hold(
        self,
        showtime_id: str,
        seat_ids: Sequence[str],
        user_id: str,
        session_id: str | None = None,
    ) -> Reservation:
        """
        Hold seats for a user, all or nothing.

        Raises:
            InvalidSeatSelection: empty, too many or duplicate seats
            UnknownSeat: seats that are not part of the showtime
            InvalidShowtime: unknown showtime
            SeatConflict: naming the requested seats already held or booked
        """
        seat_ids = list(seat_ids)
        if not seat_ids:
            raise InvalidSeatSelection("At least one seat is required")

        if len(seat_ids) > self.settings.MAX_SEATS_PER_HOLD:
            raise InvalidSeatSelection(
                f"Cannot hold more than {self.settings.MAX_SEATS_PER_HOLD} seats",
                seat_ids,
            )

        duplicates = sorted({s for s in seat_ids if seat_ids.count(s) > 1})
        if duplicates:
            raise InvalidSeatSelection("Duplicate seats in request", duplicates)

        refunds: list[tuple[str | None, str]] = []
        try:
            async with self._locked(showtime_id):
                reclaimed = await self._expire_stale_in_showtime(showtime_id)
                if reclaimed:
                    await self.db.commit()
                    refunds = self._pending_refunds(reclaimed)

                quote = await self._quote(showtime_id, seat_ids)

                now = self.clock()
                expires_at = now + timedelta(seconds=self.settings.HOLD_TTL_SECONDS)
                reservation_id = self.generate_reservation_id()

                await self.inventory.try_mark_held(
                    showtime_id, seat_ids, reservation_id, expires_at
                )

                reservation = Reservation(
                    reservation_id=reservation_id,
                    showtime_id=showtime_id,
                    user_id=user_id,
                    session_id=session_id,
                    seat_codes=seat_ids,
                    amount=quote.total,
                    status=ReservationStatus.PENDING,
                    payment_status=PaymentStatus.NONE,
                    created_at=now,
                    expires_at=expires_at,
                )
                self.db.add(reservation)
                await self.db.commit()
        finally:
            await self._refund_all(refunds)

        logger.info(
            f"Hold {reservation_id} on {showtime_id} seats {seat_ids} "
            f"for user {user_id} until {expires_at.isoformat()}"
        )
        return reservation

    async def get_reservation(
        self,
        reservation_id: str,
        user_id: str | None = None,
    ) -> Reservation:
        """Get reservation by ID, optionally checking who owns it."""
        reservation = await self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")

        if user_id is not None and reservation.user_id != user_id:
            raise NotReservationOwner("Cannot access another user's reservation")

        return reservation

    async def list_user_reservations(
        self,
        user_id: str,
        active_only: bool = True,
    ) -> list[Reservation]:
        query = select(Reservation).where(Reservation.user_id == user_id)

        if active_only:
            query = query.where(Reservation.status == ReservationStatus.PENDING)

        query = query.order_by(Reservation.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    # Confirmation

    async def confirm(
        self,
        reservation_id: str,
        payment_proof: str,
        idempotency_key: str | None = None,
        user_id: str | None = None,
    ) -> Booking:
        """
        Pay for a hold and turn it into a booking.

        A retry with the same idempotency key returns the booking created by
        the first successful call and never charges twice.

        Raises:
            ReservationExpired: the hold TTL elapsed (seats released)
            PaymentFailed: payment declined or timed out (seats released)
            AlreadyConfirmed: confirmed earlier under another key
            ConfirmationInProgress: another confirm is still running
            StorageFailure: the booking could not be recorded after payment
        """
        key = idempotency_key or reservation_id
        reservation = await self.get_reservation(reservation_id, user_id)
        showtime_id = reservation.showtime_id

        payment: PaymentResult | None = None
        expired: Reservation | None = None

        async with self._locked(showtime_id):
            reservation = await self._get_for_update(reservation_id)

            if reservation.status == ReservationStatus.CONFIRMED:
                return await self._existing_booking(reservation, key)

            self._ensure_pending(reservation)

            if reservation.idempotency_key not in (None, key):
                raise ConfirmationInProgress(
                    f"Reservation {reservation_id} is being confirmed by another request",
                    reservation.seat_codes,
                )

            now = self.clock()
            if reservation.is_expired(now):
                await self._expire(reservation, now)
                await self.db.commit()
                expired = reservation
            elif reservation.payment_status == PaymentStatus.PROCESSING:
                raise ConfirmationInProgress(
                    f"Payment for reservation {reservation_id} is still in progress",
                    reservation.seat_codes,
                )
            elif reservation.payment_status == PaymentStatus.CAPTURED:
                payment = PaymentResult(
                    PaymentOutcome.SUCCESS,
                    transaction_id=reservation.payment_transaction_id,
                )
            else:
                reservation.idempotency_key = key
                reservation.payment_status = PaymentStatus.PROCESSING
                await self.db.commit()

        if expired is not None:
            await self._refund_all(self._pending_refunds([expired]))
            raise ReservationExpired(
                f"Reservation {reservation_id} expired before confirmation",
                expired.seat_codes,
            )

        if payment is None:
            payment = await self._charge(reservation, payment_proof)
            if not payment.succeeded:
                await self._fail_payment(reservation_id, showtime_id, payment)
                raise PaymentFailed(
                    f"Payment for reservation {reservation_id} failed: "
                    f"{payment.reason or payment.outcome.value.lower()}",
                    reservation.seat_codes,
                )

        return await self._complete(reservation_id, showtime_id, key, payment)

    async def _complete(
        self,
        reservation_id: str,
        showtime_id: str,
        key: str,
        payment: PaymentResult,
    ) -> Booking:
        """Turn a paid reservation into a booking, unless its hold was lost meanwhile."""
        lost: Reservation | None = None
        refunded_elsewhere = False

        async with self._locked(showtime_id):
            reservation = await self._get_for_update(reservation_id)

            if reservation.status == ReservationStatus.CONFIRMED:
                return await self._existing_booking(reservation, key)

            now = self.clock()
            if reservation.status != ReservationStatus.PENDING or reservation.is_expired(now):
                # whoever closed a captured hold already refunded it
                refunded_elsewhere = reservation.payment_status == PaymentStatus.REFUNDED
                if reservation.status == ReservationStatus.PENDING:
                    await self._expire(reservation, now)
                lost = reservation
            else:
                try:
                    booking = await self._record_booking(reservation, payment, key, now)
                except StaleReservation:
                    await self.db.rollback()
                    reservation = await self._get_for_update(reservation_id)
                    await self._expire(reservation, now, "hold_lost")
                    lost = reservation

            if lost is not None:
                lost.payment_status = PaymentStatus.REFUNDED
                await self.db.commit()

        if lost is not None:
            if not refunded_elsewhere:
                await self._refund(payment.transaction_id, reservation_id)
            if lost.status == ReservationStatus.CANCELLED:
                raise ReservationCancelled(
                    f"Reservation {reservation_id} was cancelled during payment; "
                    "the payment has been refunded",
                    lost.seat_codes,
                )
            raise ReservationExpired(
                f"Reservation {reservation_id} expired during payment; "
                "the payment has been refunded",
                lost.seat_codes,
            )

        logger.info(
            f"Reservation {reservation_id} confirmed as booking {booking.booking_id} "
            f"for {booking.total_amount}"
        )
        return booking

    async def _record_booking(
        self,
        reservation: Reservation,
        payment: PaymentResult,
        key: str,
        now: datetime,
    ) -> Booking:
        """
        Record the capture, then book seats and append to the ledger in one
        transaction. Both steps retry storage errors with backoff.
        """
        reservation_id = reservation.reservation_id
        showtime_id = reservation.showtime_id
        seat_codes = list(reservation.seat_codes)
        quote = await self._quote(showtime_id, seat_codes)
        draft = BookingDraft(
            reservation_id=reservation_id,
            idempotency_key=key,
            user_id=reservation.user_id,
            quote=quote,
            payment_transaction_id=payment.transaction_id,
            confirmed_at=now,
        )

        async def record_capture() -> None:
            current = await self._get_for_update(reservation_id)
            current.payment_status = PaymentStatus.CAPTURED
            current.payment_transaction_id = payment.transaction_id
            await self.db.commit()

        async def book() -> Booking:
            current = await self._get_for_update(reservation_id)
            booking_id = self.ledger.generate_booking_id()
            await self.inventory.mark_booked(showtime_id, seat_codes, reservation_id, booking_id)
            booking = await self.ledger.append(draft, booking_id=booking_id)
            current.status = ReservationStatus.CONFIRMED
            current.closed_at = now
            current.close_reason = "confirmed"
            await self.db.commit()
            return booking

        if reservation.payment_status != PaymentStatus.CAPTURED:
            try:
                await self._with_storage_retries(record_capture, reservation_id, seat_codes)
            except StorageFailure as e:
                # capture unrecorded: a retry would charge again, so give the money back
                await self._refund(payment.transaction_id, reservation_id)
                await self._release_unrecorded(reservation_id, now)
                raise StorageFailure(
                    f"Payment for reservation {reservation_id} could not be recorded "
                    "and was refunded; the hold has been released",
                    seat_codes,
                ) from e
        return await self._with_storage_retries(book, reservation_id, seat_codes)

    async def _release_unrecorded(self, reservation_id: str, now: datetime) -> None:
        """Cancel a hold whose refunded payment could not be recorded. Caller holds the lock."""
        try:
            reservation = await self._get_for_update(reservation_id)
            await self._close(reservation, ReservationStatus.CANCELLED, "payment_unrecorded", now)
            reservation.payment_status = PaymentStatus.REFUNDED
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.critical(
                f"Could not release refunded reservation {reservation_id}; "
                f"its seats stay held until the hold expires: {e}"
            )
            return

        logger.warning(
            f"Released reservation {reservation_id} after its refunded payment "
            "could not be recorded"
        )

    async def _with_storage_retries(
        self,
        operation: Callable[[], Awaitable[T]],
        reservation_id: str,
        seat_codes: list[str],
    ) -> T:
        retries = self.settings.LEDGER_MAX_RETRIES
        attempt = 0
        while True:
            try:
                return await operation()
            except SQLAlchemyError as e:
                await self.db.rollback()
                if attempt >= retries:
                    logger.critical(
                        f"Could not record booking for paid reservation {reservation_id} "
                        f"after {attempt + 1} attempts: {e}"
                    )
                    raise StorageFailure(
                        f"Booking for reservation {reservation_id} could not be recorded; "
                        "retry the confirmation with the same idempotency key",
                        seat_codes,
                    ) from e

                delay = self.settings.LEDGER_RETRY_BACKOFF_MS * (2**attempt) / 1000
                attempt += 1
                logger.warning(
                    f"Storage error recording reservation {reservation_id} "
                    f"(attempt {attempt}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _existing_booking(self, reservation: Reservation, key: str) -> Booking:
        if reservation.idempotency_key != key:
            raise AlreadyConfirmed(
                f"Reservation {reservation.reservation_id} is already confirmed",
                reservation.seat_codes,
            )

        booking = await self.ledger.get_by_reservation(reservation.reservation_id)
        if booking is None:
            raise StorageFailure(
                f"Confirmed reservation {reservation.reservation_id} has no booking record",
                reservation.seat_codes,
            )
        return booking

    async def _charge(self, reservation: Reservation, payment_proof: str) -> PaymentResult:
        """Charge the quoted amount; a timeout or provider error counts as failure."""
        remaining = (reservation.expires_at - self.clock()).total_seconds()
        timeout = min(float(self.settings.PAYMENT_TIMEOUT_SECONDS), remaining)
        if timeout <= 0:
            return PaymentResult(PaymentOutcome.TIMEOUT, reason="hold expired before payment")

        try:
            return await asyncio.wait_for(
                self.payment_gateway.charge(
                    reservation.amount, reservation.reservation_id, payment_proof
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Payment for {reservation.reservation_id} timed out after {timeout:.1f}s"
            )
            return PaymentResult(PaymentOutcome.TIMEOUT, reason="payment timed out")
        except PaymentGatewayError as e:
            logger.warning(f"Payment for {reservation.reservation_id} failed: {e}")
            return PaymentResult(PaymentOutcome.TIMEOUT, reason="payment outcome unknown")

    async def _fail_payment(
        self,
        reservation_id: str,
        showtime_id: str,
        payment: PaymentResult,
    ) -> None:
        async with self._locked(showtime_id):
            reservation = await self._get_for_update(reservation_id)
            if reservation.status != ReservationStatus.PENDING:
                # already reclaimed while the payment was running
                reservation.payment_status = PaymentStatus.DECLINED
                await self.db.commit()
                return

            reason = (
                "payment_timeout"
                if payment.outcome == PaymentOutcome.TIMEOUT
                else "payment_failed"
            )
            await self._close(reservation, ReservationStatus.CANCELLED, reason, self.clock())
            reservation.payment_status = PaymentStatus.DECLINED
            await self.db.commit()

        logger.warning(
            f"Payment {payment.outcome.value} for reservation {reservation_id}; "
            f"released seats {reservation.seat_codes}"
        )

    # Cancellation and expiry

    async def cancel(self, reservation_id: str, user_id: str | None = None) -> Reservation:
        """
        Release a hold early. Only legal while the reservation is PENDING.

        Raises:
            ReservationNotPending: reservation already confirmed or closed
            ConfirmationInProgress: payment is running for this hold
            ReservationExpired: the hold had already expired
        """
        reservation = await self.get_reservation(reservation_id, user_id)
        expired = False

        async with self._locked(reservation.showtime_id):
            reservation = await self._get_for_update(reservation_id)

            if reservation.status != ReservationStatus.PENDING:
                raise ReservationNotPending(
                    f"Reservation {reservation_id} is {reservation.status.value.lower()}",
                    reservation.seat_codes,
                )

            if reservation.payment_status == PaymentStatus.PROCESSING:
                raise ConfirmationInProgress(
                    f"Payment for reservation {reservation_id} is in progress",
                    reservation.seat_codes,
                )

            now = self.clock()
            if reservation.is_expired(now):
                await self._expire(reservation, now)
                expired = True
            else:
                await self._close(reservation, ReservationStatus.CANCELLED, "user_cancelled", now)

            captured = reservation.payment_status == PaymentStatus.CAPTURED
            if captured:
                reservation.payment_status = PaymentStatus.REFUNDED
            await self.db.commit()

        if captured:
            await self._refund(reservation.payment_transaction_id, reservation_id)

        if expired:
            raise ReservationExpired(
                f"Reservation {reservation_id} had already expired",
                reservation.seat_codes,
            )

        logger.info(f"Reservation {reservation_id} cancelled, released {reservation.seat_codes}")
        return reservation

    async def expire_stale_reservations(self) -> int:
        """
        Reaper sweep: expire PENDING reservations past their TTL.

        Each showtime is swept under its lock and rows are re-checked there,
        so a reservation is either confirmed or reclaimed, never both.

        Returns:
            Number of reservations expired
        """
        result = await self.db.execute(
            select(Reservation.showtime_id)
            .where(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.expires_at <= self.clock(),
            )
            .distinct()
        )
        showtime_ids = list(result.scalars().all())

        count = 0
        for showtime_id in showtime_ids:
            refunds: list[tuple[str | None, str]] = []
            async with self._locked(showtime_id):
                expired = await self._expire_stale_in_showtime(showtime_id)
                if expired:
                    await self.db.commit()
                    refunds = self._pending_refunds(expired)

            await self._refund_all(refunds)
            count += len(expired)

        return count

    async def _expire_stale_in_showtime(self, showtime_id: str) -> list[Reservation]:
        """Expire a showtime's PENDING reservations past TTL. Caller holds the lock and commits."""
        now = self.clock()
        result = await self.db.execute(
            select(Reservation)
            .where(
                Reservation.showtime_id == showtime_id,
                Reservation.status == ReservationStatus.PENDING,
                Reservation.expires_at <= now,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        expired = list(result.scalars().all())

        for reservation in expired:
            await self._expire(reservation, now)
            logger.info(
                f"Expired reservation {reservation.reservation_id}, "
                f"released {reservation.seat_codes}"
            )

        return expired

    # Helpers

    async def _expire(self, reservation: Reservation, now: datetime, reason: str = "hold_expired") -> None:
        """Close a PENDING reservation as EXPIRED; a captured payment is marked for refund."""
        await self._close(reservation, ReservationStatus.EXPIRED, reason, now)
        if reservation.payment_status == PaymentStatus.CAPTURED:
            reservation.payment_status = PaymentStatus.REFUNDED

    async def _close(
        self,
        reservation: Reservation,
        status: ReservationStatus,
        reason: str,
        now: datetime,
    ) -> None:
        await self.inventory.release(
            reservation.showtime_id, reservation.seat_codes, reservation.reservation_id
        )
        reservation.status = status
        reservation.closed_at = now
        reservation.close_reason = reason

    async def _get_for_update(self, reservation_id: str) -> Reservation:
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.reservation_id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        return reservation

    def _ensure_pending(self, reservation: Reservation) -> None:
        if reservation.status == ReservationStatus.EXPIRED:
            raise ReservationExpired(
                f"Reservation {reservation.reservation_id} has expired",
                reservation.seat_codes,
            )
        if reservation.status == ReservationStatus.CANCELLED:
            raise ReservationCancelled(
                f"Reservation {reservation.reservation_id} was cancelled "
                f"({reservation.close_reason})",
                reservation.seat_codes,
            )

    async def _quote(self, showtime_id: str, seat_codes: Sequence[str]) -> Quote:
        showtime = await self.showtimes.get_showtime(showtime_id)
        return PricingEngine.quote(PriceTable.from_showtime(showtime), seat_codes)

    @staticmethod
    def _pending_refunds(reservations: list[Reservation]) -> list[tuple[str | None, str]]:
        """(transaction id, reservation id) of closed reservations whose capture must be refunded."""
        return [
            (r.payment_transaction_id, r.reservation_id)
            for r in reservations
            if r.payment_status == PaymentStatus.REFUNDED
        ]

    async def _refund_all(self, refunds: list[tuple[str | None, str]]) -> None:
        for transaction_id, reservation_id in refunds:
            await self._refund(transaction_id, reservation_id)

    async def _refund(self, transaction_id: str | None, reservation_id: str) -> None:
        if not transaction_id:
            return
        try:
            await self.payment_gateway.refund(transaction_id)
        except PaymentGatewayError as e:
            logger.error(
                f"Refund of {transaction_id} for reservation {reservation_id} failed: {e}"
            )
