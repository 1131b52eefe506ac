"""Payment collaborators.

The booking core only needs ``charge`` and ``refund``; anything that can
settle ``(amount, reference)`` and report success or failure plugs in here.
"""

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)


class PaymentOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    DECLINED = "DECLINED"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class PaymentResult:
    outcome: PaymentOutcome
    transaction_id: str | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == PaymentOutcome.SUCCESS


class PaymentGatewayError(Exception):
    """The payment provider could not be reached or answered garbage."""

    pass


class PaymentGateway(Protocol):
    async def charge(self, amount: int, reference: str, proof: str) -> PaymentResult: ...

    async def refund(self, transaction_id: str) -> None: ...


class SimulatedPaymentGateway:
    """
    Stand-in provider for development.

    Every charge succeeds after ``delay_seconds`` unless the payment proof
    starts with ``decline``.
    """

    def __init__(self, delay_seconds: float = 0):
        self.delay_seconds = delay_seconds
        self.refunded: list[str] = []

    async def charge(self, amount: int, reference: str, proof: str) -> PaymentResult:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if proof.lower().startswith("decline"):
            logger.info(f"Simulated payment declined for {reference}")
            return PaymentResult(PaymentOutcome.DECLINED, reason="declined by provider")

        transaction_id = f"sim_{uuid4().hex}"
        logger.info(f"Simulated payment of {amount} captured for {reference}: {transaction_id}")
        return PaymentResult(PaymentOutcome.SUCCESS, transaction_id=transaction_id)

    async def refund(self, transaction_id: str) -> None:
        self.refunded.append(transaction_id)
        logger.info(f"Simulated refund of {transaction_id}")


class CallbackPaymentGateway:
    """
    Provider that reports the outcome asynchronously through a webhook.

    ``charge`` starts the payment through ``initiator`` and then waits for
    ``resolve`` to be called with the same reference. The caller bounds the
    wait; a missing callback is a timeout, never an implicit success.
    """

    def __init__(
        self,
        initiator: Callable[[int, str, str], Awaitable[None]] | None = None,
        refunder: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.initiator = initiator
        self.refunder = refunder
        self._pending: dict[str, asyncio.Future[PaymentResult]] = {}

    async def charge(self, amount: int, reference: str, proof: str) -> PaymentResult:
        if reference in self._pending:
            raise PaymentGatewayError(f"Charge already pending for {reference}")

        future: asyncio.Future[PaymentResult] = asyncio.get_running_loop().create_future()
        self._pending[reference] = future
        try:
            if self.initiator is not None:
                await self.initiator(amount, reference, proof)
            logger.info(f"Payment of {amount} initiated for {reference}, awaiting callback")
            return await future
        finally:
            self._pending.pop(reference, None)

    def resolve(
        self,
        reference: str,
        succeeded: bool,
        transaction_id: str | None = None,
    ) -> bool:
        """
        Deliver a provider callback.

        Returns:
            False if no charge is waiting on ``reference`` (late or unknown
            callback), True otherwise.
        """
        future = self._pending.get(reference)
        if future is None or future.done():
            logger.warning(f"Payment callback for unknown reference {reference}")
            return False

        if succeeded:
            future.set_result(PaymentResult(PaymentOutcome.SUCCESS, transaction_id=transaction_id))
        else:
            future.set_result(PaymentResult(PaymentOutcome.DECLINED, reason="declined by provider"))
        return True

    def is_pending(self, reference: str) -> bool:
        return reference in self._pending

    async def refund(self, transaction_id: str) -> None:
        if self.refunder is not None:
            await self.refunder(transaction_id)
        logger.info(f"Refund requested for {transaction_id}")
