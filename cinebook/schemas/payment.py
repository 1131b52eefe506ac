"""Payment webhook schemas."""

from pydantic import Field

from cinebook.schemas.common import BaseSchema


class PaymentCallback(BaseSchema):
    """Outcome pushed by the payment provider for a pending charge."""

    reference: str = Field(..., min_length=1, max_length=100)
    succeeded: bool
    transaction_id: str | None = Field(None, max_length=100)
