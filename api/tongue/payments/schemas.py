"""Pydantic schemas for payment webhooks.

Only the fields this service reads are modelled; the processor sends more.
"""

from pydantic import BaseModel, ConfigDict, Field


class PaymentEntity(BaseModel):
    """Payment object carried by the webhook."""

    model_config = ConfigDict(extra="ignore")

    id: str
    order_id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    notes: dict[str, str] = Field(default_factory=dict)
    error_code: str | None = None
    error_description: str | None = None

    @property
    def user_id(self) -> str | None:
        return self.notes.get("userId")

    @property
    def course_id(self) -> str | None:
        return self.notes.get("courseId")


class PaymentWrapper(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entity: PaymentEntity


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment: PaymentWrapper | None = None


class WebhookEvent(BaseModel):
    """Webhook envelope."""

    model_config = ConfigDict(extra="ignore")

    event: str
    payload: WebhookPayload = Field(default_factory=WebhookPayload)

    @property
    def payment(self) -> PaymentEntity | None:
        return self.payload.payment.entity if self.payload.payment else None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the processor."""

    status: str = "success"
    event: str | None = None
    outcome: str | None = None
