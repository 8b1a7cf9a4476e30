from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator
from services.billing_service.models import PaymentProvider, PayOption


class PayerDetails(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone_number: str = Field(min_length=9, max_length=20)
    relationship: str = Field(min_length=1, max_length=50)  # parent, guardian, self

    emergency_contact_name: str = Field(min_length=1, max_length=200)
    emergency_contact_relationship: str = Field(min_length=1, max_length=50)
    emergency_contact_phone: str = Field(min_length=9, max_length=20)


class SwimmerDetails(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: date
    gender: Optional[str] = Field(default=None, max_length=20)
    squad: Optional[str] = Field(default=None, max_length=50)
    medical_notes: Optional[str] = None


class ConsentFlags(BaseModel):
    data_accuracy: bool
    code_of_conduct: bool
    media_consent: bool = False

    @model_validator(mode="after")
    def _require_mandatory_consents(self):
        if not (self.data_accuracy and self.code_of_conduct):
            raise ValueError("Required consents not provided")
        return self


class RegistrationRequest(BaseModel):
    payer: PayerDetails
    swimmers: list[SwimmerDetails] = Field(min_length=1, max_length=10)
    consents: ConsentFlags
    pay_option: PayOption = PayOption.PAY_NOW
    provider: PaymentProvider = PaymentProvider.PAYSTACK
    # Optional client-side total; rejected when it disagrees with the fee schedule.
    total_amount: Optional[float] = Field(default=None, gt=0)


class PayInvoiceRequest(BaseModel):
    provider: PaymentProvider = PaymentProvider.PAYSTACK
    phone_number: Optional[str] = Field(default=None, min_length=9, max_length=20)


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=128)