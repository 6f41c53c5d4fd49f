"""Provider settlement callback payloads."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator


class B2CResultParameter(BaseModel):
    Key: str
    Value: Any = None


class B2CResultParameters(BaseModel):
    ResultParameter: List[B2CResultParameter] = []


class B2CResult(BaseModel):
    ResultType: Optional[int] = None
    ResultCode: int
    ResultDesc: Optional[str] = None
    OriginatorConversationID: str
    ConversationID: str
    TransactionID: Optional[str] = None
    ResultParameters: Optional[B2CResultParameters] = None

    def parameters(self) -> Dict[str, Any]:
        if not self.ResultParameters:
            return {}
        return {p.Key: p.Value for p in self.ResultParameters.ResultParameter}

    @property
    def succeeded(self) -> bool:
        return self.ResultCode == 0


class MpesaB2CCallback(BaseModel):
    """Daraja B2C ResultURL payload: ``{"Result": {...}}``."""

    Result: B2CResult


class PesaWiseCallback(BaseModel):
    requestId: Optional[str] = None
    transactionId: Optional[str] = None
    status: str
    message: Optional[str] = None
    reference: Optional[str] = None

    @model_validator(mode="after")
    def require_identifier(self) -> "PesaWiseCallback":
        if not (self.requestId or self.transactionId):
            raise ValueError("requestId or transactionId is required")
        return self

    @property
    def lookup_reference(self) -> str:
        return self.requestId or self.transactionId

    @property
    def succeeded(self) -> bool:
        return self.status.upper() in ("SUCCESS", "COMPLETED", "SUCCESSFUL")


class BankTransferData(BaseModel):
    id: str
    tx_ref: str
    status: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    processor_response: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if isinstance(v, int) else v


class BankTransferCallback(BaseModel):
    """Bank transfer status event: ``{"event": "transfer.completed", "data": {...}}``."""

    event: str
    data: BankTransferData

    @property
    def succeeded(self) -> bool:
        return self.event == "transfer.completed" and self.data.status.upper() == "SUCCESSFUL"

    @property
    def failed(self) -> bool:
        return self.event == "transfer.failed" or self.data.status.upper() == "FAILED"
