from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_core import PydanticCustomError

# Cosmetic display value shown on the admin profile. Never debited.
PLACEHOLDER_BALANCE = "786403297865"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"


# Upper bound matches a signed 32-bit integer column.
MAX_AMOUNT = 2**31 - 1

Amount = Annotated[int, Field(ge=0, le=MAX_AMOUNT, strict=True)]


class Administrator(BaseModel):
    id: str
    username: str
    password_hash: str
    is_active: bool = True
    balance: str = PLACEHOLDER_BALANCE

    model_config = ConfigDict(from_attributes=True)

    def identity(self) -> "AdminIdentity":
        return AdminIdentity(id=self.id, username=self.username)


class AdminIdentity(BaseModel):
    id: str
    username: str

    model_config = ConfigDict(frozen=True)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Username is required")
    password: str = Field(..., min_length=1, description="Password is required")


class DistributionRequest(BaseModel):
    user_uid: str = Field(..., alias="userUID", min_length=1)
    uc_amount: Amount = Field(default=0, alias="ucAmount")
    coins_amount: Amount = Field(default=0, alias="coinsAmount")

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {
            "userUID": "5123987740",
            "ucAmount": 660,
            "coinsAmount": 0,
        }
    })

    @model_validator(mode="after")
    def require_positive_amount(self) -> "DistributionRequest":
        if self.uc_amount <= 0 and self.coins_amount <= 0:
            raise PydanticCustomError(
                "both_amounts_zero",
                "At least one currency amount must be greater than 0",
            )
        return self


class TransactionDraft(BaseModel):
    user_uid: str
    uc_amount: int = 0
    coins_amount: int = 0
    admin_id: str
    admin_username: str


class Transaction(BaseModel):
    id: str
    user_uid: str = Field(alias="userUID")
    uc_amount: int = Field(alias="ucAmount")
    coins_amount: int = Field(alias="coinsAmount")
    admin_id: str = Field(alias="adminId")
    admin_username: str = Field(alias="adminUsername")
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class TransactionFilter(BaseModel):
    user_uid: Optional[str] = None
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def is_empty(self) -> bool:
        return self.user_uid is None and self.created_from is None and self.created_before is None

    def matches(self, transaction: Transaction) -> bool:
        if self.user_uid is not None and transaction.user_uid != self.user_uid:
            return False
        if self.created_from is not None and transaction.created_at < self.created_from:
            return False
        if self.created_before is not None and transaction.created_at >= self.created_before:
            return False
        return True


class AdminSummary(BaseModel):
    id: str
    username: str


class AdminProfile(AdminSummary):
    balance: str


class LoginResponse(BaseModel):
    message: str
    admin: AdminSummary


class ProfileResponse(BaseModel):
    admin: AdminProfile


class MessageResponse(BaseModel):
    message: str


class DistributionResponse(BaseModel):
    message: str
    transaction: Transaction


class TransactionPage(BaseModel):
    transactions: list[Transaction]
    total: int
    limit: int
    offset: int


class UserTransactionsResponse(BaseModel):
    transactions: list[Transaction]
