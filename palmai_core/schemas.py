from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

# Inbound bodies are loose (Any); handlers validate and answer
# with the exact 400 messages the frontend shows.

# -------- Identity --------

class AuthUser(BaseModel):
    id: str
    email: str = ""

# -------- Chat --------

class ChatCompletionIn(BaseModel):
    message: Any = None
    action: Optional[str] = None            # "new_chat" clears the transcript first

# -------- Palm --------

class PalmReadingIn(BaseModel):
    palmProfile: Any = None
    palmImageUrl: Optional[str] = None

# -------- Payments & coupons --------

class CreatePaymentIn(BaseModel):
    country: Optional[str] = None
    couponCode: Optional[str] = None

class ValidateCouponIn(BaseModel):
    couponCode: Any = None
    userCountry: Optional[str] = None

class CouponCreate(BaseModel):
    code: Optional[str] = None
    type: Optional[str] = None              # "free" | "discount"
    usage_limit: Optional[int] = None
    discount_type: Optional[str] = None     # "percentage" | "amount"
    discount_value: Optional[float] = None
    currency: Optional[str] = None
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    description: Optional[str] = None

class CouponUpdate(BaseModel):
    id: Optional[int] = None
    code: Optional[str] = None
    type: Optional[str] = None
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    currency: Optional[str] = None
    valid_from: Optional[str] = None
    valid_until: Optional[str] = None
    description: Optional[str] = None

# -------- Profile & feedback --------

class UpdateProfileIn(BaseModel):
    dateOfBirth: Any = None
    timeOfBirth: Any = None
    placeOfBirth: Any = None
    gender: Any = None

class FeedbackIn(BaseModel):
    title: Any = None
    message: Any = None
    category: Any = None
    rating: Any = None

# -------- Health --------

class Health(BaseModel):
    ok: bool = True
    db: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
