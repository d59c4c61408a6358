# /engagehub/models/api.py

from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any
from datetime import datetime
from enum import Enum

# Request and response bodies for the HTTP API.

class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

# --- Authentication ---

class PasswordLoginRequest(BaseModel):
    email_id: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=255)

class AdminRegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    mobile: str = Field(..., min_length=10, max_length=15)
    email_id: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=255)

class UserOtpRequest(BaseModel):
    phone: str = Field(..., min_length=10, max_length=16)

class UserVerifyOtpRequest(BaseModel):
    phone: str = Field(..., min_length=10, max_length=16)
    otp: str = Field(..., pattern=r"^\d{6}$")

class AdminDecisionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

# --- Agents & Users ---

class AgentRole(str, Enum):
    LEAD_MANAGER = "lead_manager"
    CUSTOMER_SUPPORT = "customer_support"
    SALES = "sales"
    VERIFICATION = "verification"

class AgentCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    mobile: str = Field(..., min_length=10, max_length=15)
    email_id: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8)
    role: AgentRole = AgentRole.CUSTOMER_SUPPORT
    lead_capacity: int = Field(default=20, ge=0)

class AgentUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    mobile: Optional[str] = None
    role: Optional[AgentRole] = None
    status: Optional[bool] = None
    lead_capacity: Optional[int] = Field(default=None, ge=0)

class UserCreate(BaseModel):
    phone: str = Field(..., min_length=10, max_length=16)
    name: Optional[str] = Field(default=None, max_length=200)

class UserStatusUpdate(BaseModel):
    status: bool

# --- Products & catalogs ---

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    catalog_id: Optional[str] = None
    status: bool = True

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    catalog_id: Optional[str] = None
    status: Optional[bool] = None

class CatalogStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"

class ProductCatalogCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = "general"
    currency_code: str = "INR"
    facebook_catalog_id: Optional[str] = None

class ProductCatalogUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    currency_code: Optional[str] = None
    status: Optional[CatalogStatus] = None
    facebook_catalog_id: Optional[str] = None

# --- WhatsApp templates ---

class TemplateCategory(str, Enum):
    MARKETING = "marketing"
    UTILITY = "utility"
    AUTHENTICATION = "authentication"

class TemplateButton(BaseModel):
    type: str = Field(..., pattern="^(quick_reply|url|phone_number|copy_code)$")
    text: str
    url: Optional[str] = None
    phone_number: Optional[str] = None

class TemplateComponent(BaseModel):
    type: str = Field(..., pattern="^(header|body|footer|buttons)$")
    format: Optional[str] = Field(default=None, pattern="^(text|image|document|video|location)$")
    text: Optional[str] = None
    example: Optional[Dict[str, Any]] = None
    buttons: Optional[List[TemplateButton]] = None

class WhatsappTemplateCreate(BaseModel):
    name: str = Field(..., pattern=r"^[a-z0-9_]{1,512}$")
    category: TemplateCategory
    language: str = "en_US"
    components: List[TemplateComponent] = Field(..., min_length=1)

class WhatsappTemplateUpdate(BaseModel):
    category: Optional[TemplateCategory] = None
    language: Optional[str] = None
    components: Optional[List[TemplateComponent]] = None

# --- Calls ---

class MakeCallRequest(BaseModel):
    from_number: str = Field(..., min_length=10)
    to_number: str = Field(..., min_length=10)
    caller_id: Optional[str] = None
    user_id: Optional[str] = None
    workflow_id: Optional[str] = None
    purpose: str = Field(default="other", pattern="^(support|sales|verification|follow-up|marketing|other)$")
    record: bool = False
    time_limit: Optional[int] = Field(default=None, gt=0)
    time_out: Optional[int] = Field(default=None, gt=0)
    custom_field: Optional[str] = None

class SendDigitsRequest(BaseModel):
    digits: str = Field(..., pattern=r"^[0-9*#]+$")

# --- Verification ---

class AadhaarValidationRequest(BaseModel):
    aadhaar_number: str = Field(..., pattern=r"^\d{12}$")

class PanVerificationRequest(BaseModel):
    pan_number: str = Field(..., pattern=r"^[A-Za-z]{5}\d{4}[A-Za-z]$")

class AadhaarPanLinkRequest(BaseModel):
    aadhaar_number: str = Field(..., pattern=r"^\d{12}$")
    pan_number: str = Field(..., pattern=r"^[A-Za-z]{5}\d{4}[A-Za-z]$")

class AadhaarOtpRequest(BaseModel):
    aadhaar_number: str = Field(..., pattern=r"^\d{12}$")

class AadhaarOtpSubmitRequest(BaseModel):
    client_id: str
    otp: str = Field(..., pattern=r"^\d{6}$")

class BankVerificationRequest(BaseModel):
    account_number: str = Field(..., min_length=6, max_length=20)
    ifsc: str = Field(..., pattern=r"^[A-Za-z]{4}0[A-Za-z0-9]{6}$")
    account_holder_name: Optional[str] = None

# --- Workflows ---

class WorkflowNodeOption(BaseModel):
    text: str
    next_node_id: Optional[str] = None

class WorkflowNodeModel(BaseModel):
    node_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: str = Field(..., pattern="^(message|input|condition)$")
    content: Optional[str] = None
    variable_name: Optional[str] = None
    condition: Optional[str] = None
    true_node_id: Optional[str] = None
    false_node_id: Optional[str] = None
    next_node_id: Optional[str] = None
    options: List[WorkflowNodeOption] = Field(default_factory=list)

class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    start_node_id: str
    nodes: List[WorkflowNodeModel] = Field(..., min_length=1)
    has_surepass_integration: bool = False
    is_active: bool = True

class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    start_node_id: Optional[str] = None
    nodes: Optional[List[WorkflowNodeModel]] = None
    has_surepass_integration: Optional[bool] = None
    is_active: Optional[bool] = None

class StartSessionRequest(BaseModel):
    user_id: str
