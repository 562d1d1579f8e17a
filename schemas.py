from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

Role = Literal["staff", "admin", "commissioner"]
DataSource = Literal["owner", "family", "tenant", "not_found"]
DeliveryStatus = Literal["Pending", "Delivered", "Not Found"]
CorrectionStatus = Literal["None", "Pending", "Approved", "Rejected"]
UploadStatus = Literal["Success", "Partial", "Failed"]


class Message(BaseModel):
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] # [longitude, latitude]

    @field_validator("coordinates")
    @classmethod
    def check_coordinates(cls, value):
        if len(value) != 2:
            raise ValueError("coordinates must be [longitude, latitude]")
        lng, lat = value
        if not -180 <= lng <= 180 or not -90 <= lat <= 90:
            raise ValueError("coordinates out of range")
        return value

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]


# --- Users & Auth ---

class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    role: Role


class UserBase(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1)
    staff_id: Optional[str] = None
    role: Role


class UserCreate(UserBase):
    password: str = Field(min_length=6)


class UserPublic(BaseModel):
    id: int
    email: str
    full_name: str
    staff_id: Optional[str] = None
    role: Role
    is_active: bool

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    message: str
    user: UserPublic
    token: str


class CurrentUser(BaseModel):
    user: UserPublic


class PasswordChange(BaseModel):
    old_password: str
    new_password: str = Field(min_length=6)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class RoleUpdate(BaseModel):
    role: Role


# --- Wards & Zones ---

class WardBase(BaseModel):
    corporate_name: str = Field(min_length=1)
    ward_name: str = Field(min_length=1)
    mohallas: List[str] = []


class WardCreate(WardBase):
    pass


class WardUpdate(BaseModel):
    corporate_name: Optional[str] = None
    ward_name: Optional[str] = None
    mohallas: Optional[List[str]] = None


class Ward(WardBase):
    id: int

    class Config:
        from_attributes = True


class Zone(BaseModel):
    """Derived view: every ward sharing one corporate name. Never persisted."""
    name: str
    ward_count: int
    wards: List[Ward]
    mohallas: List[str]


# --- Properties ---

class PropertyBase(BaseModel):
    property_id: str = Field(min_length=1)
    mohalla: str = Field(min_length=1)
    owner_name: str = Field(min_length=1)
    father_name: Optional[str] = None
    address: str = Field(min_length=1)
    house_no: Optional[str] = None
    mobile_no: Optional[str] = None
    property_type: Optional[str] = None
    location: Optional[GeoPoint] = None


class PropertyCreate(PropertyBase):
    ward_id: int


class PropertyUpdate(BaseModel):
    property_id: Optional[str] = None
    ward_id: Optional[int] = None
    mohalla: Optional[str] = None
    owner_name: Optional[str] = None
    father_name: Optional[str] = None
    address: Optional[str] = None
    house_no: Optional[str] = None
    mobile_no: Optional[str] = None
    property_type: Optional[str] = None
    delivery_status: Optional[DeliveryStatus] = None
    location: Optional[GeoPoint] = None

    @field_validator("property_id", "ward_id", "mohalla", "owner_name", "address", "delivery_status")
    @classmethod
    def required_not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class Property(PropertyBase):
    id: int
    ward: Optional[Ward] = None
    delivery_status: DeliveryStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PropertySummary(BaseModel):
    id: int
    property_id: str
    owner_name: str
    address: str
    mohalla: Optional[str] = None
    ward: Optional[Ward] = None

    class Config:
        from_attributes = True


class PropertyPage(BaseModel):
    properties: List[Property]
    pagination: Pagination


# --- Deliveries ---

class StaffSummary(BaseModel):
    id: int
    full_name: str
    staff_id: Optional[str] = None

    class Config:
        from_attributes = True


class DeliveryCreate(BaseModel):
    property_id: int
    data_source: DataSource
    receiver_name: Optional[str] = None
    receiver_mobile: Optional[str] = None
    photo_url: str = Field(min_length=1)
    location: GeoPoint
    remarks: Optional[str] = None


class CorrectionRequest(BaseModel):
    data_source: Optional[DataSource] = None
    receiver_name: Optional[str] = None
    receiver_mobile: Optional[str] = None
    photo_url: Optional[str] = None
    location: Optional[GeoPoint] = None
    remarks: Optional[str] = None

    @field_validator("data_source", "photo_url", "location")
    @classmethod
    def required_not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class CorrectionReview(BaseModel):
    status: Literal["Approved", "Rejected"]


class Delivery(BaseModel):
    id: int
    property: Optional[PropertySummary] = None
    staff: Optional[StaffSummary] = None
    delivery_date: datetime
    data_source: DataSource
    receiver_name: Optional[str] = None
    receiver_mobile: Optional[str] = None
    photo_url: str
    location: GeoPoint
    remarks: Optional[str] = None
    correction_status: CorrectionStatus = "None"
    pending_changes: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class PropertyDetail(Property):
    last_delivery: Optional[Delivery] = None


class DeliveryPage(BaseModel):
    deliveries: List[Delivery]
    pagination: Pagination


class PhotoUpload(BaseModel):
    message: str
    photo_url: str


# --- Bulk uploads ---

class UploadSummary(BaseModel):
    total: int
    success: int
    failed: int
    duplicate: int
    status: UploadStatus


class UploadResult(BaseModel):
    message: str
    summary: UploadSummary
    errors: Optional[List[str]] = None


class UploadRecord(BaseModel):
    id: int
    filename: str
    uploaded_by: str
    total: int
    success: int
    failed: int
    duplicate: int
    timestamp: datetime
    status: UploadStatus
    errors: Optional[List[str]] = None

    class Config:
        from_attributes = True


class UploadHistory(BaseModel):
    uploads: List[UploadRecord]
