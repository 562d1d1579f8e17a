from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Float, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
import datetime


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False) # stored lowercase
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    staff_id = Column(String, unique=True, nullable=True)
    role = Column(String, nullable=False) # staff, admin, commissioner
    is_active = Column(Boolean, default=True)

    # Password reset
    reset_password_token = Column(String, nullable=True, index=True)
    reset_password_expires = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    deliveries = relationship("Delivery", back_populates="staff")


class Ward(Base):
    __tablename__ = "wards"
    __table_args__ = (UniqueConstraint("corporate_name", "ward_name", name="uq_ward_corporate_name"),)

    id = Column(Integer, primary_key=True, index=True)
    corporate_name = Column(String, index=True, nullable=False) # zone
    ward_name = Column(String, nullable=False)
    mohallas = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow)

    properties = relationship("Property", back_populates="ward")


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(String, unique=True, index=True, nullable=False)
    ward_id = Column(Integer, ForeignKey("wards.id"), nullable=False)
    mohalla = Column(String, nullable=False)
    owner_name = Column(String, nullable=False)
    father_name = Column(String, nullable=True)
    address = Column(String, nullable=False)
    house_no = Column(String, nullable=True)
    mobile_no = Column(String, nullable=True)
    property_type = Column(String, nullable=True)

    # Location
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)

    delivery_status = Column(String, default="Pending") # Pending, Delivered, Not Found

    created_at = Column(DateTime, default=utcnow)

    ward = relationship("Ward", back_populates="properties")
    deliveries = relationship("Delivery", back_populates="property")

    @property
    def location(self):
        if self.lat is None or self.lng is None:
            return None
        return {"type": "Point", "coordinates": [self.lng, self.lat]}

    @property
    def last_delivery(self):
        if not self.deliveries:
            return None
        return max(self.deliveries, key=lambda d: (d.delivery_date, d.id))


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    delivery_date = Column(DateTime, default=utcnow, index=True)
    data_source = Column(String, nullable=False) # owner, family, tenant, not_found
    receiver_name = Column(String, nullable=True)
    receiver_mobile = Column(String, nullable=True)
    photo_url = Column(String, nullable=False)

    # GPS point
    lng = Column(Float, nullable=False)
    lat = Column(Float, nullable=False)

    remarks = Column(String, nullable=True)

    # Correction workflow
    correction_status = Column(String, default="None") # None, Pending, Approved, Rejected
    pending_changes = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    @property
    def location(self):
        return {"type": "Point", "coordinates": [self.lng, self.lat]}

    property = relationship("Property", back_populates="deliveries")
    staff = relationship("User", back_populates="deliveries")


class UploadHistory(Base):
    __tablename__ = "upload_history"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(String, nullable=False)
    uploaded_by = Column(String, nullable=False)
    total = Column(Integer, default=0)
    success = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    duplicate = Column(Integer, default=0)
    status = Column(String, nullable=False) # Success, Partial, Failed
    errors = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
