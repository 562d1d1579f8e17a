from fastapi import FastAPI, APIRouter, Depends, BackgroundTasks, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional
from datetime import datetime, timezone
import models, schemas, auth, uploads, zones
from database import engine, get_db
from errors import AppError, NotFound, PermissionDenied, ValidationFailed
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType
import logging
import math
import os
import secrets
import time
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Bill Delivery Tracker")
api = APIRouter(prefix="/api")

# Email Config
conf = ConnectionConfig(
    MAIL_USERNAME = os.getenv('MAIL_USERNAME', 'user@example.com'),
    MAIL_PASSWORD = os.getenv('MAIL_PASSWORD', 'password'),
    MAIL_FROM = os.getenv('MAIL_FROM', 'noreply@billtracker.in'),
    MAIL_PORT = int(os.getenv('MAIL_PORT', 587)),
    MAIL_SERVER = os.getenv('MAIL_SERVER', 'smtp.gmail.com'),
    MAIL_STARTTLS = False,
    MAIL_SSL_TLS = True,
    USE_CREDENTIALS = True,
    VALIDATE_CERTS = True,
    SUPPRESS_SEND = int(os.getenv('MAIL_SUPPRESS_SEND', 0)),
)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Uploaded photos
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8080")
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
PHOTO_DIR = os.path.join(UPLOAD_DIR, "delivery-photos")
MAX_PHOTO_BYTES = 10 * 1024 * 1024
os.makedirs(PHOTO_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

# CORS
origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error responses: always {"message": ...} ---

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return JSONResponse(status_code=400, content={"message": "; ".join(parts) or "Invalid request"})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server error"})


def paginate(query, page: int, limit: int):
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = schemas.Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))
    return items, pagination


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@app.get("/")
def root():
    return {"message": "API is running"}


# --- Auth ---

@api.post("/auth/login", response_model=schemas.AuthResponse)
def login(credentials: schemas.LoginRequest, db: Session = Depends(get_db)):
    token, user = auth.login(db, credentials.email, credentials.password, credentials.role)
    return {"message": "Login successful", "user": user, "token": token}


@api.post("/auth/register", response_model=schemas.AuthResponse, status_code=201)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    token, db_user = auth.register(db, user)
    return {"message": "User registered successfully", "user": db_user, "token": token}


@api.get("/auth/me", response_model=schemas.CurrentUser)
def read_current_user(current_user: models.User = Depends(auth.get_current_user)):
    return {"user": current_user}


@api.put("/auth/me/password", response_model=schemas.Message)
def update_password(
    password_update: schemas.PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    auth.change_password(db, current_user, password_update.old_password, password_update.new_password)
    return {"message": "Password updated successfully"}


async def send_reset_email(email: str, token: str):
    message = MessageSchema(
        subject="Reset your Bill Delivery Tracker password",
        recipients=[email],
        body=f"Use the following link to choose a new password:\n\n{FRONTEND_URL}/reset-password/{token}\n\nThe link expires in {auth.RESET_TOKEN_EXPIRE_MINUTES} minutes. If you did not request this, please ignore this email.",
        subtype=MessageType.plain
    )
    fm = FastMail(conf)
    try:
        await fm.send_message(message)
    except Exception:
        logger.exception("Password reset email to %s failed", email)


@api.post("/auth/forgot-password", response_model=schemas.Message)
def forgot_password(request: schemas.ForgotPasswordRequest, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    issued = auth.start_password_reset(db, request.email)
    if issued:
        user, token = issued
        background_tasks.add_task(send_reset_email, user.email, token)
    # Identical response whether or not the account exists
    return {"message": "If the account exists, a password reset link has been sent"}


@api.post("/auth/reset-password", response_model=schemas.Message)
def reset_password(request: schemas.ResetPasswordRequest, db: Session = Depends(get_db)):
    auth.reset_password(db, request.token, request.new_password)
    return {"message": "Password has been reset. You can now login."}


# --- Admin: users ---

@api.get("/users", response_model=List[schemas.UserPublic])
def read_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    role: Optional[schemas.Role] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    query = db.query(models.User)
    if role:
        query = query.filter(models.User.role == role)
    return query.order_by(models.User.id).offset(skip).limit(limit).all()


@api.post("/users", response_model=schemas.UserPublic, status_code=201)
def create_user(
    user: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return auth.create_user(db, user)


def get_user_or_404(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


@api.put("/users/{user_id}/role", response_model=schemas.UserPublic)
def update_user_role(
    user_id: int,
    role_update: schemas.RoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    user = get_user_or_404(db, user_id)
    user.role = role_update.role
    db.commit()
    db.refresh(user)
    logger.info("Admin %s set role of user %s to %s", current_user.id, user.id, user.role)
    return user


@api.put("/users/{user_id}/active", response_model=schemas.UserPublic)
def toggle_user_active(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    user = get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise ValidationFailed("You cannot deactivate your own account")

    # Toggle activation
    user.is_active = not user.is_active
    db.commit()
    db.refresh(user)
    logger.info("Admin %s set user %s active=%s", current_user.id, user.id, user.is_active)
    return user


# --- Wards ---

@api.get("/wards", response_model=List[schemas.Ward])
def read_wards(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return db.query(models.Ward).order_by(models.Ward.corporate_name, models.Ward.ward_name).all()


@api.get("/wards/zones", response_model=List[schemas.Zone])
def read_zones(db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return zones.group_wards(db.query(models.Ward).all())


@api.post("/wards", response_model=schemas.Ward, status_code=201)
def create_ward(
    ward: schemas.WardCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    db_ward = models.Ward(**ward.model_dump())
    db.add(db_ward)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Ward already exists")
    db.refresh(db_ward)
    return db_ward


def get_ward_or_404(db: Session, ward_id: int) -> models.Ward:
    ward = db.get(models.Ward, ward_id)
    if not ward:
        raise NotFound("Ward not found")
    return ward


@api.get("/wards/{ward_id}", response_model=schemas.Ward)
def read_ward(ward_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return get_ward_or_404(db, ward_id)


@api.put("/wards/{ward_id}", response_model=schemas.Ward)
def update_ward(
    ward_id: int,
    ward_update: schemas.WardUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    ward = get_ward_or_404(db, ward_id)
    # Empty values keep the current ones
    ward.corporate_name = ward_update.corporate_name or ward.corporate_name
    ward.ward_name = ward_update.ward_name or ward.ward_name
    if ward_update.mohallas is not None:
        ward.mohallas = list(ward_update.mohallas)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Ward already exists")
    db.refresh(ward)
    return ward


@api.delete("/wards/{ward_id}", response_model=schemas.Message)
def delete_ward(ward_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.require_admin)):
    ward = get_ward_or_404(db, ward_id)
    if db.query(models.Property).filter(models.Property.ward_id == ward.id).count():
        raise ValidationFailed("Ward still has properties")
    db.delete(ward)
    db.commit()
    return {"message": "Ward deleted successfully"}


# --- Properties ---

@api.get("/properties", response_model=schemas.PropertyPage)
def read_properties(
    search: Optional[str] = None,
    ward: Optional[int] = None,
    status: Optional[schemas.DeliveryStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    query = db.query(models.Property).options(joinedload(models.Property.ward))

    if search:
        search_term = f"%{search}%"
        query = query.filter(
            models.Property.property_id.ilike(search_term)
            | models.Property.owner_name.ilike(search_term)
            | models.Property.address.ilike(search_term)
        )
    if ward is not None:
        query = query.filter(models.Property.ward_id == ward)
    if status is not None:
        query = query.filter(models.Property.delivery_status == status)

    query = query.order_by(models.Property.created_at.desc(), models.Property.id.desc())
    properties, pagination = paginate(query, page, limit)
    return {"properties": properties, "pagination": pagination}


def apply_property_fields(db: Session, prop: models.Property, fields: dict):
    if "ward_id" in fields and fields["ward_id"] is not None:
        check_ward_exists(db, fields["ward_id"])
    location = fields.pop("location", None)
    if location is not None:
        prop.lng, prop.lat = location["coordinates"]
    for key, value in fields.items():
        setattr(prop, key, value)


def check_ward_exists(db: Session, ward_id: int):
    # Unknown ward in a request body is a 400
    if not db.get(models.Ward, ward_id):
        raise ValidationFailed("Ward not found")


@api.post("/properties", response_model=schemas.Property, status_code=201)
def create_property(
    prop: schemas.PropertyCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    db_prop = models.Property(delivery_status="Pending")
    apply_property_fields(db, db_prop, prop.model_dump(mode="json"))
    db.add(db_prop)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Property ID already exists")
    db.refresh(db_prop)
    return db_prop


# Bulk upload routes come before /properties/{property_id}

@api.post("/properties/upload", response_model=schemas.UploadResult)
async def upload_properties(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    content = await file.read()
    if len(content) > uploads.MAX_UPLOAD_BYTES:
        raise ValidationFailed("File exceeds the 60MB limit")

    rows = uploads.read_rows(file.filename, file.content_type, content)
    record, errors = uploads.import_properties(db, rows, file.filename or "upload", current_user.full_name or "Unknown User")
    return {
        "message": "Upload processed",
        "summary": {
            "total": record.total,
            "success": record.success,
            "failed": record.failed,
            "duplicate": record.duplicate,
            "status": record.status,
        },
        "errors": errors or None,
    }


@api.get("/properties/upload/history", response_model=schemas.UploadHistory)
def read_upload_history(db: Session = Depends(get_db), current_user: models.User = Depends(auth.require_admin)):
    records = db.query(models.UploadHistory).order_by(
        models.UploadHistory.timestamp.desc(), models.UploadHistory.id.desc()
    ).limit(50).all()
    return {"uploads": records}


@api.delete("/properties/upload/{upload_id}", response_model=schemas.Message)
def delete_upload_record(upload_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.require_admin)):
    record = db.get(models.UploadHistory, upload_id)
    if not record:
        raise NotFound("Upload record not found")
    db.delete(record)
    db.commit()
    return {"message": "Upload record deleted successfully"}


def get_property_or_404(db: Session, property_id: int) -> models.Property:
    prop = db.get(models.Property, property_id)
    if not prop:
        raise NotFound("Property not found")
    return prop


@api.get("/properties/{property_id}", response_model=schemas.PropertyDetail)
def read_property(property_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return get_property_or_404(db, property_id)


@api.put("/properties/{property_id}", response_model=schemas.Property)
def update_property(
    property_id: int,
    prop_update: schemas.PropertyUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    prop = get_property_or_404(db, property_id)
    apply_property_fields(db, prop, prop_update.model_dump(exclude_unset=True, mode="json"))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Property ID already exists")
    db.refresh(prop)
    return prop


@api.delete("/properties/{property_id}", response_model=schemas.Message)
def delete_property(property_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.require_admin)):
    prop = get_property_or_404(db, property_id)
    if prop.deliveries:
        raise ValidationFailed("Property has deliveries and cannot be deleted")
    db.delete(prop)
    db.commit()
    return {"message": "Property deleted successfully"}


# --- Deliveries ---

def delivery_query(db: Session):
    return db.query(models.Delivery).options(
        joinedload(models.Delivery.property).joinedload(models.Property.ward),
        joinedload(models.Delivery.staff),
    )


def filter_dates(query, date_from: Optional[datetime], date_to: Optional[datetime]):
    if date_from is not None:
        query = query.filter(models.Delivery.delivery_date >= naive_utc(date_from))
    if date_to is not None:
        query = query.filter(models.Delivery.delivery_date <= naive_utc(date_to))
    return query


def property_status_for(data_source: str) -> str:
    return "Not Found" if data_source == "not_found" else "Delivered"


@api.post("/deliveries", response_model=schemas.Delivery, status_code=201)
def create_delivery(
    delivery: schemas.DeliveryCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    prop = db.get(models.Property, delivery.property_id)
    if not prop:
        raise ValidationFailed("Property not found")

    db_delivery = models.Delivery(
        property_id=prop.id,
        staff_id=current_user.id,
        data_source=delivery.data_source,
        receiver_name=delivery.receiver_name,
        receiver_mobile=delivery.receiver_mobile,
        photo_url=delivery.photo_url,
        lng=delivery.location.lng,
        lat=delivery.location.lat,
        remarks=delivery.remarks,
        correction_status="None",
    )
    db.add(db_delivery)

    # Property mirrors the outcome of its latest delivery
    prop.delivery_status = property_status_for(delivery.data_source)

    db.commit()
    db.refresh(db_delivery)
    logger.info("Staff %s recorded delivery %s for property %s (%s)", current_user.id, db_delivery.id, prop.property_id, delivery.data_source)
    return db_delivery


@api.post("/deliveries/upload-photo", response_model=schemas.PhotoUpload)
async def upload_delivery_photo(
    photo: UploadFile = File(...),
    current_user: models.User = Depends(auth.require_staff)
):
    if not (photo.content_type or "").startswith("image/"):
        raise ValidationFailed("Only image files are allowed")

    content = await photo.read()
    if not content:
        raise ValidationFailed("No photo uploaded")
    if len(content) > MAX_PHOTO_BYTES:
        raise ValidationFailed("Photo exceeds the 10MB limit")

    filename = f"delivery-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}.jpg"
    with open(os.path.join(PHOTO_DIR, filename), "wb") as fh:
        fh.write(content)

    return {
        "message": "Photo uploaded successfully",
        "photo_url": f"{BACKEND_URL}/uploads/delivery-photos/{filename}",
    }


@api.get("/deliveries", response_model=schemas.DeliveryPage)
def read_deliveries(
    staff_id: Optional[int] = Query(None, alias="staff"),
    property_id: Optional[int] = Query(None, alias="property"),
    status: Optional[schemas.CorrectionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin_or_commissioner)
):
    query = delivery_query(db)
    if staff_id is not None:
        query = query.filter(models.Delivery.staff_id == staff_id)
    if property_id is not None:
        query = query.filter(models.Delivery.property_id == property_id)
    if status is not None:
        query = query.filter(models.Delivery.correction_status == status)
    query = filter_dates(query, date_from, date_to)

    query = query.order_by(models.Delivery.delivery_date.desc(), models.Delivery.id.desc())
    deliveries, pagination = paginate(query, page, limit)
    return {"deliveries": deliveries, "pagination": pagination}


@api.get("/deliveries/staff-history", response_model=schemas.DeliveryPage)
def read_staff_history(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    query = delivery_query(db).filter(models.Delivery.staff_id == current_user.id)
    query = filter_dates(query, date_from, date_to)

    query = query.order_by(models.Delivery.delivery_date.desc(), models.Delivery.id.desc())
    deliveries, pagination = paginate(query, page, limit)
    return {"deliveries": deliveries, "pagination": pagination}


def get_delivery_or_404(db: Session, delivery_id: int) -> models.Delivery:
    delivery = delivery_query(db).filter(models.Delivery.id == delivery_id).first()
    if not delivery:
        raise NotFound("Delivery not found")
    return delivery


@api.get("/deliveries/{delivery_id}", response_model=schemas.Delivery)
def read_delivery(delivery_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth.get_current_user)):
    return get_delivery_or_404(db, delivery_id)


@api.put("/deliveries/{delivery_id}", response_model=schemas.Delivery)
def request_correction(
    delivery_id: int,
    correction: schemas.CorrectionRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_staff)
):
    delivery = get_delivery_or_404(db, delivery_id)

    # Only allow staff to correct their own deliveries
    if delivery.staff_id != current_user.id:
        raise PermissionDenied("Not authorized to update this delivery")
    if delivery.correction_status == "Pending":
        raise ValidationFailed("A correction is already pending review")

    changes = correction.model_dump(exclude_unset=True, mode="json")
    if not changes:
        raise ValidationFailed("No changes requested")

    delivery.pending_changes = changes
    delivery.correction_status = "Pending"
    db.commit()
    db.refresh(delivery)
    logger.info("Staff %s requested correction of delivery %s: %s", current_user.id, delivery.id, sorted(changes))
    return delivery


@api.put("/deliveries/{delivery_id}/correction", response_model=schemas.Delivery)
def review_correction(
    delivery_id: int,
    review: schemas.CorrectionReview,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    delivery = get_delivery_or_404(db, delivery_id)
    if delivery.correction_status != "Pending":
        raise ValidationFailed("No correction is pending for this delivery")

    if review.status == "Approved":
        changes = dict(delivery.pending_changes or {})
        location = changes.pop("location", None)
        if location is not None:
            delivery.lng, delivery.lat = location["coordinates"]
        for key, value in changes.items():
            setattr(delivery, key, value)
        if "data_source" in changes:
            delivery.property.delivery_status = property_status_for(delivery.data_source)

    delivery.pending_changes = None
    delivery.correction_status = review.status
    db.commit()
    db.refresh(delivery)
    logger.info("Admin %s marked correction of delivery %s as %s", current_user.id, delivery.id, review.status)
    return delivery


app.include_router(api)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 8080)))
