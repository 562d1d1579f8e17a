"""HTTP client for the delivery tracker API.

Login state lives in an explicit :class:`Session` handed to :class:`ApiClient`;
nothing is kept in module globals. Every response body is validated against
the pydantic schemas in ``schemas.py`` before it is returned, so a shape
mismatch surfaces as ``pydantic.ValidationError`` at this boundary.

    session = Session("http://localhost:8080/api")
    api = ApiClient(session)
    api.login("admin@billtracker.in", "secret", "admin")
    dashboard = load_dashboard(api)
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone, tzinfo
from typing import List, Optional
import logging
import os

import requests
from dotenv import load_dotenv
from pydantic import TypeAdapter

import schemas
import stats

load_dotenv()

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8080/api")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", 30))
PAGE_SIZE = 500


class ApiError(Exception):
    """Non-2xx answer from the API. ``message`` is the server's message field."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class Session:
    def __init__(self, base_url: str = API_BASE_URL, timeout: float = API_TIMEOUT,
                 token: Optional[str] = None, user: Optional[schemas.UserPublic] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.user = user

    @property
    def authenticated(self) -> bool:
        return self.token is not None

    def sign_in(self, token: str, user: schemas.UserPublic):
        self.token = token
        self.user = user

    def sign_out(self):
        self.token = None
        self.user = None


def _error_message(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or "Request failed"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return "Request failed"


def _params(**params) -> dict:
    clean = {}
    for key, value in params.items():
        if value is None:
            continue
        clean[key] = value.isoformat() if isinstance(value, datetime) else value
    return clean


class ApiClient:
    def __init__(self, session: Session, http=None):
        self.session = session
        self.http = http if http is not None else requests.Session()

    def _headers(self) -> dict:
        if self.session.token:
            return {"Authorization": f"Bearer {self.session.token}"}
        return {}

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.session.base_url}{path}"
        resp = self.http.request(method, url, headers=self._headers(), timeout=self.session.timeout, **kwargs)
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.debug("%s %s failed with %s: %s", method, path, resp.status_code, message)
            raise ApiError(resp.status_code, message)
        return resp.json()

    # --- auth ---

    def login(self, email: str, password: str, role: str) -> schemas.AuthResponse:
        payload = schemas.LoginRequest(email=email, password=password, role=role)
        result = schemas.AuthResponse.model_validate(self._request("POST", "/auth/login", json=payload.model_dump()))
        self.session.sign_in(result.token, result.user)
        return result

    def register(self, email: str, password: str, full_name: str, role: str,
                 staff_id: Optional[str] = None) -> schemas.AuthResponse:
        payload = schemas.UserCreate(email=email, password=password, full_name=full_name, staff_id=staff_id, role=role)
        result = schemas.AuthResponse.model_validate(self._request("POST", "/auth/register", json=payload.model_dump()))
        self.session.sign_in(result.token, result.user)
        return result

    def me(self) -> schemas.UserPublic:
        user = schemas.CurrentUser.model_validate(self._request("GET", "/auth/me")).user
        self.session.user = user
        return user

    def logout(self):
        self.session.sign_out()

    # --- wards ---

    def wards(self) -> List[schemas.Ward]:
        return TypeAdapter(List[schemas.Ward]).validate_python(self._request("GET", "/wards"))

    def zones(self) -> List[schemas.Zone]:
        return TypeAdapter(List[schemas.Zone]).validate_python(self._request("GET", "/wards/zones"))

    # --- properties ---

    def properties(self, search=None, ward=None, status=None, page=1, limit=20) -> schemas.PropertyPage:
        params = _params(search=search, ward=ward, status=status, page=page, limit=limit)
        return schemas.PropertyPage.model_validate(self._request("GET", "/properties", params=params))

    def property(self, property_id: int) -> schemas.PropertyDetail:
        return schemas.PropertyDetail.model_validate(self._request("GET", f"/properties/{property_id}"))

    def fetch_all_properties(self, **filters) -> List[schemas.Property]:
        return self._walk(self.properties, "properties", filters)

    def upload_properties(self, fileobj, filename: str, content_type: str = "text/csv") -> schemas.UploadResult:
        files = {"file": (filename, fileobj, content_type)}
        return schemas.UploadResult.model_validate(self._request("POST", "/properties/upload", files=files))

    def upload_history(self) -> schemas.UploadHistory:
        return schemas.UploadHistory.model_validate(self._request("GET", "/properties/upload/history"))

    def delete_upload(self, upload_id: int) -> schemas.Message:
        return schemas.Message.model_validate(self._request("DELETE", f"/properties/upload/{upload_id}"))

    # --- deliveries ---

    def deliveries(self, staff=None, property=None, status=None, date_from=None, date_to=None,
                   page=1, limit=20) -> schemas.DeliveryPage:
        params = _params(staff=staff, property=property, status=status, date_from=date_from,
                         date_to=date_to, page=page, limit=limit)
        return schemas.DeliveryPage.model_validate(self._request("GET", "/deliveries", params=params))

    def staff_history(self, date_from=None, date_to=None, page=1, limit=20) -> schemas.DeliveryPage:
        params = _params(date_from=date_from, date_to=date_to, page=page, limit=limit)
        return schemas.DeliveryPage.model_validate(self._request("GET", "/deliveries/staff-history", params=params))

    def fetch_all_deliveries(self, **filters) -> List[schemas.Delivery]:
        return self._walk(self.deliveries, "deliveries", filters)

    def fetch_all_staff_history(self, **filters) -> List[schemas.Delivery]:
        return self._walk(self.staff_history, "deliveries", filters)

    def delivery(self, delivery_id: int) -> schemas.Delivery:
        return schemas.Delivery.model_validate(self._request("GET", f"/deliveries/{delivery_id}"))

    def create_delivery(self, **fields) -> schemas.Delivery:
        payload = schemas.DeliveryCreate(**fields)
        return schemas.Delivery.model_validate(self._request("POST", "/deliveries", json=payload.model_dump(mode="json")))

    def upload_photo(self, fileobj, filename: str = "photo.jpg", content_type: str = "image/jpeg") -> schemas.PhotoUpload:
        files = {"photo": (filename, fileobj, content_type)}
        return schemas.PhotoUpload.model_validate(self._request("POST", "/deliveries/upload-photo", files=files))

    def request_correction(self, delivery_id: int, **changes) -> schemas.Delivery:
        payload = schemas.CorrectionRequest(**changes).model_dump(exclude_unset=True, mode="json")
        return schemas.Delivery.model_validate(self._request("PUT", f"/deliveries/{delivery_id}", json=payload))

    def review_correction(self, delivery_id: int, status: str) -> schemas.Delivery:
        payload = schemas.CorrectionReview(status=status).model_dump()
        return schemas.Delivery.model_validate(self._request("PUT", f"/deliveries/{delivery_id}/correction", json=payload))

    # --- users (admin) ---

    def users(self, role=None, skip=0, limit=100) -> List[schemas.UserPublic]:
        data = self._request("GET", "/users", params=_params(role=role, skip=skip, limit=limit))
        return TypeAdapter(List[schemas.UserPublic]).validate_python(data)

    def set_role(self, user_id: int, role: str) -> schemas.UserPublic:
        payload = schemas.RoleUpdate(role=role).model_dump()
        return schemas.UserPublic.model_validate(self._request("PUT", f"/users/{user_id}/role", json=payload))

    def toggle_active(self, user_id: int) -> schemas.UserPublic:
        return schemas.UserPublic.model_validate(self._request("PUT", f"/users/{user_id}/active"))

    def _walk(self, fetch, key: str, filters: dict) -> list:
        items = []
        page = 1
        while True:
            result = fetch(page=page, limit=PAGE_SIZE, **filters)
            items.extend(getattr(result, key))
            if page >= result.pagination.pages:
                return items
            page += 1


def load_dashboard(api: ApiClient, now: Optional[datetime] = None, rate: int = stats.PAYOUT_RATE,
                   own_history: bool = False, tz: tzinfo = timezone.utc) -> stats.Dashboard:
    """Fetch properties and deliveries in parallel, then aggregate.

    ``own_history`` scopes the deliveries to the signed-in staff member;
    ``tz`` sets where day windows start.
    """
    fetch_deliveries = api.fetch_all_staff_history if own_history else api.fetch_all_deliveries
    with ThreadPoolExecutor(max_workers=2) as pool:
        properties_job = pool.submit(api.fetch_all_properties)
        deliveries_job = pool.submit(fetch_deliveries)
        properties = properties_job.result()
        deliveries = deliveries_job.result()
    logger.info("Loaded %d properties and %d deliveries", len(properties), len(deliveries))
    return stats.build_dashboard(deliveries, properties, now=now, rate=rate, tz=tz)
