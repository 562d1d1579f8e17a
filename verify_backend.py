"""Smoke test against a running server (python verify_backend.py).

Expects the demo accounts from seed_db.py.
"""
import io

from client import ApiClient, ApiError, Session, load_dashboard

BASE_URL = "http://127.0.0.1:8080/api"


def verify_backend():
    print(f"Testing connectivity to {BASE_URL}...")

    # 1. Staff login + delivery
    staff = ApiClient(Session(BASE_URL))
    try:
        staff.login("ravi@billtracker.in", "secret", "staff")
    except ApiError as e:
        print("Staff login FAILED:", e)
        return
    print(f"Logged in as {staff.session.user.full_name}.")

    pending = staff.properties(status="Pending", limit=1).properties
    if not pending:
        print("No pending properties found.")
    else:
        target = pending[0]
        photo = staff.upload_photo(io.BytesIO(b"\xff\xd8\xff\xe0fake-jpeg"))
        delivery = staff.create_delivery(
            property_id=target.id,
            data_source="owner",
            receiver_name=target.owner_name,
            photo_url=photo.photo_url,
            location={"type": "Point", "coordinates": [80.95, 26.85]},
        )
        print(f"Recorded delivery {delivery.id} for {target.property_id}")

    # 2. Wrong role must be refused
    try:
        ApiClient(Session(BASE_URL)).login("ravi@billtracker.in", "secret", "admin")
        print("WARNING: Login with the wrong role succeeded")
    except ApiError as e:
        print(f"SUCCESS: Wrong role refused ({e.status_code} {e.message})")

    # 3. Commissioner dashboard
    commissioner = ApiClient(Session(BASE_URL))
    commissioner.login("commissioner@billtracker.in", "secret", "commissioner")
    dashboard = load_dashboard(commissioner)
    print("Dashboard:", dashboard.stats.model_dump())
    for zone in dashboard.zones:
        print(f"  {zone.name}: {zone.delivered}/{zone.total} ({zone.completion}%)")


if __name__ == "__main__":
    verify_backend()
