from database import SessionLocal, engine
import models
import auth # Import auth to access hashing function
import random

# Ensure tables exist
models.Base.metadata.create_all(bind=engine)

WARDS = [
    ("Zone A", "Ward 1", ["Civil Lines", "Kotwali"]),
    ("Zone A", "Ward 2", ["Sadar Bazar", "Ganj"]),
    ("Zone B", "Ward 3", ["Rampur", "Shivpuri"]),
]

USERS = [
    ("admin@billtracker.in", "adminsecret", "Admin User", None, "admin"),
    ("commissioner@billtracker.in", "secret", "Municipal Commissioner", None, "commissioner"),
    ("ravi@billtracker.in", "secret", "Ravi Kumar", "STF001", "staff"),
    ("sunita@billtracker.in", "secret", "Sunita Devi", "STF002", "staff"),
]

OWNERS = ["Ramesh Gupta", "Anita Sharma", "Mohd. Irfan", "Suresh Yadav", "Kavita Singh", "Deepak Verma"]


def seed_data():
    db = SessionLocal()

    # Check if we already have properties
    if db.query(models.Property).count() > 0:
        print("Database already has data.")
        db.close()
        return

    users = {}
    for email, password, full_name, staff_id, role in USERS:
        user = db.query(models.User).filter(models.User.email == email).first()
        if not user:
            user = models.User(
                email=email,
                hashed_password=auth.get_password_hash(password), # Properly hashed
                full_name=full_name,
                staff_id=staff_id,
                role=role,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            print(f"Created {role}: {full_name} ({email})")
        users[email] = user

    wards = []
    for corporate_name, ward_name, mohallas in WARDS:
        ward = models.Ward(corporate_name=corporate_name, ward_name=ward_name, mohallas=mohallas)
        db.add(ward)
        wards.append(ward)
    db.commit()

    properties = []
    for n in range(1, 19):
        ward = wards[n % len(wards)]
        prop = models.Property(
            property_id=f"PID{n:05d}",
            ward_id=ward.id,
            mohalla=ward.mohallas[n % len(ward.mohallas)],
            owner_name=OWNERS[n % len(OWNERS)],
            address=f"{n} Main Road, {ward.ward_name}",
            house_no=str(100 + n),
            delivery_status="Pending",
        )
        db.add(prop)
        properties.append(prop)
    db.commit()
    print(f"Added {len(wards)} wards and {len(properties)} properties")

    staff = [users["ravi@billtracker.in"], users["sunita@billtracker.in"]]
    for n, prop in enumerate(properties[:10]):
        data_source = random.choice(["owner", "owner", "family", "tenant", "not_found"])
        delivery = models.Delivery(
            property_id=prop.id,
            staff_id=staff[n % 2].id,
            data_source=data_source,
            receiver_name=prop.owner_name if data_source != "not_found" else None,
            photo_url="http://localhost:8080/uploads/delivery-photos/sample.jpg",
            lng=80.9462 + n * 0.001,
            lat=26.8467 + n * 0.001,
        )
        db.add(delivery)
        prop.delivery_status = "Not Found" if data_source == "not_found" else "Delivered"
        print(f"Added delivery for {prop.property_id} ({data_source})")

    db.commit()
    print("Seeding Complete!")
    db.close()

if __name__ == "__main__":
    seed_data()
