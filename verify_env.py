from dotenv import load_dotenv
import os

# Force reload to be sure
load_dotenv()

required_keys = [
    "DATABASE_URL",
    "JWT_SECRET",
    "BACKEND_URL",
    "MAIL_USERNAME",
    "MAIL_PASSWORD",
    "MAIL_FROM",
    "MAIL_PORT",
    "MAIL_SERVER"
]

optional_keys = [
    "ACCESS_TOKEN_EXPIRE_MINUTES",
    "BCRYPT_ROUNDS",
    "UPLOAD_DIR",
    "FRONTEND_URL",
    "CORS_ORIGINS",
    "PAYOUT_RATE",
    "LOG_LEVEL",
]


def masked(key, value):
    if ("PASSWORD" in key or "SECRET" in key) and len(value) > 3:
        return value[:2] + "****" + value[-1]
    return value


print("--- Checking Environment Variables ---")
all_present = True
for key in required_keys:
    value = os.getenv(key)
    if value:
        print(f"✅ {key}: Found ({masked(key, value)})")
    else:
        print(f"❌ {key}: MISSING")
        all_present = False

for key in optional_keys:
    value = os.getenv(key)
    if value:
        print(f"✅ {key}: Found ({masked(key, value)})")
    else:
        print(f"➖ {key}: not set, using default")

if all_present:
    print("\nSUCCESS: All required variables are loaded.")
else:
    print("\nFAILURE: Some variables are missing.")
