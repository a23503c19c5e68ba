import argparse
import getpass

from ota_fleet.db import SessionLocal
from ota_fleet.models import UserRole
from ota_fleet.services.errors import OTAError
from ota_fleet.services.users import create_user


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a user (bootstraps the first admin)")
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", help="Prompted for when omitted")
    parser.add_argument("--role", default=UserRole.admin.value, choices=[r.value for r in UserRole])
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")

    db = SessionLocal()
    try:
        user = create_user(db, args.username, password, UserRole(args.role), actor=None)
    except OTAError as exc:
        print(exc.message)
        return 1
    finally:
        db.close()

    print(f"User created: {user.id} ({user.role.value})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
