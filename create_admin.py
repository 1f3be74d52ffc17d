# create_admin.py
"""Buat akun admin awal: profil + penugasan peran admin. Jalankan dari root proyek."""
import asyncio
from getpass import getpass

from app.core.config import DATABASE_NAME
from app.core.exceptions import LoanWorkflowError
from app.core.gateway import BeanieGateway
from app.core.security import get_password_hash
from app.db.database import init_db, close_db
from app.models.enum import AppRole
from app.models.profile import ProfileBase
from app.models.role import RoleAssignmentBase


def prompt_password() -> str:
    while True:
        password = getpass("Enter admin password: ")
        if len(password) < 6:
            print("Password must be at least 6 characters.")
            continue
        if password == getpass("Confirm admin password: "):
            return password
        print("Passwords do not match. Please try again.")


async def create_initial_admin():
    print("--- Create Initial Admin User ---")
    await init_db()
    print(f"Connected to database: {DATABASE_NAME}")
    gateway = BeanieGateway()

    try:
        while True:
            username = input("Enter admin username: ").strip()
            if username:
                break
            print("Username cannot be empty.")

        existing = await gateway.get_profile_by_username(username)
        if existing:
            roles = await gateway.get_role_assignments(existing.id)
            if any(a.role == AppRole.ADMIN for a in roles):
                print(f"User '{username}' is already an admin.")
                return
            await gateway.add_role_assignment(RoleAssignmentBase(user_id=existing.id, role=AppRole.ADMIN))
            print(f"Existing user '{username}' promoted to admin.")
            return

        password = prompt_password()
        full_name = input("Enter admin full name: ").strip() or username
        unit = input("Enter unit (optional, press Enter to skip): ").strip() or None

        profile = await gateway.insert_profile(ProfileBase(
            username=username,
            full_name=full_name,
            unit=unit,
            hashed_password=get_password_hash(password),
            disabled=False,
        ))
        await gateway.add_role_assignment(RoleAssignmentBase(user_id=profile.id, role=AppRole.ADMIN))
        print(f"Admin user '{username}' created successfully!")
    except LoanWorkflowError as e:
        print(f"Error saving admin user to database: {e}")
    finally:
        close_db()
        print("Database connection closed.")


if __name__ == "__main__":
    print("Starting admin creation script...")
    asyncio.run(create_initial_admin())
    print("Script finished.")
