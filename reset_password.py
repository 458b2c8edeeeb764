import os

from dotenv import load_dotenv

from auth import set_password


def main():
    load_dotenv()
    email = (os.getenv("RESET_EMAIL") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if len(raw_password) < 6:
        raise RuntimeError("RESET_PASSWORD is required and must be at least 6 characters.")

    if set_password(email, raw_password):
        print(f"Password reset successfully for {email}.")
    else:
        print(f"No user found for {email}.")


if __name__ == "__main__":
    main()
