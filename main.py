#!/usr/bin/env python3
"""
ResumeAgent auth -- operator command line.

Usage:
  python main.py generate-keys --out keys/
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py verify-email someone@example.com
  python main.py revoke-sessions someone@example.com
  python main.py purge-sessions

Every command except generate-keys reads DATABASE_URL (and the rest of the
configuration) from the environment or .env, exactly like the API server.
"""

import argparse
import getpass
import sys
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.keys import MIN_KEY_SIZE, generate_key_material, write_key_material
from auth.models import Plan, Principal, Role
from auth.passwords import MAX_PASSWORD_BYTES, fits_bcrypt, hash_password
from auth.sessions import SessionStore
from auth.store import UserStore, normalize_email
from core.config import get_settings

_MIN_ADMIN_PASSWORD = 12


def _stores() -> tuple[UserStore, SessionStore]:
    settings = get_settings()
    return (
        UserStore(db_url=settings.database_url),
        SessionStore(db_url=settings.database_url, revoke_all_on_reuse=settings.session_reuse_revokes_all),
    )


def cmd_generate_keys(args: argparse.Namespace) -> int:
    out_dir = Path(args.out).expanduser().resolve()
    if not args.force and ((out_dir / "private.pem").exists() or (out_dir / "public.pem").exists()):
        print(f"  [!] Keys already exist in {out_dir}. Use --force to overwrite.")
        return 1
    keys = generate_key_material(key_size=args.bits)
    private_path, public_path = write_key_material(keys, out_dir)
    print(f"  RSA {keys.key_size}-bit keypair written.")
    print(f"  JWT_PRIVATE_KEY_PATH={private_path}")
    print(f"  JWT_PUBLIC_KEY_PATH={public_path}")
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    password = getpass.getpass("Admin password: ")
    if len(password) < _MIN_ADMIN_PASSWORD:
        print(f"  [!] Admin password must be at least {_MIN_ADMIN_PASSWORD} characters.")
        return 1
    if not fits_bcrypt(password):
        print(f"  [!] Admin password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
        return 1
    if getpass.getpass("Confirm password: ") != password:
        print("  [!] Passwords do not match.")
        return 1

    users, sessions = _stores()
    try:
        password_hash = hash_password(password)
        try:
            user_id = users.create_user(
                Principal(
                    email=normalize_email(args.email),
                    full_name=args.name,
                    password_hash=password_hash,
                    role=Role.ADMIN,
                    plan=Plan.PRO,
                    email_verified=True,
                )
            )
        except IntegrityError:
            print(f"  [!] A user with email {normalize_email(args.email)} already exists.")
            return 1
        users.add_password_history(user_id, password_hash)
        print(f"  Admin {normalize_email(args.email)} created (id {user_id}).")
        return 0
    finally:
        sessions.close()
        users.close()


def cmd_verify_email(args: argparse.Namespace) -> int:
    users, sessions = _stores()
    try:
        principal = users.get_by_email(args.email)
        if principal is None:
            print(f"  [!] No user with email {normalize_email(args.email)}.")
            return 1
        users.set_email_verified(principal.id, verified=not args.revoke)
        state = "unverified" if args.revoke else "verified"
        print(f"  {principal.email} marked {state}.")
        return 0
    finally:
        sessions.close()
        users.close()


def cmd_revoke_sessions(args: argparse.Namespace) -> int:
    users, sessions = _stores()
    try:
        principal = users.get_by_email(args.email)
        if principal is None:
            print(f"  [!] No user with email {normalize_email(args.email)}.")
            return 1
        revoked = sessions.revoke_all(principal.id)
        print(f"  Revoked {revoked} session(s) for {principal.email}.")
        return 0
    finally:
        sessions.close()
        users.close()


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    users, sessions = _stores()
    try:
        purged = sessions.purge_expired()
        print(f"  Purged {purged} expired session record(s).")
        return 0
    finally:
        sessions.close()
        users.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resumeagent-auth",
        description="Operator commands for the ResumeAgent auth service.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("generate-keys", help="Generate an RSA keypair for token signing")
    p.add_argument("--out", default="keys", metavar="DIR", help="Output directory (default: keys)")
    p.add_argument(
        "--bits",
        type=int,
        default=MIN_KEY_SIZE,
        help=f"RSA modulus size in bits (default: {MIN_KEY_SIZE})",
    )
    p.add_argument("--force", action="store_true", help="Overwrite existing key files")
    p.set_defaults(func=cmd_generate_keys)

    p = sub.add_parser("create-admin", help="Create a verified ADMIN account (password is prompted)")
    p.add_argument("--email", required=True)
    p.add_argument("--name", required=True, help="Full name")
    p.set_defaults(func=cmd_create_admin)

    p = sub.add_parser("verify-email", help="Mark an account's email as verified")
    p.add_argument("email")
    p.add_argument("--revoke", action="store_true", help="Mark the email unverified instead")
    p.set_defaults(func=cmd_verify_email)

    p = sub.add_parser("revoke-sessions", help="Revoke every refresh session of an account")
    p.add_argument("email")
    p.set_defaults(func=cmd_revoke_sessions)

    p = sub.add_parser("purge-sessions", help="Delete expired refresh session records")
    p.set_defaults(func=cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
