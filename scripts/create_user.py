#!/usr/bin/env python3
"""Create a ledger user with default categories and print an API token."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from auth import issue_token
from database import session_scope
from models import UserRole
from schemas import UserIn
from services import BusinessRuleError, NotFoundError, UserService


def main(username: str, name: str, admin: bool = False) -> int:
    role = UserRole.admin if admin else UserRole.user
    with session_scope() as session:
        try:
            user = UserService(session).create(
                UserIn(username=username, name=name, role=role)
            )
        except BusinessRuleError as exc:
            print(f"Error: {exc}")
            return 1
        token = issue_token(user)
        print(f"Created user {user.username} (id={user.id}, role={user.role.value})")
    print(f"Token: {token}")
    return 0


def reissue(username: str) -> int:
    with session_scope() as session:
        try:
            user = UserService(session).get_by_username(username)
        except NotFoundError as exc:
            print(f"Error: {exc}")
            return 1
        token = issue_token(user)
    print(f"Token: {token}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Create a ledger user or reissue a token.')
    parser.add_argument('username', help='Login name (stored lowercase)')
    parser.add_argument('name', nargs='?', help='Display name (required when creating)')
    parser.add_argument('--admin', action='store_true', help='Grant the admin role')
    parser.add_argument(
        '--reissue', action='store_true', help='Print a fresh token for an existing user'
    )
    args = parser.parse_args()
    if args.reissue:
        sys.exit(reissue(args.username))
    if not args.name:
        parser.error('name is required when creating a user')
    sys.exit(main(args.username, args.name, admin=args.admin))
