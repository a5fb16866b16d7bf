"""Check that a domain-wide delegation can act as a given organization member."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .calendars import CalendarError
from .database import session_scope
from .delegation import check_configured_in_workspace
from .models import User
from .repositories import DelegationRepository
from .schemas import DelegationConfig, UserRef

logger = logging.getLogger("booking_gateway.cli")


def _load(delegation_id: str, email: str) -> tuple[DelegationConfig, UserRef]:
    with session_scope() as session:
        config = DelegationRepository(session).find_by_id(delegation_id, sensitive=True)
        if config is None:
            raise LookupError(f"Delegation not found: {delegation_id}")
        if config.service_account_key is None:
            raise LookupError(f"Delegation {delegation_id} has no service-account key")
        user = session.query(User).filter(User.email == email).first()
        if user is None:
            raise LookupError(f"User not found: {email}")
        return config, UserRef(id=user.id, email=user.email)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--delegation-id",
        dest="delegation_id",
        required=True,
        help="Identifier of the domain-wide delegation to check",
    )
    parser.add_argument(
        "--email",
        dest="email",
        required=True,
        help="Email of the organization member to impersonate",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        config, user = _load(args.delegation_id, args.email)
    except LookupError as error:
        print(f"Check failed: {error}", file=sys.stderr)
        return 1

    logger.debug("Probing workspace", extra={"delegation_id": config.id, "user_id": user.id})
    try:
        configured = asyncio.run(check_configured_in_workspace(config, user))
    except CalendarError as error:
        print(f"Check failed: {error.detail}", file=sys.stderr)
        return 1

    if configured:
        print(f"Delegation {config.id} can act as {user.email}.")
        return 0
    print(f"Delegation {config.id} is not authorized for {user.email} in the workspace.")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
