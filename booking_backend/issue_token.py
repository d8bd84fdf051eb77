"""Print a development bearer token for the given actor.

Usage:
    python -m booking_backend.issue_token --role ADMIN --actor-id 1
"""
import argparse
import sys

from booking_backend.auth.jwt_handler import create_access_token
from booking_backend.core import config
from booking_backend.core.actor import Actor, ActorRole


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--role", required=True, choices=[role.value for role in ActorRole])
    parser.add_argument("--actor-id", required=True, type=int)
    parser.add_argument("--expires-minutes", type=int, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if config.APP_ENV.lower() == "production":
        print("Refusing to issue development tokens in production.", file=sys.stderr)
        return 1
    actor = Actor(role=ActorRole(args.role), actor_id=args.actor_id)
    print(create_access_token(actor, expires_minutes=args.expires_minutes))
    return 0


if __name__ == "__main__":
    sys.exit(main())
