"""
Flag a user as a test account (or clear the flag) in the plan-state store.

Usage:
  python scripts/set_test_account.py --user-id <uid> --plan pro
  python scripts/set_test_account.py --user-id <uid> --clear

Requires DATABASE_URL. For allowlist-only test accounts, set
TEST_ACCOUNT_PLANS='{"<uid>": "unlimited"}' instead.
"""

from __future__ import annotations

import argparse
import asyncio

from src.db import close_pool, ensure_schema, is_database_configured
from src.plans.repository import PostgresPlanStateRepository
from src.types.plans import PlanTier


async def _apply(user_id: str, plan: str | None, clear: bool) -> None:
    await ensure_schema()
    repository = PostgresPlanStateRepository()
    try:
        state = await repository.get_user_plan_state(user_id)
        if clear:
            state = state.model_copy(update={"is_test_account": False, "test_override_plan": None})
        else:
            state = state.model_copy(
                update={
                    "is_test_account": True,
                    "test_override_plan": PlanTier(plan) if plan else None,
                }
            )
        await repository.save_user_plan_state(state)
    finally:
        await close_pool()


def main() -> int:
    parser = argparse.ArgumentParser(description="Set or clear a test-account override")
    parser.add_argument("--user-id", required=True, help="Firebase UID")
    parser.add_argument(
        "--plan",
        choices=[tier.value for tier in PlanTier],
        help="Override plan (defaults to pro when omitted)",
    )
    parser.add_argument("--clear", action="store_true", help="Remove the test-account flag")
    args = parser.parse_args()

    if not is_database_configured():
        print("DATABASE_URL is not configured.")
        return 1

    asyncio.run(_apply(args.user_id, args.plan, args.clear))
    if args.clear:
        print(f"Cleared test account flag for {args.user_id}")
    else:
        print(f"{args.user_id} is now a test account ({args.plan or 'pro'})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
