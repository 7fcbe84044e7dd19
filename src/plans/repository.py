"""
Entitlement source port.

The service only reads plan state; receipt validation and admin tooling
write it. Two implementations: an in-memory store (development, tests)
and a Postgres table.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from pydantic import ValidationError

from src.db import execute as db_execute, fetchrow as db_fetchrow
from src.types.plan_state import UserPlanState
from src.usage.errors import LedgerUnavailableError
from src.utils.logging import mask_user_id

logger = logging.getLogger(__name__)

# Dropped, not fatal, when malformed
TIMESTAMP_FIELDS = frozenset({"start_date", "created_at", "pending_downgrade"})


class PlanStateRepository(ABC):
    """Read (and, for tooling, write) a user's plan state."""

    @abstractmethod
    async def get_user_plan_state(self, user_id: str) -> UserPlanState:
        """Plan state for user_id. Unknown users are free/active."""

    @abstractmethod
    async def save_user_plan_state(self, state: UserPlanState) -> None:
        ...


class InMemoryPlanStateRepository(PlanStateRepository):
    def __init__(self, states: Optional[Dict[str, UserPlanState]] = None):
        self._states: Dict[str, UserPlanState] = dict(states or {})

    async def get_user_plan_state(self, user_id: str) -> UserPlanState:
        state = self._states.get(user_id)
        if state is None:
            return UserPlanState(user_id=user_id)
        return state

    async def save_user_plan_state(self, state: UserPlanState) -> None:
        self._states[state.user_id] = state


class PostgresPlanStateRepository(PlanStateRepository):
    """
    Plan state stored as one JSONB document per user in user_plan_states.

    Malformed timestamps in a document are a data-integrity problem: they
    are logged at ERROR and dropped, so plan and status still apply and the
    reset date falls back to the default anchor day. A document that is
    still invalid after that is served as free until it is fixed.
    """

    async def get_user_plan_state(self, user_id: str) -> UserPlanState:
        try:
            row = await db_fetchrow(
                "SELECT state FROM user_plan_states WHERE user_id = $1",
                user_id,
            )
        except Exception as e:
            logger.error(f"Database error reading plan state: {e}")
            raise LedgerUnavailableError(str(e)) from e

        if not row:
            return UserPlanState(user_id=user_id)

        raw = row["state"]
        data = json.loads(raw) if isinstance(raw, str) else dict(raw)
        data["user_id"] = user_id
        try:
            return UserPlanState.model_validate(data)
        except ValidationError as e:
            invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
            dropped = sorted(invalid & TIMESTAMP_FIELDS)
            logger.error(
                f"Invalid plan state for user {mask_user_id(user_id)}: "
                f"{e.error_count()} validation error(s), dropping {dropped or 'nothing'}"
            )
            if not dropped or invalid - TIMESTAMP_FIELDS:
                return UserPlanState(user_id=user_id)

        for name in dropped:
            data.pop(name)
        return UserPlanState.model_validate(data)

    async def save_user_plan_state(self, state: UserPlanState) -> None:
        await db_execute(
            """
            INSERT INTO user_plan_states (user_id, state, updated_at)
            VALUES ($1, $2::jsonb, NOW())
            ON CONFLICT (user_id) DO UPDATE
            SET state = EXCLUDED.state,
                updated_at = NOW()
            """,
            state.user_id,
            state.model_dump_json(exclude={"user_id"}),
        )
        logger.info(f"Saved plan state for user {mask_user_id(state.user_id)}: {state.plan.value}")
