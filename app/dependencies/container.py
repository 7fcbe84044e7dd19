"""
Service container.

All stateful services are built once per application (in the lifespan
handler) and handed to routes through FastAPI dependencies. Tests build
their own container with in-memory stores and fakes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from src.analysis.engine import AnalysisEngine, OpenAIAnalysisEngine
from src.config import Settings
from src.plans.repository import (
    InMemoryPlanStateRepository,
    PlanStateRepository,
    PostgresPlanStateRepository,
)
from src.plans.resolver import PlanResolver
from src.usage.acceptance import AcceptanceCriteria
from src.usage.ledger import InMemoryUsageLedger, UsageLedgerPort
from src.usage.manager import UsageManager
from src.usage.metering import MeteredOperationRunner
from src.usage.postgres_ledger import PostgresUsageLedger

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    ledger: UsageLedgerPort
    plan_repository: PlanStateRepository
    resolver: PlanResolver
    manager: UsageManager
    engine: Optional[AnalysisEngine]
    runner: Optional[MeteredOperationRunner]

    @property
    def storage_backend(self) -> str:
        return self.ledger.backend_name


def build_container(
    settings: Settings,
    ledger: Optional[UsageLedgerPort] = None,
    plan_repository: Optional[PlanStateRepository] = None,
    engine: Optional[AnalysisEngine] = None,
) -> ServiceContainer:
    """
    Wire services from settings. Explicit arguments override the defaults
    (Postgres when DATABASE_URL is set, in-memory otherwise).
    """
    if ledger is None:
        if settings.storage_backend == "postgres":
            ledger = PostgresUsageLedger()
        else:
            logger.warning("DATABASE_URL not configured, usage ledger is in-memory")
            ledger = InMemoryUsageLedger()

    if plan_repository is None:
        if settings.storage_backend == "postgres":
            plan_repository = PostgresPlanStateRepository()
        else:
            plan_repository = InMemoryPlanStateRepository()

    if engine is None and settings.llm.is_configured:
        engine = OpenAIAnalysisEngine(settings.llm)

    resolver = PlanResolver(
        test_account_plans=settings.usage.test_account_plans,
        fallback_anchor_day=settings.usage.reset_anchor_fallback_day,
    )
    manager = UsageManager(ledger)

    runner = None
    if engine is not None:
        runner = MeteredOperationRunner(
            manager=manager,
            engine=engine,
            resolver=resolver,
            plan_repository=plan_repository,
            criteria=AcceptanceCriteria(min_length=settings.usage.analysis_min_length),
        )
    else:
        logger.warning("No analysis engine configured, /ai/analyze is disabled")

    return ServiceContainer(
        settings=settings,
        ledger=ledger,
        plan_repository=plan_repository,
        resolver=resolver,
        manager=manager,
        engine=engine,
        runner=runner,
    )
