"""Migration comparison and execution endpoints."""

import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException

from ..models import CompareResponse, MigrationRequest, RunResponse
from ...errors import ConfigurationError, TransferAbortedError
from ...models.migration import MigrationConfig
from ...orchestrator import MigrationOrchestrator
from ...services.reporter import comparison_report, run_summary

logger = logging.getLogger(__name__)

router = APIRouter()

OrchestratorFactory = Callable[[MigrationConfig], MigrationOrchestrator]


def get_orchestrator_factory() -> OrchestratorFactory:
    """Builds orchestrators for a request; overridden in tests."""
    return MigrationOrchestrator.from_config


def _validated_config(request: MigrationRequest) -> MigrationConfig:
    config = request.to_config()
    try:
        config.validate()
    except ConfigurationError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": "Configuration validation failed", "problems": e.problems},
        )
    return config


@router.post("/compare", response_model=CompareResponse)
async def compare_accounts(
    request: MigrationRequest,
    factory: OrchestratorFactory = Depends(get_orchestrator_factory),
):
    """Plan every selected resource type without changing anything."""
    config = _validated_config(request)
    orchestrator = factory(config)
    plans = await orchestrator.compare()

    return CompareResponse(
        plans={t.value: p.to_dict() for t, p in plans.items()},
        errors={t.value: e for t, e in orchestrator.comparison_errors.items()},
        in_sync=all(p.is_empty and not p.preserved for p in plans.values()) and not orchestrator.comparison_errors,
        report=comparison_report(plans, config.source.label, config.destination.label),
    )


@router.post("/run", response_model=RunResponse)
async def run_migration(
    request: MigrationRequest,
    factory: OrchestratorFactory = Depends(get_orchestrator_factory),
):
    """Run a migration and return its report."""
    config = _validated_config(request)
    orchestrator = factory(config)

    aborted = False
    try:
        run = await orchestrator.run_migration()
    except TransferAbortedError as e:
        logger.error(f"Migration {config.name} aborted: {e}")
        run = orchestrator.run
        aborted = True

    return RunResponse(
        run=run.to_dict(config.max_displayed_errors),
        aborted=aborted,
        report=run_summary(run, config.max_displayed_errors),
    )
