"""FastAPI dependencies."""

from fastapi import Depends, Request

from pricescan.currency.converter import CurrencyConverter
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.db.session import AsyncSessionLocal
from pricescan.worker.tasks import ScanTaskRunner


def get_repository() -> SqlAlchemyRepository:
    """Dependency for the persistence layer."""
    return SqlAlchemyRepository(AsyncSessionLocal)


def get_converter(
    request: Request, repository: SqlAlchemyRepository = Depends(get_repository)
) -> CurrencyConverter:
    """Shared converter, so cached rates survive across requests."""
    converter = getattr(request.app.state, "converter", None)
    if converter is None:
        converter = CurrencyConverter(repository)
        request.app.state.converter = converter
    return converter


def get_task_runner(
    request: Request,
    repository: SqlAlchemyRepository = Depends(get_repository),
    converter: CurrencyConverter = Depends(get_converter),
) -> ScanTaskRunner:
    """Task runner owned by the application, created on first use."""
    runner = getattr(request.app.state, "task_runner", None)
    if runner is None:
        runner = ScanTaskRunner(repository, converter)
        request.app.state.task_runner = runner
    return runner
