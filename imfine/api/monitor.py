"""Scheduler entry point for the transition scan."""

from fastapi import APIRouter

from ..core.dependencies import CronSecretDep
from ..schemas import ScanResponse
from .dependencies import CheckinEngineDep

router = APIRouter(prefix="/monitor", tags=["monitor"])


@router.post("/scan", response_model=ScanResponse)
async def run_scan(_: CronSecretDep, engine: CheckinEngineDep):
    """Run one scan. Called by an external timer with the X-Cron-Secret header."""
    result = await engine.run_scan()
    return ScanResponse(**result.to_dict())
