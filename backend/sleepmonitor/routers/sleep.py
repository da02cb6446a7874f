from fastapi import APIRouter, Depends, HTTPException, Request, Response, status, Path, Query
from typing import List, Optional
from datetime import datetime

from sleepmonitor.schemas.sleep import (
    INT64_MAX, INT64_MIN, SleepRecordCreate, SleepRecordResponse, DeleteAllResponse
)
from sleepmonitor.services.health_data_service import HealthDataService

router = APIRouter()


def get_health_service(request: Request) -> HealthDataService:
    """Dependency that provides the service bound to the app's database"""
    return HealthDataService(request.app.state.database.sleep_store)


@router.get("", response_model=List[SleepRecordResponse])
async def get_sleep_records(
    start_date: Optional[datetime] = Query(None, description="Only records dated at or after this instant"),
    service: HealthDataService = Depends(get_health_service)
):
    """Get sleep records, newest first"""
    return list(await service.list_sleep_data(start_date))


@router.post("", response_model=SleepRecordResponse, status_code=status.HTTP_201_CREATED)
async def save_sleep_record(
    record_data: SleepRecordCreate,
    service: HealthDataService = Depends(get_health_service)
):
    """Create a sleep record, or replace the one with the same id"""
    return await service.save_sleep_data(record_data.to_record())


@router.get("/latest", response_model=SleepRecordResponse)
async def get_latest_sleep_record(
    service: HealthDataService = Depends(get_health_service)
):
    """Get the most recent sleep record"""
    record = await service.get_latest_sleep_data()
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No sleep data recorded yet"
        )
    return record


@router.delete("", response_model=DeleteAllResponse)
async def delete_all_sleep_records(
    service: HealthDataService = Depends(get_health_service)
):
    """Delete every sleep record"""
    return DeleteAllResponse(deleted=await service.clear_sleep_data())


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sleep_record(
    record_id: int = Path(..., ge=INT64_MIN, le=INT64_MAX),
    service: HealthDataService = Depends(get_health_service)
):
    """Delete a sleep record; deleting a missing record is not an error"""
    await service.delete_sleep_data_by_id(record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
