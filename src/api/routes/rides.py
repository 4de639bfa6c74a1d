"""
Ride endpoints
==============

POST /api/v1/rides           -- a driver publishes a ride
GET  /api/v1/rides/{ride_id} -- ride details with live seat availability
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.middleware import limiter
from src.api.schemas import RideCreateRequest, RideResponse
from src.domain.exceptions import RideNotFound
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Publish a ride",
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    ride = RideModel(
        driver_id=body.driver_id,
        from_city=body.from_city,
        to_city=body.to_city,
        departure_time=body.departure_time,
        price_per_seat=body.price_per_seat,
        total_seats=body.total_seats,
        committed_seats=0,
        version=0,
    )
    return await RideRepository(db).create(ride)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get a ride and its available seats",
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_fresh(ride_id)
    if not ride:
        raise RideNotFound()
    return ride
