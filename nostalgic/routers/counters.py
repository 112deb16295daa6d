from fastapi import APIRouter, Depends, Query

from nostalgic.dependencies import (
    Viewer,
    created_response,
    get_services,
    schedule_cleanup,
    unwrap,
)
from nostalgic.schemas import CounterData, CounterKind, CounterSetValue, OwnerCredentials
from nostalgic.services import Services

router = APIRouter(
    prefix="/api/v1/counters",
    tags=["counters"],
    dependencies=[Depends(schedule_cleanup)],
)


@router.post("", status_code=201)
async def create_counter(data: OwnerCredentials, services: Services = Depends(get_services)):
    return created_response(unwrap(await services.counter.create(data.url, data.token)))


@router.put("/value", response_model=CounterData)
async def set_counter_value(data: CounterSetValue, services: Services = Depends(get_services)):
    return unwrap(await services.counter.set_counter_value(data.url, data.token, data.value))


@router.delete("", status_code=204)
async def delete_counter(data: OwnerCredentials, services: Services = Depends(get_services)):
    unwrap(await services.counter.delete(data.url, data.token))


@router.get("/{public_id}", response_model=CounterData)
async def get_counter(public_id: str, services: Services = Depends(get_services)):
    return unwrap(await services.counter.get_counter_data(public_id))


@router.get("/{public_id}/display")
async def get_display_value(
    public_id: str,
    kind: CounterKind = Query("total", alias="type", description="total, today, yesterday, week or month."),
    services: Services = Depends(get_services),
):
    value = unwrap(await services.counter.get_display_value(public_id, kind))
    return {"id": public_id, "type": kind, "value": value}


@router.post("/{public_id}/visits", response_model=CounterData)
async def record_visit(
    public_id: str,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.counter.increment(public_id, viewer.daily_hash(services)))
