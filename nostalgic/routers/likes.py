from fastapi import APIRouter, Depends

from nostalgic.dependencies import (
    Viewer,
    created_response,
    get_services,
    schedule_cleanup,
    unwrap,
)
from nostalgic.schemas import LikeData, LikeIncrement, LikeSetValue, OwnerCredentials
from nostalgic.services import Services

router = APIRouter(
    prefix="/api/v1/likes",
    tags=["likes"],
    dependencies=[Depends(schedule_cleanup)],
)


@router.post("", status_code=201)
async def create_like(data: OwnerCredentials, services: Services = Depends(get_services)):
    return created_response(unwrap(await services.like.create(data.url, data.token)))


@router.post("/increment", response_model=LikeData)
async def increment_like(
    data: LikeIncrement,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.like.increment_like(data.url, data.token, data.by, viewer.user_hash))


@router.put("/value", response_model=LikeData)
async def set_like_value(
    data: LikeSetValue,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.like.set_like_value(data.url, data.token, data.value, viewer.user_hash))


@router.delete("", status_code=204)
async def delete_like(data: OwnerCredentials, services: Services = Depends(get_services)):
    unwrap(await services.like.delete(data.url, data.token))


@router.get("/{public_id}", response_model=LikeData)
async def get_like(
    public_id: str,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.like.get_like_data(public_id, viewer.user_hash))


@router.post("/{public_id}/toggle", response_model=LikeData)
async def toggle_like(
    public_id: str,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.like.toggle(public_id, viewer.user_hash))
