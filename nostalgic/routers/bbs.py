from fastapi import APIRouter, Depends, Query

from nostalgic.dependencies import (
    Viewer,
    created_response,
    get_services,
    schedule_cleanup,
    unwrap,
)
from nostalgic.schemas import (
    BBSCreateRequest,
    BBSData,
    BBSPostRequest,
    BBSRemoveRequest,
    BBSSettingsRequest,
    BBSUpdateRequest,
    OwnerCredentials,
)
from nostalgic.services import Services

router = APIRouter(
    prefix="/api/v1/bbs",
    tags=["bbs"],
    dependencies=[Depends(schedule_cleanup)],
)

_CREDENTIALS = {"url", "token"}


@router.post("", status_code=201)
async def create_bbs(data: BBSCreateRequest, services: Services = Depends(get_services)):
    params = data.model_dump(exclude=_CREDENTIALS, exclude_none=True)
    return created_response(unwrap(await services.bbs.create(data.url, data.token, params)))


@router.delete("", status_code=204)
async def delete_bbs(data: OwnerCredentials, services: Services = Depends(get_services)):
    unwrap(await services.bbs.delete(data.url, data.token))


@router.post("/messages", response_model=BBSData)
async def post_message(
    data: BBSPostRequest,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    params = data.model_dump(exclude=_CREDENTIALS)
    params["author_hash"] = viewer.author_hash
    return unwrap(await services.bbs.post_message(data.url, data.token, params, viewer.user_hash))


@router.put("/messages", response_model=BBSData)
async def update_message(
    data: BBSUpdateRequest,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    params = data.model_dump(exclude=_CREDENTIALS)
    return unwrap(await services.bbs.update_message(
        data.url, params, author_hash=viewer.author_hash, token=data.token
    ))


@router.delete("/messages", response_model=BBSData)
async def remove_message(
    data: BBSRemoveRequest,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.bbs.remove_message(
        data.url, data.message_id, author_hash=viewer.author_hash, token=data.token
    ))


@router.post("/clear", response_model=BBSData)
async def clear_bbs(data: OwnerCredentials, services: Services = Depends(get_services)):
    return unwrap(await services.bbs.clear_bbs(data.url, data.token))


@router.put("/settings", response_model=BBSData)
async def update_settings(data: BBSSettingsRequest, services: Services = Depends(get_services)):
    changes = data.model_dump(exclude=_CREDENTIALS, exclude_unset=True)
    return unwrap(await services.bbs.update_settings(data.url, data.token, changes))


@router.get("/{public_id}", response_model=BBSData)
async def get_bbs(
    public_id: str,
    page: int = Query(1, ge=1, description="Page number (1-based)."),
    services: Services = Depends(get_services),
):
    return unwrap(await services.bbs.get_bbs_data(public_id, page))
