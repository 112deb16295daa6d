from fastapi import APIRouter, Depends, Query

from nostalgic.dependencies import (
    Viewer,
    created_response,
    get_services,
    schedule_cleanup,
    unwrap,
)
from nostalgic.schemas import (
    OwnerCredentials,
    RankingCreateRequest,
    RankingData,
    RankingNameRequest,
    RankingScoreRequest,
)
from nostalgic.services import Services

router = APIRouter(
    prefix="/api/v1/rankings",
    tags=["rankings"],
    dependencies=[Depends(schedule_cleanup)],
)


@router.post("", status_code=201)
async def create_ranking(data: RankingCreateRequest, services: Services = Depends(get_services)):
    params = {"max_entries": data.max_entries} if data.max_entries is not None else {}
    return created_response(unwrap(await services.ranking.create(data.url, data.token, params)))


@router.delete("", status_code=204)
async def delete_ranking(data: OwnerCredentials, services: Services = Depends(get_services)):
    unwrap(await services.ranking.delete(data.url, data.token))


@router.post("/scores", response_model=RankingData)
async def submit_score(
    data: RankingScoreRequest,
    viewer: Viewer = Depends(Viewer),
    services: Services = Depends(get_services),
):
    return unwrap(await services.ranking.submit_score(
        data.url, data.token, data.name, data.score, viewer.user_hash
    ))


@router.put("/scores", response_model=RankingData)
async def update_score(data: RankingScoreRequest, services: Services = Depends(get_services)):
    return unwrap(await services.ranking.update_score(data.url, data.token, data.name, data.score))


@router.delete("/scores", response_model=RankingData)
async def remove_entry(data: RankingNameRequest, services: Services = Depends(get_services)):
    return unwrap(await services.ranking.remove_entry(data.url, data.token, data.name))


@router.post("/clear", response_model=RankingData)
async def clear_ranking(data: OwnerCredentials, services: Services = Depends(get_services)):
    return unwrap(await services.ranking.clear_ranking(data.url, data.token))


@router.get("/{public_id}", response_model=RankingData)
async def get_ranking(
    public_id: str,
    limit: int | None = Query(None, ge=1, le=10000, description="Number of entries to return."),
    services: Services = Depends(get_services),
):
    return unwrap(await services.ranking.get_ranking_data(public_id, limit))
