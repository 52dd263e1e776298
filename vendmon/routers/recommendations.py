"""
性能建议路由模块 (Performance Recommendations Router)

API端点：GET /recommendations, GET /recommendations/type/{type}, GET /recommendations/critical,
         GET /recommendations/stats, POST /recommendations/refresh
"""
from typing import List

from fastapi import APIRouter, Depends

from vendmon.core.deps import Pipeline, get_pipeline
from vendmon.schemas.recommendation import Recommendation, RecommendationStats, RecommendationType

router = APIRouter(prefix="/api/v1/recommendations", tags=["recommendations"])


@router.get("", response_model=List[Recommendation])
async def list_recommendations(force_refresh: bool = False, pipeline: Pipeline = Depends(get_pipeline)):
    """
    全部性能建议 (All recommendations)

    结果缓存 24 小时；force_refresh=true 时重新分析。
    """
    return await pipeline.recommendations.get_recommendations(force_refresh=force_refresh)


@router.get("/type/{rec_type}", response_model=List[Recommendation])
async def list_recommendations_by_type(rec_type: RecommendationType, pipeline: Pipeline = Depends(get_pipeline)):
    return await pipeline.recommendations.get_by_type(rec_type)


@router.get("/critical", response_model=List[Recommendation])
async def list_critical_recommendations(pipeline: Pipeline = Depends(get_pipeline)):
    return await pipeline.recommendations.get_critical()


@router.get("/stats", response_model=RecommendationStats)
async def get_recommendation_stats(pipeline: Pipeline = Depends(get_pipeline)):
    return await pipeline.recommendations.get_stats()


@router.post("/refresh", response_model=List[Recommendation])
async def refresh_recommendations(pipeline: Pipeline = Depends(get_pipeline)):
    return await pipeline.recommendations.get_recommendations(force_refresh=True)
