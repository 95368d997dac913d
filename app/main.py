"""Entry point for the ReelMatch recommendation API."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Literal

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .database import Database
from .services.cache import RecommendationCache
from .services.library import LibraryStore
from .services.recommender import RecommendationService
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class AddSourceCollectionRequest(BaseModel):
    collection_id: str = Field(min_length=1)


class SetSourceCollectionsRequest(BaseModel):
    collection_ids: list[str]


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb = TMDBClient(settings, tmdb_http_client)
    cache = RecommendationCache(
        database.session_factory,
        ttl_seconds=settings.recommendation_cache_ttl_seconds,
        version=settings.recommendation_cache_version,
    )
    recommendation_service = RecommendationService(
        tmdb, LibraryStore(database.session_factory), cache
    )

    fastapi_app.state.recommendation_service = recommendation_service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personalised movie and series recommendations powered by TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_recommendation_service(app: FastAPI) -> RecommendationService:
    service = getattr(app.state, "recommendation_service", None)
    if not isinstance(service, RecommendationService):
        raise RuntimeError("Recommendation service not initialised")
    return service


async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"detail": _format_validation_errors(exc)}
    )


def _format_validation_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def register_routes(fastapi_app: FastAPI) -> None:
    fastapi_app.add_exception_handler(RequestValidationError, _validation_error)
    prefix = "/users/{user_id}/recommendations"

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get(prefix)
    async def recommendations(
        user_id: str,
        limit: int = Query(20, ge=1, le=100),
        page: int = Query(1, ge=1),
    ) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        result = await service.for_you(user_id, limit=limit, page=page)
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @fastapi_app.get(prefix + "/categories")
    async def category_recommendations(
        user_id: str,
        media_type: Literal["movie", "tv"] = Query("movie", alias="mediaType"),
        limit: int = Query(10, ge=1, le=100),
    ) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        result = await service.categories(user_id, media_type=media_type, limit=limit)
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @fastapi_app.get(prefix + "/genre/{genre_id}")
    async def genre_recommendations(
        user_id: str,
        genre_id: int,
        media_type: Literal["movie", "tv"] = Query("movie", alias="mediaType"),
        limit: int = Query(20, ge=1, le=100),
        page: int = Query(1, ge=1),
    ) -> JSONResponse:
        if genre_id <= 0:
            raise HTTPException(status_code=400, detail="Invalid genreId")
        service = get_recommendation_service(fastapi_app)
        result = await service.genre(
            user_id, genre_id, media_type=media_type, limit=limit, page=page
        )
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @fastapi_app.get(prefix + "/theatrical")
    async def theatrical_recommendations(
        user_id: str,
        limit: int = Query(20, ge=1, le=100),
        page: int = Query(1, ge=1),
    ) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        result = await service.theatrical(user_id, limit=limit, page=page)
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @fastapi_app.get(prefix + "/collections")
    async def list_source_collections(user_id: str) -> dict[str, object]:
        service = get_recommendation_service(fastapi_app)
        collections = await service.source_collections(user_id)
        return {"collections": [collection.model_dump() for collection in collections]}

    @fastapi_app.post(prefix + "/collections", status_code=201)
    async def add_source_collection(
        user_id: str, payload: AddSourceCollectionRequest
    ) -> dict[str, str]:
        service = get_recommendation_service(fastapi_app)
        added = await service.add_source_collection(user_id, payload.collection_id)
        if not added:
            raise HTTPException(
                status_code=400,
                detail="Invalid collection: you don't have access to this collection",
            )
        return {"message": "Collection added to recommendation sources"}

    @fastapi_app.put(prefix + "/collections")
    async def set_source_collections(
        user_id: str, payload: SetSourceCollectionsRequest
    ) -> dict[str, object]:
        service = get_recommendation_service(fastapi_app)
        replaced = await service.set_source_collections(user_id, payload.collection_ids)
        if not replaced:
            raise HTTPException(
                status_code=400,
                detail="Invalid collections: you don't have access to one or more collections",
            )
        collections = await service.source_collections(user_id)
        return {"collections": [collection.model_dump() for collection in collections]}

    @fastapi_app.delete(prefix + "/collections/{collection_id}")
    async def remove_source_collection(user_id: str, collection_id: str) -> dict[str, str]:
        service = get_recommendation_service(fastapi_app)
        await service.remove_source_collection(user_id, collection_id)
        return {"message": "Collection removed from recommendation sources"}

    @fastapi_app.get(prefix + "/debug/cache")
    async def cache_debug(user_id: str) -> JSONResponse:
        if user_id not in settings.recommendation_debug_users:
            raise HTTPException(status_code=403, detail="Forbidden")
        service = get_recommendation_service(fastapi_app)
        report = await service.debug_report(user_id)
        return JSONResponse(
            {
                "cache": report.model_dump(mode="json"),
                "ttl_minutes": settings.recommendation_cache_ttl_minutes,
            }
        )


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
