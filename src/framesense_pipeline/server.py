# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import base64
import binascii
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from framesense_pipeline.config import PipelineSettings
from framesense_pipeline.exceptions import (
    AccessDeniedError,
    DuplicateInFlightError,
    InternalError,
    ProviderError,
    ValidationError,
)
from framesense_pipeline.models import AnalysisResponse
from framesense_pipeline.pipeline import AnalysisPipeline, create_pipeline
from framesense_pipeline.utils.logger import logger

FAILURE_STATUS_CODES = {
    ValidationError.code: 400,
    AccessDeniedError.code: 403,
    DuplicateInFlightError.code: 409,
    ProviderError.code: 502,
    InternalError.code: 500,
}


class AnalyzeRequest(BaseModel):
    question: str
    user_id: str
    # Raw base64 or a data:image/...;base64, URL
    image_base64: Optional[str] = None
    model_preference: Optional[str] = None
    language: Optional[str] = None
    include_regions: bool = False
    max_results: int = Field(default=10, gt=0, le=100)
    allow_degraded: bool = True


def _decode_image_field(image_base64: Optional[str]) -> Union[str, bytes, None]:
    if not image_base64:
        return None
    if image_base64.startswith("data:"):
        return image_base64
    try:
        return base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"image_base64 is not valid base64: {e}") from e


def create_app(pipeline: Optional[AnalysisPipeline] = None) -> FastAPI:
    """Builds the HTTP app around `pipeline` (a default one from the environment if omitted)."""
    pipeline = pipeline or create_pipeline(PipelineSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("FrameSense analysis server starting")
        yield
        logger.info(f"FrameSense analysis server stopping; metrics: {pipeline.metrics()}")

    app = FastAPI(title="FrameSense Analysis Pipeline", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return await pipeline.health_check()

    @app.get("/metrics")
    async def metrics() -> Dict[str, Any]:
        return pipeline.metrics()

    @app.post("/v1/analyze")
    async def analyze(request: AnalyzeRequest) -> JSONResponse:
        image = _decode_image_field(request.image_base64)
        options: Dict[str, Any] = {
            "model_preference": request.model_preference,
            "include_regions": request.include_regions,
            "max_results": request.max_results,
            "allow_degraded": request.allow_degraded,
        }
        if request.language:
            options["language"] = request.language

        result = await pipeline.process_analysis_request(image, request.question, request.user_id, options)
        if isinstance(result, AnalysisResponse):
            return JSONResponse(status_code=200, content=result.model_dump(mode="json"))

        status = FAILURE_STATUS_CODES.get(result.error_type, 500)
        return JSONResponse(status_code=status, content=result.model_dump(mode="json"))

    @app.get("/v1/usage/{user_id}")
    async def usage(user_id: str) -> Dict[str, Any]:
        return await pipeline.usage_report(user_id)

    return app


def main() -> None:  # pragma: no cover
    settings = PipelineSettings.from_env()
    app = create_app(create_pipeline(settings))
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover
    main()
