from fastapi import FastAPI, HTTPException, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse, JSONResponse
from pydantic import BaseModel, HttpUrl
from typing import Dict, Any, Optional
import asyncio
import json
import logging
from datetime import datetime

from .config import get_settings
from .errors import AuditEngineError, AuditTimeoutError, RevampError
from .models import PipelineStage
from .services.audit_runner import BrowserAuditRunner
from .services.pipeline import AccessibilityPipeline
from .services.scoring import summarize

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Revamp API",
    description="Capture a website, regenerate it accessibly, and compare axe-core scores",
    version="0.1.0"
)
# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request Models
class PipelineRequest(BaseModel):
    url: HttpUrl


class AuditRequest(BaseModel):
    url: HttpUrl


# Response Models
class PipelineResponse(BaseModel):
    success: bool
    before: Optional[int] = None
    after: Optional[int] = None
    improvement: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class AuditResponse(BaseModel):
    success: bool
    score: Optional[int] = None
    summary: Optional[Dict[str, Any]] = None


def _status_for(exc: RevampError) -> int:
    if isinstance(exc, AuditTimeoutError):
        return 504
    if isinstance(exc, AuditEngineError):
        return 500
    return 502


@app.get("/api/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@app.post("/api/pipeline", response_model=PipelineResponse)
async def run_pipeline(request: PipelineRequest):
    """Run capture -> audit -> generate -> audit for one URL"""
    start_time = datetime.now()
    logger.info(f"Starting pipeline for URL: {request.url}")

    pipeline = AccessibilityPipeline()
    outcome = await pipeline.run(str(request.url))

    processing_time = (datetime.now() - start_time).total_seconds()
    logger.info(f"Pipeline completed in {processing_time:.2f}s")

    return PipelineResponse(
        success=True,
        before=outcome.before,
        after=outcome.after,
        improvement=outcome.improvement,
        metadata={
            "processing_time_seconds": processing_time,
            "timestamp": datetime.now().isoformat(),
            "source_url": str(request.url),
        },
    )


@app.post("/api/audit", response_model=AuditResponse)
async def audit_url(request: AuditRequest):
    """Audit a live URL without capturing or regenerating it"""
    result = await BrowserAuditRunner().audit(str(request.url))
    summary = summarize(result)
    return AuditResponse(success=True, score=summary["score"], summary=summary)


@app.get("/api/pipeline/stream")
async def run_pipeline_stream(url: HttpUrl = Query(...)):
    """Stream pipeline stage transitions as server-sent events"""
    target = str(url)

    async def generate_pipeline_stream():
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(stage: PipelineStage, message: str):
            queue.put_nowait({"status": stage.value, "message": message})

        pipeline = AccessibilityPipeline(on_progress=on_progress)
        task = asyncio.create_task(pipeline.run(target))
        # None marks the end of the run
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield f"data: {json.dumps(event)}\n\n"

            try:
                outcome = task.result()
            except Exception as e:
                logger.error(f"Streamed pipeline for {target} failed: {e}")
                yield f"data: {json.dumps({'status': 'error', 'message': str(e), 'error_type': type(e).__name__})}\n\n"
                return
            yield f"data: {json.dumps({'status': 'complete', 'before': outcome.before, 'after': outcome.after})}\n\n"
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        generate_pipeline_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@app.exception_handler(RevampError)
async def revamp_exception_handler(request: Request, exc: RevampError):
    logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=_status_for(exc),
        content={
            "success": False,
            "error": str(exc),
            "error_type": type(exc).__name__,
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "timestamp": datetime.now().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "timestamp": datetime.now().isoformat()
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
