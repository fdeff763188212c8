"""Job Crawler API: FastAPI backend over CrawlEngine."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import load_config
from .engine import CrawlEngine
from .errors import CrawlerError, PatternLearningFailed, error_kind
from .models import CrawlParams, utc_now

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
CONFIG_PATH = os.environ.get("JOB_CRAWLER_CONFIG")
PORT = int(os.environ.get("JOB_CRAWLER_PORT", "8898"))

app = FastAPI(title="Job Crawler")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

_engine: Optional[CrawlEngine] = None


def get_engine() -> CrawlEngine:
    global _engine
    if _engine is None:
        _engine = CrawlEngine(load_config(Path(CONFIG_PATH) if CONFIG_PATH else None))
    return _engine


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _engine
    if _engine is not None:
        await _engine.aclose()
        _engine = None


class AggregateRequest(CrawlParams):
    sites: Optional[list[str]] = None


class LearnRequest(BaseModel):
    site_url: str
    site_name: Optional[str] = None
    alt_url: Optional[str] = None


def _failure(exc: CrawlerError, status_code: int = 502) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": str(exc), "kind": error_kind(exc)},
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# Routes: crawling
# ---------------------------------------------------------------------------
@app.post("/api/crawl")
async def crawl_all(body: AggregateRequest, engine: CrawlEngine = Depends(get_engine)):
    params = CrawlParams.model_validate(body.model_dump(exclude={"sites"}))
    result = await engine.crawl_all(body.sites, params)
    # Partial failure still answers 200; only total failure is an error.
    return JSONResponse(result.to_response(), status_code=200 if result.success else 502)


# ---------------------------------------------------------------------------
# Routes: patterns
# ---------------------------------------------------------------------------
@app.get("/api/crawl/sites")
def list_sites(
    include_selectors: bool = Query(False),
    engine: CrawlEngine = Depends(get_engine),
):
    patterns = engine.list_patterns()
    return {
        "success": True,
        "count": len(patterns),
        "sites": [p.summary(include_selectors=include_selectors) for p in patterns],
    }


@app.delete("/api/crawl/sites/{domain}")
def forget_site(domain: str, engine: CrawlEngine = Depends(get_engine)):
    if not engine.forget(domain):
        return JSONResponse({"success": False, "error": f"no stored pattern for {domain}"}, status_code=404)
    return {"success": True, "domain": domain}


@app.post("/api/crawl/learn-site")
async def learn_site(body: LearnRequest, engine: CrawlEngine = Depends(get_engine)):
    try:
        pattern = await engine.learn_site(body.site_url, body.site_name, body.alt_url)
    except PatternLearningFailed as e:
        return _failure(e, status_code=422)
    except CrawlerError as e:
        return _failure(e)
    return {"success": True, "pattern": pattern.summary(include_selectors=True)}


@app.get("/api/crawl/{site}")
async def crawl_site(
    site: str,
    params: CrawlParams = Depends(),
    engine: CrawlEngine = Depends(get_engine),
):
    try:
        run = await engine.crawl_site(site, params)
    except CrawlerError as e:
        return _failure(e)
    return {
        "success": True,
        "site": run.domain,
        "jobs": [j.model_dump(mode="json") for j in run.jobs],
        "count": len(run.jobs),
        "pages": run.pages,
        "learned": run.learned,
        "relearned": run.relearned,
        "crawled_at": utc_now().isoformat(),
    }


def main(host: str = "127.0.0.1", port: int = PORT) -> None:
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
