"""FastAPI application entry point for the issue triage service.

This module provides the HTTP surface of the triage pipeline:
- POST /triage: classify a supplied repository + issue list
- POST /analyze: fetch a GitHub repository's open issues and classify them,
  with a per-repository cache in front
- GET /health, /ready, /metrics: probes and Prometheus metrics
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError

from .cache import AnalysisCache, InMemoryAnalysisCache
from .config import TriageSettings, get_settings
from .github.client import (
    GitHubAPIError,
    GitHubClient,
    InvalidRepositoryURLError,
    RateLimitError,
    RepositoryNotFoundError,
    parse_repo_url,
)
from .llm.agent import LLMTriageClient
from .metrics import generate_metrics_output, get_metrics
from .models import (
    AnalyzeErrorResponse,
    AnalyzeRequest,
    ErrorResponse,
    TriageRequest,
)
from .orchestrator import TriagePipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

INVALID_PAYLOAD_MESSAGE = "Invalid payload. Expected repository and issues fields."

# Global instances, initialized during lifespan startup
settings: Optional[TriageSettings] = None
pipeline: Optional[TriagePipeline] = None
github_client: Optional[GitHubClient] = None
analysis_cache: Optional[AnalysisCache] = None
metrics = get_metrics()


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if not value:
        return "(not set)"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: TriageSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Triage configuration:")
    logger.info(f"  LLM URL: {cfg.llm_url}")
    logger.info(f"  LLM Model: {cfg.llm_model}")
    logger.info(f"  LLM API Key: {_redact_secret(cfg.openai_api_key)}")
    logger.info(f"  LLM Max Tokens: {cfg.llm_max_tokens}")
    logger.info(f"  Batch Size: {cfg.llm_batch_size}")
    logger.info(f"  Max Concurrency: {cfg.llm_max_concurrency}")
    logger.info(f"  Batch Timeout Seconds: {cfg.llm_timeout_seconds}")
    logger.info(f"  Max Issues: {cfg.max_issues}")
    logger.info(f"  GitHub Base URL: {cfg.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(cfg.github_token)}")
    logger.info(f"  Cache TTL Hours: {cfg.cache_ttl_hours}")
    logger.info(f"  Analyze Timeout Seconds: {cfg.analyze_timeout_seconds}")
    logger.info(f"  Host: {cfg.host}")
    logger.info(f"  Port: {cfg.port}")


def build_pipeline(cfg: TriageSettings) -> TriagePipeline:
    """Wire the LLM client and policy into a TriagePipeline."""
    llm_client = LLMTriageClient(
        llm_url=cfg.llm_url,
        model_name=cfg.llm_model,
        api_key=cfg.openai_api_key,
        max_tokens=cfg.llm_max_tokens,
        metrics=metrics,
    )
    return TriagePipeline(llm_client=llm_client, policy=cfg.policy, metrics=metrics)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load settings, wire dependencies, and close clients on shutdown."""
    global settings, pipeline, github_client, analysis_cache

    logger.info("Triage service starting up...")

    settings = get_settings()
    _log_configuration(settings)

    pipeline = build_pipeline(settings)
    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
    )
    analysis_cache = InMemoryAnalysisCache()

    logger.info("Triage service started successfully")

    yield

    logger.info("Triage service shutting down...")

    if github_client is not None:
        await github_client.close()

    logger.info("Triage service shutdown complete")


app = FastAPI(
    title="Issue Triage",
    description="Heuristic + LLM triage of GitHub repository issues",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


def _triage_error(message: str, status_code: int) -> JSONResponse:
    metrics.record_request(
        "triage", "client_error" if status_code < 500 else "server_error"
    )
    return JSONResponse(
        ErrorResponse(error=message).model_dump(),
        status_code=status_code,
    )


def _analyze_error(error: str, details: str, status_code: int) -> JSONResponse:
    metrics.record_request(
        "analyze", "client_error" if status_code < 500 else "server_error"
    )
    return JSONResponse(
        AnalyzeErrorResponse(error=error, details=details).model_dump(),
        status_code=status_code,
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Ready once the pipeline has been wired during startup. GitHub API
    reachability is reported under dependencies but does not gate
    readiness, since cached analyses can still be served without it.
    """
    if pipeline is None:
        return JSONResponse({"status": "not_ready"}, status_code=503)

    dependencies = {}
    if github_client is not None:
        github_ok = await github_client.health_check()
        dependencies["github"] = "healthy" if github_ok else "unhealthy"
    return {"status": "ready", "dependencies": dependencies}



@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


@app.post("/triage")
async def triage(request: Request):
    """Classify the supplied issues of a repository.

    Expects ``{"repository": {...}, "issues": [...]}`` and returns
    ``{"success": true, "repository", "issues", "timestamp"}``.
    """
    payload = await _read_json(request)

    if (
        not isinstance(payload, dict)
        or payload.get("repository") is None
        or payload.get("issues") is None
    ):
        return _triage_error(INVALID_PAYLOAD_MESSAGE, 400)

    try:
        triage_request = TriageRequest.model_validate(payload)
    except ValidationError as e:
        logger.info(
            "Rejected triage payload",
            extra={"errors": e.error_count()},
        )
        return _triage_error(
            f"{INVALID_PAYLOAD_MESSAGE} {e.error_count()} field(s) failed validation.",
            400,
        )

    if pipeline is None:
        logger.error("Pipeline not initialized")
        return _triage_error("Pipeline not initialized", 503)

    try:
        result = await pipeline.run(triage_request)
    except Exception as e:
        logger.exception("Triage failed")
        return _triage_error(str(e) or "Internal server error", 500)

    metrics.record_request("triage", "success")
    return JSONResponse(result.to_dict())


async def _run_analysis(
    owner: str,
    repo: str,
    cfg: TriageSettings,
) -> Dict[str, Any]:
    """Fetch a repository and its open issues, then triage them."""
    repository, issues = await asyncio.gather(
        github_client.fetch_repository(owner, repo),
        github_client.fetch_issues(
            owner,
            repo,
            per_page=cfg.github_issues_per_page,
            max_pages=cfg.github_max_pages,
        ),
    )
    result = await pipeline.run(TriageRequest(repository=repository, issues=issues))
    return result.to_dict()


@app.post("/analyze")
async def analyze(request: Request):
    """Analyze a GitHub repository by URL.

    Expects ``{"repoUrl": "https://github.com/owner/repo"}``. Results are
    cached per repository for ``cache_ttl_hours``.
    """
    payload = await _read_json(request)
    try:
        repo_url = AnalyzeRequest.model_validate(payload).repo_url
    except ValidationError:
        repo_url = None

    if not isinstance(repo_url, str) or not repo_url.strip():
        return _analyze_error("Invalid repo URL", "repoUrl is required", 400)

    try:
        owner, repo = parse_repo_url(repo_url)
    except InvalidRepositoryURLError:
        return _analyze_error(
            "Invalid repo URL",
            "URL must be a valid GitHub repository URL "
            "(e.g., https://github.com/owner/repo)",
            400,
        )

    if settings is None or pipeline is None or github_client is None:
        logger.error("Pipeline not initialized")
        return _analyze_error(
            "Service unavailable", "Pipeline not initialized", 503
        )

    if analysis_cache is not None:
        cached = await analysis_cache.get(owner, repo)
        metrics.record_cache_lookup(hit=cached is not None)
        if cached is not None:
            logger.info(
                "Cache hit",
                extra={"repository": f"{owner}/{repo}"},
            )
            metrics.record_request("analyze", "success")
            return JSONResponse(cached)

    try:
        result = await asyncio.wait_for(
            _run_analysis(owner, repo, settings),
            timeout=settings.analyze_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "Repository analysis timed out",
            extra={
                "repository": f"{owner}/{repo}",
                "timeout_seconds": settings.analyze_timeout_seconds,
            },
        )
        return _analyze_error(
            "AI processing timeout",
            "The AI analysis is taking longer than expected. Please try again "
            "with a smaller repository or fewer issues.",
            408,
        )
    except RateLimitError:
        return _analyze_error(
            "GitHub API rate limit exceeded", "Please try again later", 429
        )
    except RepositoryNotFoundError:
        return _analyze_error(
            "Repository not found",
            "The specified repository does not exist or is not accessible",
            404,
        )
    except GitHubAPIError as e:
        status_code = e.status_code if e.status_code and e.status_code >= 400 else 502
        return _analyze_error(
            "GitHub API error", f"HTTP {e.status_code or 'error'}: {e.message}", status_code
        )
    except Exception as e:
        logger.exception("Repository analysis failed")
        return _analyze_error(
            "Internal server error",
            str(e) or "Failed to analyze repository",
            500,
        )

    if analysis_cache is not None:
        await analysis_cache.set(owner, repo, result, ttl_hours=settings.cache_ttl_hours)

    metrics.record_request("analyze", "success")
    return JSONResponse(result)


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.triage.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
