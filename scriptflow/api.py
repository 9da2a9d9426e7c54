"""HTTP surface for managing and running pipelines."""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .config import ScriptflowConfig, load_config
from .errors import PipelineNotFoundError, ScriptflowError, ValidationError
from .execute import PipelineEngine
from .models import PipelineDefinition
from .persistence import PipelineResolver, build_pipeline_resolver
from .sources import fetch_readable_content
from .transformers import build_transformer
from .validation import (
    apply_default_source,
    parse_create_payload,
    parse_run_payload,
    parse_update_payload,
)
from .webhook import WebhookAuthenticator, get_webhook_headers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipelines")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def guarded(failure_message: str) -> Callable:
    """Translate raised errors into ``{"error": ...}`` responses.

    Known errors answer with their own status; anything else is logged and
    answered with a 500 carrying ``failure_message``.
    """

    def decorator(handler: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await handler(*args, **kwargs)
            except ScriptflowError as exc:
                if exc.status_code >= 500:
                    logger.error(f"{failure_message}: {exc}")
                return _error(exc.public_message, exc.status_code)
            except Exception:
                logger.exception(failure_message)
                return _error(failure_message, 500)

        return wrapper

    return decorator


def get_resolver(request: Request) -> PipelineResolver:
    return request.app.state.resolver


def get_engine(request: Request) -> PipelineEngine:
    return request.app.state.engine


def get_authenticator(request: Request) -> WebhookAuthenticator:
    return request.app.state.authenticator


def _decode_json(raw: bytes) -> Any:
    """Decode a request body; an empty body is an empty object."""
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc


async def _load_pipeline(resolver: PipelineResolver, pipeline_id: str) -> PipelineDefinition:
    pipeline = await resolver.call("get", lambda repo: repo.get(pipeline_id))
    if pipeline is None:
        raise PipelineNotFoundError()
    return pipeline


async def _record_run(resolver: PipelineResolver, pipeline_id: str, completed_at: str) -> None:
    try:
        await resolver.call(
            "record_run", lambda repo: repo.record_run(pipeline_id, completed_at)
        )
    except Exception as exc:
        logger.warning(
            f"Failed to record run for pipeline={pipeline_id} on {resolver.kind} backend: {exc}"
        )


# ----------------------------------------------------------------------
# Routes


@router.get("")
@guarded("Unable to load pipelines")
async def list_pipelines(resolver: PipelineResolver = Depends(get_resolver)) -> Any:
    items = await resolver.call("list", lambda repo: repo.list())
    return {"pipelines": [item.to_wire() for item in items]}


@router.post("")
@guarded("Unable to create pipeline")
async def create_pipeline(
    request: Request, resolver: PipelineResolver = Depends(get_resolver)
) -> Any:
    data = parse_create_payload(_decode_json(await request.body()))
    pipeline = await resolver.call("create", lambda repo: repo.create(data))
    logger.info(f"Created pipeline={pipeline.id} on {resolver.kind} backend")
    return JSONResponse({"pipeline": pipeline.to_wire()}, status_code=201)


@router.post("/hooks/{secret}")
@guarded("Pipeline execution failed")
async def run_pipeline_webhook(
    secret: str,
    request: Request,
    resolver: PipelineResolver = Depends(get_resolver),
    engine: PipelineEngine = Depends(get_engine),
    authenticator: WebhookAuthenticator = Depends(get_authenticator),
) -> Any:
    raw_body = await request.body()
    pipeline = await resolver.call(
        "find_by_webhook_secret", lambda repo: repo.find_by_webhook_secret(secret)
    )
    if pipeline is None:
        raise PipelineNotFoundError()

    signature, timestamp = get_webhook_headers(request.headers)
    authenticator.authenticate(
        pipeline.webhook_secret, raw_body, signature, timestamp, pipeline_id=pipeline.id
    )

    body = apply_default_source(_decode_json(raw_body), pipeline)
    run_input = parse_run_payload(body, pipeline.id)
    artifact = await engine.run(pipeline, run_input)
    await _record_run(resolver, pipeline.id, artifact.completed_at)
    return {"result": artifact.to_wire()}


@router.get("/{pipeline_id}")
@guarded("Unable to load pipeline")
async def get_pipeline(
    pipeline_id: str, resolver: PipelineResolver = Depends(get_resolver)
) -> Any:
    pipeline = await _load_pipeline(resolver, pipeline_id)
    return {"pipeline": pipeline.to_wire()}


@router.patch("/{pipeline_id}")
@guarded("Unable to update pipeline")
async def update_pipeline(
    pipeline_id: str,
    request: Request,
    resolver: PipelineResolver = Depends(get_resolver),
) -> Any:
    patch = parse_update_payload(_decode_json(await request.body()))
    if patch.is_empty():
        raise ValidationError("No changes supplied")
    pipeline = await resolver.call("update", lambda repo: repo.update(pipeline_id, patch))
    return {"pipeline": pipeline.to_wire()}


@router.delete("/{pipeline_id}")
@guarded("Unable to delete pipeline")
async def delete_pipeline(
    pipeline_id: str, resolver: PipelineResolver = Depends(get_resolver)
) -> Any:
    await resolver.call("delete", lambda repo: repo.delete(pipeline_id))
    return {"success": True}


@router.post("/{pipeline_id}/run")
@guarded("Pipeline execution failed")
async def run_pipeline(
    pipeline_id: str,
    request: Request,
    resolver: PipelineResolver = Depends(get_resolver),
    engine: PipelineEngine = Depends(get_engine),
) -> Any:
    pipeline = await _load_pipeline(resolver, pipeline_id)
    run_input = parse_run_payload(_decode_json(await request.body()), pipeline.id)
    artifact = await engine.run(pipeline, run_input)
    await _record_run(resolver, pipeline.id, artifact.completed_at)
    return {"result": artifact.to_wire()}


# ----------------------------------------------------------------------


def build_engine(config: ScriptflowConfig) -> PipelineEngine:
    fetcher = functools.partial(
        fetch_readable_content,
        timeout=config.fetch.timeout,
        max_bytes=config.fetch.max_bytes,
    )
    return PipelineEngine(
        transformer=build_transformer(config.llm),
        fetcher=fetcher,
        enabled=config.engine.enabled,
    )


def create_app(
    config: Optional[ScriptflowConfig] = None,
    resolver: Optional[PipelineResolver] = None,
    engine: Optional[PipelineEngine] = None,
    authenticator: Optional[WebhookAuthenticator] = None,
) -> FastAPI:
    """Build the API with its collaborators injected.

    Anything not supplied is built from ``config`` (or the loaded
    configuration when that is omitted too).
    """
    config = config or load_config()
    app = FastAPI(title="scriptflow")
    app.state.config = config
    app.state.resolver = resolver or build_pipeline_resolver(config)
    app.state.engine = engine or build_engine(config)
    app.state.authenticator = authenticator or WebhookAuthenticator(
        require_hmac=config.webhook.require_hmac,
        tolerance_ms=config.webhook.timestamp_tolerance_ms,
    )
    app.include_router(router)
    return app
