from __future__ import annotations

import logging
import os

from fastapi import Depends, FastAPI

from app.schemas.analysis import HealthResponse
from llm_synthesis.adapter import BaseLLMAdapter

_SUPPORTED_ADAPTERS = {"openai", "mock"}


def _validate_env() -> None:
    """
    Check the environment at startup and report problems.

    Nothing here is fatal: without an API key the service runs on the mock
    adapter and returns placeholder findings, so every problem is logged as
    a warning listing what to set.
    """

    from app.config import load_env_files

    load_env_files()
    log = logging.getLogger(__name__)

    warnings: list[str] = []

    # --- LLM adapter ----------------------------------------------------
    adapter = os.getenv("LLM_ADAPTER", "openai").strip().lower()
    if adapter not in _SUPPORTED_ADAPTERS:
        warnings.append(
            f"LLM_ADAPTER='{adapter}' is not valid. Allowed values: "
            f"{sorted(_SUPPORTED_ADAPTERS)}. Falling back to the mock adapter."
        )
    elif adapter == "openai":
        llm_api_key = os.getenv("LLM_API_KEY", "").strip()
        openai_api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not llm_api_key and not openai_api_key:
            warnings.append(
                "LLM API key is not set. Provide LLM_API_KEY or OPENAI_API_KEY; "
                "until then scans return a placeholder finding."
            )

    # --- Investigation source -------------------------------------------
    if not os.getenv("INVESTIGATION_SOURCE", "").strip():
        warnings.append(
            "INVESTIGATION_SOURCE is not set. Deep-dive queries will read the "
            "segmentation source unless a request names another one."
        )

    for message in warnings:
        log.warning("Startup configuration: %s", message)


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _configure_logging()
    _validate_env()

    application = FastAPI(
        title="Market Gap Investigator API",
        version="1.0.0",
    )

    from app.api.dependencies import get_adapter
    from app.api.routers import analysis_router

    application.include_router(analysis_router)

    @application.get("/health", response_model=HealthResponse)
    def healthcheck(adapter: BaseLLMAdapter = Depends(get_adapter)) -> HealthResponse:
        return HealthResponse(
            status="ok",
            adapter=type(adapter).__name__,
            live_endpoint=adapter.is_live,
        )

    return application


app = create_app()
