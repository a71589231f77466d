"""HTTP server for the HSM hardware allocator."""

import json
import logging
import os
import pathlib

import prometheus_client
import prometheus_client.core
import pydantic
import starlette.applications
import starlette.concurrency
import starlette.requests
import starlette.responses
import starlette.routing
import structlog

from . import collector, hsmapi, workflow
from .backend import BackendError, GroupNotFoundError, HsmBackend
from .collectors import groups
from .migration import MigrationPolicy
from .request import RequestKind, parse_pattern

CONFIG_ENV_VAR = "HSM_ALLOCATOR_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class AllocatorConfig(pydantic.BaseModel):
    """Configuration for the HSM hardware allocator."""

    hsm_api_url: str = pydantic.Field(description="Base URL of the HSM API gateway")
    token_file: str = pydantic.Field(
        description="Path to file containing API auth token",
    )
    hsm_api_timeout: float = pydantic.Field(
        hsmapi.DEFAULT_TIMEOUT,
        description="Request timeout in seconds",
        gt=0,
    )
    port: int = pydantic.Field(9093, description="HTTP server port", gt=0, lt=65536)
    metrics_path: str = pydantic.Field(
        "/metrics",
        description="URL path for metrics endpoint",
    )
    poll_limit: float = pydantic.Field(
        300.0,
        description="Minimum seconds between inventory refreshes of a monitored group",
        gt=0,
    )
    max_concurrency: int = pydantic.Field(
        5,
        description="Maximum inventory requests in flight",
        ge=1,
    )
    memory_unit_mib: int = pydantic.Field(
        16384,
        description="Size in MiB of one memory unit",
        ge=1,
    )
    monitored_groups: list[str] = pydantic.Field(
        default_factory=list,
        description="Groups exported as metrics",
    )
    monitored_patterns: list[str] = pydantic.Field(
        default_factory=list,
        description="Component patterns used for metrics and hardware reports",
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @property
    def settings(self) -> workflow.WorkflowSettings:
        return workflow.WorkflowSettings(
            memory_unit_mib=self.memory_unit_mib,
            max_concurrency=self.max_concurrency,
        )


class AllocationBody(pydantic.BaseModel):
    """Body of the pin and unpin endpoints."""

    model_config = pydantic.ConfigDict(extra="forbid")

    pattern: str
    parent_group: str
    mode: RequestKind = RequestKind.DELTA
    dry_run: bool = True
    create_target_group: bool = False
    delete_empty_parent_group: bool = False

    @property
    def policy(self) -> MigrationPolicy:
        return MigrationPolicy(
            dry_run=self.dry_run,
            create_target_group=self.create_target_group,
            delete_empty_parent_group=self.delete_empty_parent_group,
        )


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> AllocatorConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return AllocatorConfig(**data)


def create_registry_with_collectors(
    backend: HsmBackend,
    config: AllocatorConfig,
    scraper_description: str,
) -> prometheus_client.core.CollectorRegistry:
    """Create a Prometheus registry with the group hardware collector.

    Creates a custom registry (not the global one). The backend is injected
    into the fetcher at build time.

    Args:
        backend: Shared control plane adapter.
        config: Monitored groups, patterns and cache settings.
        scraper_description: Description of the data source for metric help.

    Returns:
        Configured Prometheus registry.
    """
    registry = prometheus_client.core.CollectorRegistry()

    settings = config.settings
    patterns = list(config.monitored_patterns)
    groups_collector = collector.HsmCollector(
        fetcher=lambda group: groups.fetch(backend, group, patterns, settings),
        generator=groups.generate_metrics,
        keys=config.monitored_groups,
        metric_prefix="group",
        poll_limit=config.poll_limit,
        scraper_description=scraper_description,
    )
    registry.register(groups_collector)
    logger.info(
        "Registered collector",
        collector="groups",
        metric_prefix="group",
        groups=len(config.monitored_groups),
    )

    return registry


def _log_request(request: starlette.requests.Request) -> None:
    logger.info(
        "HTTP request",
        client_ip=request.client.host if request.client else "unknown",
        method=request.method,
        path=request.url.path,
    )


def _error_response(status_code: int):
    async def handler(
        request: starlette.requests.Request,
        exc: Exception,
    ) -> starlette.responses.JSONResponse:
        logger.warning(
            "Request failed",
            path=request.url.path,
            status=status_code,
            error=str(exc),
        )
        return starlette.responses.JSONResponse(
            {"error": str(exc)},
            status_code=status_code,
        )

    return handler


def create_starlette_app(
    backend: HsmBackend,
    settings: workflow.WorkflowSettings,
    metrics_path: str,
    registry: prometheus_client.core.CollectorRegistry,
    default_patterns: list[str] | None = None,
) -> starlette.applications.Starlette:
    """Create a Starlette application serving allocation requests and metrics.

    Workflows block on the control plane, so they run in the thread pool.

    Args:
        backend: Shared control plane adapter.
        settings: Memory unit and fetch concurrency.
        metrics_path: URL path for metrics endpoint (e.g., "/metrics").
        registry: Prometheus collector registry.
        default_patterns: Patterns used by hardware reports when the
            request names none.

    Returns:
        Configured Starlette application.
    """

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Generate and serve Prometheus metrics."""
        metrics_output = prometheus_client.generate_latest(registry)
        _log_request(request)
        return starlette.responses.PlainTextResponse(
            content=metrics_output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    async def group_hardware_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Report the hardware of a group's members."""
        _log_request(request)
        raw_patterns = request.query_params.get("patterns")
        patterns = (
            [p for p in raw_patterns.split(",") if p.strip()]
            if raw_patterns
            else list(default_patterns or [])
        )
        report = await starlette.concurrency.run_in_threadpool(
            workflow.get_group_hardware,
            backend,
            request.path_params["name"],
            patterns,
            settings,
        )
        return starlette.responses.JSONResponse(report.to_dict())

    def allocation_endpoint(action: str):
        run = workflow.pin_hardware if action == "pin" else workflow.unpin_hardware

        async def endpoint(
            request: starlette.requests.Request,
        ) -> starlette.responses.Response:
            _log_request(request)
            body = AllocationBody.model_validate(await request.json())
            # unpin always takes desired final counts
            kind = body.mode if action == "pin" else RequestKind.ABSOLUTE
            target_group, hw_request = parse_pattern(body.pattern, kind)
            result = await starlette.concurrency.run_in_threadpool(
                run,
                backend,
                target_group,
                body.parent_group,
                hw_request,
                body.policy,
                settings,
            )
            return starlette.responses.JSONResponse(result.to_dict())

        return endpoint

    routes = [
        starlette.routing.Route(metrics_path, metrics_endpoint, methods=["GET"]),
        starlette.routing.Route(
            "/groups/{name}/hardware",
            group_hardware_endpoint,
            methods=["GET"],
        ),
        starlette.routing.Route(
            "/hardware/pin",
            allocation_endpoint("pin"),
            methods=["POST"],
        ),
        starlette.routing.Route(
            "/hardware/unpin",
            allocation_endpoint("unpin"),
            methods=["POST"],
        ),
    ]

    # Handlers are looked up along the exception MRO: PatternError,
    # AllocationError, json and pydantic errors are all ValueErrors
    exception_handlers = {
        ValueError: _error_response(422),
        GroupNotFoundError: _error_response(404),
        BackendError: _error_response(502),
    }

    return starlette.applications.Starlette(
        routes=routes,
        exception_handlers=exception_handlers,
    )


def create_allocator(config: AllocatorConfig) -> starlette.applications.Starlette:
    """Construct the allocator ASGI app from validated config."""
    hsm_client = hsmapi.HsmRestApiClient(
        base_url=config.hsm_api_url,
        token_file=config.token_file,
        timeout=config.hsm_api_timeout,
    )
    logger.info("Created shared HSM client", base_url=config.hsm_api_url)

    registry = create_registry_with_collectors(
        backend=hsm_client,
        config=config,
        scraper_description=f"HSM API {hsm_client.base_url}",
    )

    return create_starlette_app(
        backend=hsm_client,
        settings=config.settings,
        metrics_path=config.metrics_path,
        registry=registry,
        default_patterns=config.monitored_patterns,
    )


def create_app(config_path: str | None = None) -> starlette.applications.Starlette:
    """Create the allocator ASGI app using a config path or environment default."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "/config.json")
    config = load_config(resolved_path)
    configure_logging(config.log_level)
    return create_allocator(config)
