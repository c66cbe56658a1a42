"""
Middleware Composer - immutable pipelines of stages.

`combine(stages)` folds the stages right-to-left into a chain of immutable
links once, when the pipeline is built. At call time only the request, the
response and the terminal continuation flow through the chain, and each
stage receives a fresh single-use continuation for the next link.

Error isolation at every link:
- the stage raises before calling its continuation and before a response
  was written: the error is logged and counted, and the chain continues as
  if the stage had delegated;
- the error came from further down the chain: re-raised unchanged;
- the stage raises after its continuation completed, or after a response
  was written: logged and swallowed, the response is already decided.

A stage that returns without delegating or responding is logged as a
warning; the adapter then renders whatever the response holds.

The StageRegistry builds pipelines from named stage factories with
per-stage option overrides and skips.

Pattern: Chain of responsibility, built once
Pattern: Registry of named factories
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from api_guard.api.context import ApiRequest, ApiResponse, Continuation, Handler, Stage
from api_guard.api.middleware.audit_log import AuditLogOptions, audit_log
from api_guard.api.middleware.rate_limit import RateLimitOptions, rate_limit
from api_guard.api.middleware.security_headers import SecurityHeadersOptions, security_headers
from api_guard.clients.audit_sink import AuditSink
from api_guard.core.exceptions import ContinuationError, PipelineConfigurationError
from api_guard.observability.metrics import record_stage_error
from api_guard.stores.rate_limit_store import RateLimitStore


logger = logging.getLogger(__name__)


def stage_name(stage: Stage) -> str:
    """Display name of a stage."""
    return (
        getattr(stage, "stage_name", None)
        or getattr(stage, "__name__", None)
        or type(stage).__name__
    )


# =============================================================================
# Continuations and Links
# =============================================================================


class _Continuation:
    """Single-use continuation handed to one stage for one request."""

    __slots__ = ("_step", "_owner", "called", "completed", "failed")

    def __init__(self, step: Callable[[], Awaitable[None]], owner: str) -> None:
        self._step = step
        self._owner = owner
        self.called = False
        self.completed = False
        self.failed = False

    async def __call__(self) -> None:
        if self.called:
            raise ContinuationError(
                f"Stage '{self._owner}' called its continuation more than once",
                stage=self._owner,
            )
        self.called = True
        try:
            await self._step()
        except BaseException:
            self.failed = True
            raise
        self.completed = True


class _Link:
    """One stage bound to the rest of the chain."""

    __slots__ = ("stage", "name", "next")

    def __init__(self, stage: Stage, name: str, next_link: Optional["_Link"]) -> None:
        self.stage = stage
        self.name = name
        self.next = next_link

    async def run(
        self,
        request: ApiRequest,
        response: ApiResponse,
        terminal: Continuation,
    ) -> None:
        next_link = self.next
        if next_link is None:
            step = terminal
        else:
            async def step() -> None:
                await next_link.run(request, response, terminal)

        cont = _Continuation(step, self.name)

        try:
            await self.stage(request, response, cont)
        except Exception as e:
            if cont.failed:
                raise
            record_stage_error(self.name)
            if cont.called or response.finished:
                logger.error(
                    f"Stage '{self.name}' failed after the response was decided: "
                    f"{type(e).__name__}: {e}"
                )
                return
            logger.error(
                f"Stage '{self.name}' failed before delegating, continuing without it: "
                f"{type(e).__name__}: {e}"
            )
            await cont()
            return

        if not cont.called and not response.finished:
            logger.warning(f"Stage '{self.name}' returned without delegating or responding")


# =============================================================================
# Pipeline
# =============================================================================


class Pipeline:
    """
    Immutable ordered chain of stages.

    A Pipeline is itself a stage, so pipelines nest. Behaviour is the same as
    nesting the stages by hand in list order.

    Example:
        >>> pipeline = combine([rate_limiter, security_headers(), recorder])
        >>> secured = pipeline.then(require_auth(identity)).wrap(handler)
        >>> await secured(request, response)
    """

    stage_name = "pipeline"

    def __init__(self, stages: Iterable[Stage] = ()) -> None:
        self._stages: tuple[Stage, ...] = tuple(stages)
        head: Optional[_Link] = None
        for stage in reversed(self._stages):
            head = _Link(stage, stage_name(stage), head)
        self._head = head

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(stage_name(s) for s in self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        return f"Pipeline({' -> '.join(self.names) or 'empty'})"

    async def __call__(
        self,
        request: ApiRequest,
        response: ApiResponse,
        call_next: Continuation,
    ) -> None:
        if self._head is None:
            await call_next()
            return
        await self._head.run(request, response, call_next)

    def then(self, *stages: Stage) -> "Pipeline":
        """Return a new pipeline with `stages` appended."""
        return Pipeline(self._stages + stages)

    def wrap(self, handler: Handler) -> Handler:
        """Return a handler that runs this pipeline around `handler`."""

        async def pipeline_handler(request: ApiRequest, response: ApiResponse) -> None:
            async def call_handler() -> None:
                await handler(request, response)

            await self(request, response, call_handler)

        pipeline_handler.__name__ = getattr(handler, "__name__", "pipeline_handler")
        return pipeline_handler


def combine(stages: Iterable[Stage]) -> Pipeline:
    """Combine stages, outermost first, into one pipeline."""
    return Pipeline(stages)


# =============================================================================
# Stage Registry
# =============================================================================


StageFactory = Callable[[Any], Stage]


@dataclass(frozen=True)
class PipelineConfig:
    """
    Pipeline construction options.

    Attributes:
        overrides: Stage name -> options instance, or a mapping of option
            fields applied over that stage's defaults.
        skip: Names of stages to leave out.
    """

    overrides: Mapping[str, Any] = field(default_factory=dict)
    skip: Sequence[str] = ()


class StageRegistry:
    """
    Named stage factories in pipeline order.

    Stages are emitted in registration order.
    """

    def __init__(self) -> None:
        self._factories: dict[str, tuple[StageFactory, Optional[type]]] = {}
        self._default: Optional[Pipeline] = None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._factories)

    def register(
        self,
        name: str,
        factory: StageFactory,
        options_type: Optional[type] = None,
    ) -> None:
        """Register `factory(options_or_none) -> Stage` under `name`."""
        if name in self._factories:
            raise PipelineConfigurationError(f"Stage '{name}' is already registered")
        self._factories[name] = (factory, options_type)
        self._default = None

    def create(self, name: str, overrides: Any = None) -> Stage:
        """Instantiate one named stage."""
        if name not in self._factories:
            raise PipelineConfigurationError(f"Unknown pipeline stage '{name}'")
        factory, options_type = self._factories[name]
        return factory(self._resolve_options(name, options_type, overrides))

    def build(self, config: Optional[PipelineConfig] = None) -> Pipeline:
        """
        Build a pipeline from `config`.

        Raises:
            PipelineConfigurationError: If `config` names an unknown stage or
                carries invalid options.
        """
        config = config or PipelineConfig()
        unknown = (set(config.overrides) | set(config.skip)) - set(self._factories)
        if unknown:
            raise PipelineConfigurationError(
                f"Unknown pipeline stages: {', '.join(sorted(unknown))}"
            )

        return Pipeline(
            self.create(name, config.overrides.get(name))
            for name in self._factories
            if name not in config.skip
        )

    def default_pipeline(self) -> Pipeline:
        """Pipeline of every registered stage with default options."""
        if self._default is None:
            self._default = self.build()
        return self._default

    @staticmethod
    def _resolve_options(name: str, options_type: Optional[type], overrides: Any) -> Any:
        if overrides is None:
            return None
        if options_type is None or isinstance(overrides, options_type):
            return overrides
        if isinstance(overrides, Mapping) and dataclasses.is_dataclass(options_type):
            try:
                return dataclasses.replace(options_type(), **overrides)
            except (TypeError, ValueError) as e:
                raise PipelineConfigurationError(
                    f"Invalid options for stage '{name}': {e}"
                ) from e
        raise PipelineConfigurationError(
            f"Options for stage '{name}' must be {options_type.__name__} or a mapping"
        )


def create_default_registry(
    store: RateLimitStore,
    sink: AuditSink,
) -> StageRegistry:
    """Registry with rate_limit -> security_headers -> audit_log."""
    registry = StageRegistry()
    registry.register(
        "rate_limit",
        lambda options: rate_limit(options, store=store),
        RateLimitOptions,
    )
    registry.register("security_headers", security_headers, SecurityHeadersOptions)
    registry.register(
        "audit_log",
        lambda options: audit_log(options, sink=sink),
        AuditLogOptions,
    )
    return registry


def with_security(
    handler: Handler,
    registry: StageRegistry,
    config: Optional[PipelineConfig] = None,
    extra_stages: Sequence[Stage] = (),
) -> Handler:
    """
    Wrap `handler` in the registry's pipeline.

    `extra_stages` run after the registry stages, e.g. an auth gate so the
    audit recorder sees the identity it attaches.
    """
    pipeline = registry.default_pipeline() if config is None else registry.build(config)
    if extra_stages:
        pipeline = pipeline.then(*extra_stages)
    return pipeline.wrap(handler)
