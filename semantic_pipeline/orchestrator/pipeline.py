"""Main pipeline orchestrator."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from semantic_pipeline.config.constants import (
    BACKOFF_ERROR_RATE_THRESHOLD,
    EVAL_RESULT_SAMPLE_ROWS,
    BackoffLevel,
    CacheStatus,
    ExecutionMode,
    PipelineStage,
)
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.cache import LLMResponseCache, QueryResultCache, cache_get, cache_set
from semantic_pipeline.infrastructure.database import create_db_engine
from semantic_pipeline.infrastructure.llm.factory import create_llm_adapter
from semantic_pipeline.infrastructure.llm.models import LLMAdapter, LLMError
from semantic_pipeline.infrastructure.logging import StructuredLogger
from semantic_pipeline.infrastructure.resilience import (
    AdaptiveRateLimiter,
    CircuitBreaker,
    CircuitBreakerRegistry,
    ConcurrencyLimiter,
    RequestCoalescer,
    build_coalesce_key,
)
from semantic_pipeline.orchestrator.models import PipelineOutput
from semantic_pipeline.orchestrator.sql_flow import SQLFallbackFlow
from semantic_pipeline.orchestrator.state import PipelineState
from semantic_pipeline.orchestrator.step_timer import timed_step
from semantic_pipeline.services.catalog.registry import RegistryProvider, scope_catalog_to_lens
from semantic_pipeline.services.catalog.schema import SchemaCatalog, SchemaCatalogProvider, SqlAlchemySchemaCatalog
from semantic_pipeline.services.compiler import CompilerError, compile_plan
from semantic_pipeline.services.evaluation import EvalSink, EvalTurn, SessionEvalSink
from semantic_pipeline.services.intent import ExampleRetriever, IntentContext, IntentExample, IntentResolver
from semantic_pipeline.services.narrative import (
    NarrativeGenerator,
    NarrativeResult,
    build_data_fallback_narrative,
    build_empty_result_narrative,
)
from semantic_pipeline.services.query import ExecutionError, QueryExecutor, QueryResult
from semantic_pipeline.services.sql import SQLGenerator, SQLRetryService, SQLValidationService

logger = logging.getLogger(__name__)

RowMasker = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


class PipelineOrchestrator:
    """Runs one question through intent, compile, execute, fallback, narrate and capture."""

    def __init__(
        self,
        settings: Settings,
        adapter: LLMAdapter,
        registry: RegistryProvider,
        executor: QueryExecutor,
        *,
        schema_provider: SchemaCatalogProvider | None = None,
        eval_sink: EvalSink | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        rate_limiter: AdaptiveRateLimiter | None = None,
        coalescer: RequestCoalescer[PipelineOutput] | None = None,
        llm_cache: LLMResponseCache | None = None,
        query_cache: QueryResultCache | None = None,
        row_masker: RowMasker | None = None,
        example_retriever: ExampleRetriever | None = None,
    ):
        """Initialize orchestrator with its collaborators."""
        self.settings = settings
        self.adapter = adapter
        self.registry = registry
        self.executor = executor
        self.schema_provider = schema_provider
        self.eval_sink = eval_sink
        self.breakers = breakers
        self.rate_limiter = rate_limiter
        self.coalescer = coalescer or RequestCoalescer(ttl_seconds=settings.coalesce_ttl)
        self.llm_cache = llm_cache or LLMResponseCache.from_settings(settings)
        self.query_cache = query_cache or QueryResultCache.from_settings(settings)
        self.row_masker = row_masker

        self.intent_resolver = IntentResolver(settings, adapter, retriever=example_retriever)
        self.narrative_generator = NarrativeGenerator(settings, adapter)
        self.sql_generator = SQLGenerator(settings, adapter, llm_cache=self.llm_cache)
        self.sql_retry = SQLRetryService(settings, adapter)
        self.sql_validation = SQLValidationService()
        self.sql_flow = SQLFallbackFlow(settings, self.sql_generator, self.sql_retry, self.sql_validation, executor)
        self.structured_logger = StructuredLogger(__name__)

        self._transitions: dict[PipelineStage, Callable[[PipelineState], Awaitable[PipelineStage]]] = {
            PipelineStage.INTENT: self._step_intent,
            PipelineStage.CLARIFY: self._step_clarify,
            PipelineStage.COMPILE: self._step_compile,
            PipelineStage.EXECUTE_METRICS: self._step_execute_metrics,
            PipelineStage.EXECUTE_SQL_FALLBACK: self._step_sql_fallback,
            PipelineStage.NARRATE: self._step_narrate,
            PipelineStage.CAPTURE: self._step_capture,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: RegistryProvider,
        *,
        eval_sink: EvalSink | None = None,
        row_masker: RowMasker | None = None,
        example_retriever: ExampleRetriever | None = None,
    ) -> "PipelineOrchestrator":
        """Wire the default production collaborators from settings."""
        engine = create_db_engine(settings)
        breakers = CircuitBreakerRegistry.from_settings(settings)
        rate_limiter = AdaptiveRateLimiter.from_settings(settings)
        adapter = create_llm_adapter(
            settings, breakers, rate_limiter, concurrency=ConcurrencyLimiter.from_settings(settings)
        )
        schema_provider = (
            SqlAlchemySchemaCatalog(engine, schema=settings.database_schema, ttl_seconds=settings.schema_cache_ttl)
            if engine is not None
            else None
        )
        return cls(
            settings,
            adapter,
            registry,
            QueryExecutor(settings, engine),
            schema_provider=schema_provider,
            eval_sink=eval_sink or SessionEvalSink(settings.eval_log_dir),
            breakers=breakers,
            rate_limiter=rate_limiter,
            row_masker=row_masker,
            example_retriever=example_retriever,
        )

    # =========================================================================
    # Entry point
    # =========================================================================

    async def process(
        self,
        question: str,
        context: IntentContext,
        *,
        skip_narrative: bool = False,
        examples: list[IntentExample] | None = None,
        timeout: float | None = None,
    ) -> PipelineOutput:
        """
        Answer one question.

        Identical concurrent requests share one run. Only intent failures
        propagate; every other failure degrades to advisor mode.

        Args:
            question: User's natural language question
            context: Request context
            skip_narrative: Return data without the narrative call
            examples: Golden examples for the intent prompt
            timeout: Deadline for the whole run; defaults to ``pipeline_timeout``

        Returns:
            PipelineOutput

        Raises:
            LLMError: Intent resolution failed
            ExecutionError: QUERY_TIMEOUT when the deadline expires
        """
        key = ":".join(
            [
                build_coalesce_key(context.tenant_id, question, context.history_dicts()),
                context.lens_slug or "-",
                context.location_id or "-",
                context.domain or "-",
                "data" if skip_narrative else "full",
            ]
        )
        state = PipelineState(
            question=question,
            context=context,
            skip_narrative=skip_narrative,
            examples=list(examples or []),
        )
        deadline = timeout or self.settings.pipeline_timeout
        return await self.coalescer.run(key, lambda: self._run_with_deadline(state, deadline))

    async def _run_with_deadline(self, state: PipelineState, deadline: float) -> PipelineOutput:
        state.start_clock(deadline)
        try:
            return await asyncio.wait_for(self._run(state), timeout=deadline)
        except TimeoutError as e:
            logger.error(f"Pipeline exceeded {deadline}s at stage {state.stage.value}")
            state.execution_error = state.execution_error or f"Pipeline timed out at stage {state.stage.value}"
            await self._capture(state)
            raise ExecutionError(f"Pipeline timed out after {deadline}s", ExecutionError.QUERY_TIMEOUT) from e
        except asyncio.CancelledError:
            logger.warning(f"Pipeline cancelled at stage {state.stage.value}")
            state.execution_error = state.execution_error or "Pipeline cancelled"
            await self._capture(state)
            raise

    async def _run(self, state: PipelineState) -> PipelineOutput:
        context = state.context

        # Provider down: serve the last narrative for this exact question if we still have one
        breaker = self._breaker()
        if breaker is not None and breaker.is_open():
            fallback_key = self._narrative_fallback_key(context, state.question)
            stale = cache_get(lambda: self.llm_cache.get_stale(fallback_key), "Narrative")
            if isinstance(stale, NarrativeResult):
                logger.warning("Circuit open, serving stale narrative")
                state.narrative = stale
                state.cache_status = CacheStatus.STALE
                await self._capture(state)
                return self._build_output(state)

        await self._load_catalogs(state)

        state.stage = PipelineStage.INTENT
        while state.stage != PipelineStage.DONE:
            async with timed_step(state.stage, self.structured_logger, tenant_id=context.tenant_id) as step:
                next_stage = await self._transitions[state.stage](state)
                step.set(next_stage=next_stage.value)
            state.stage = next_stage

        return self._build_output(state)

    # =========================================================================
    # Catalogs
    # =========================================================================

    async def _load_catalogs(self, state: PipelineState) -> None:
        """Load registry and schema catalogs concurrently. Registry failure is fatal."""
        context = state.context
        try:
            catalog, schema_catalog = await asyncio.gather(
                self.registry.build_registry_catalog(context.domain),
                self._load_schema_catalog(),
            )
            lens = await self.registry.get_lens(context.lens_slug) if context.lens_slug else None
        except Exception as e:
            self.structured_logger.log_error("load_catalogs", e, context={"tenant_id": context.tenant_id})
            await self._capture(state)
            raise

        if context.lens_slug and lens is None:
            logger.warning(f"Lens '{context.lens_slug}' not found, using the full catalog")
        state.lens = lens
        state.catalog = scope_catalog_to_lens(catalog, lens)
        state.schema_catalog = schema_catalog

    async def _load_schema_catalog(self) -> SchemaCatalog | None:
        if self.schema_provider is None:
            return None
        try:
            return await self.schema_provider.build_schema_catalog()
        except Exception as e:
            logger.warning(f"Schema catalog unavailable, SQL mode disabled: {e}")
            return None

    # =========================================================================
    # Stage transitions
    # =========================================================================

    async def _step_intent(self, state: PipelineState) -> PipelineStage:
        lens = state.lens
        try:
            intent = await self.intent_resolver.resolve(
                state.question,
                state.context,
                catalog=state.catalog,
                examples=state.examples,
                lens_prompt_fragment=lens.system_prompt_fragment if lens else None,
                schema_summary=state.schema_catalog.summary_text if state.schema_catalog else None,
            )
        except Exception as e:
            self._sync_backoff(error=e)
            await self._capture(state)
            raise

        state.intent = intent
        state.add_usage(intent.tokens_input, intent.tokens_output, intent.latency_ms)
        self._sync_backoff()
        return PipelineStage.CLARIFY if intent.is_clarification else PipelineStage.COMPILE

    async def _step_clarify(self, state: PipelineState) -> PipelineStage:
        logger.info(f"Clarification requested: {state.intent.clarification_text}")
        return PipelineStage.CAPTURE

    async def _step_compile(self, state: PipelineState) -> PipelineStage:
        try:
            compiled = compile_plan(
                state.intent.plan,
                state.catalog,
                state.context.tenant_id,
                location_id=state.context.location_id,
                max_date_range_days=self.settings.max_date_range_days,
            )
        except CompilerError as e:
            logger.warning(f"Plan compilation failed ({e.code}): {e}")
            state.compilation_errors.append(str(e))
            return self._fallback_or_narrate(state)

        state.compiled = compiled
        state.executed_sql = compiled.sql
        state.tables_accessed = [compiled.primary_table, *compiled.join_tables]
        return PipelineStage.EXECUTE_METRICS

    async def _step_execute_metrics(self, state: PipelineState) -> PipelineStage:
        compiled = state.compiled
        tenant_id = state.context.tenant_id

        result = cache_get(lambda: self.query_cache.get(tenant_id, compiled.sql, compiled.params), "Query")
        if isinstance(result, QueryResult):
            state.cache_status = CacheStatus.HIT
        else:
            try:
                result = await self.executor.execute_compiled_query(compiled, state.context)
            except ExecutionError as e:
                logger.warning(f"Metrics query failed ({e.code}): {e}")
                state.execution_error = str(e)
                return self._fallback_or_narrate(state)
            cache_set(lambda: self.query_cache.set(tenant_id, compiled.sql, compiled.params, result), "Query")
            state.cache_status = CacheStatus.MISS

        state.result = result
        state.mode = ExecutionMode.METRICS
        if result.row_count == 0:
            logger.info("Metrics mode returned 0 rows")
            return self._fallback_or_narrate(state)
        return PipelineStage.NARRATE

    async def _step_sql_fallback(self, state: PipelineState) -> PipelineStage:
        outcome = await self.sql_flow.run(state.question, state.schema_catalog, state.context)
        state.add_usage(outcome.tokens_input, outcome.tokens_output, outcome.latency_ms)

        if outcome.result is not None and outcome.result.row_count > 0:
            state.result = outcome.result
            state.mode = ExecutionMode.SQL
            state.executed_sql = outcome.sql
            state.sql_explanation = outcome.explanation
            state.tables_accessed = outcome.tables
            state.cache_status = CacheStatus.MISS
            state.execution_error = None
        elif outcome.errors:
            state.execution_error = "; ".join([e for e in [state.execution_error] if e] + outcome.errors)
        return PipelineStage.NARRATE

    async def _step_narrate(self, state: PipelineState) -> PipelineStage:
        if state.skip_narrative:
            return PipelineStage.CAPTURE

        context = state.context
        result = self._masked(state.result)
        has_rows = result is not None and result.row_count > 0
        lens = state.lens
        metric_defs = state.compiled.metric_defs if state.compiled and state.mode == ExecutionMode.METRICS else []

        breaker = self._breaker()
        if not has_rows and breaker is not None and breaker.is_open():
            logger.info("Circuit open with no data, using the empty-result narrative")
            narrative = build_empty_result_narrative(state.question, context)
        else:
            system_prompt, user_input = self.narrative_generator.build_prompts(
                result,
                state.intent,
                state.question,
                context,
                lens_slug=lens.slug if lens else context.lens_slug,
                lens_prompt_fragment=lens.system_prompt_fragment if lens else None,
                metric_defs=metric_defs,
            )
            cache_key = LLMResponseCache.make_key(context.tenant_id, system_prompt, user_input)
            narrative = cache_get(lambda: self.llm_cache.get(cache_key), "Narrative")
            if not isinstance(narrative, NarrativeResult):
                timeout, model = self._narrative_call_limits(state)
                try:
                    narrative = await self.narrative_generator.generate(
                        result,
                        state.intent,
                        state.question,
                        context,
                        lens_slug=lens.slug if lens else context.lens_slug,
                        lens_prompt_fragment=lens.system_prompt_fragment if lens else None,
                        metric_defs=metric_defs,
                        timeout=timeout,
                        model=model,
                    )
                    state.add_usage(narrative.tokens_input, narrative.tokens_output, narrative.latency_ms)
                    cache_set(lambda: self.llm_cache.set(cache_key, narrative), "Narrative")
                except Exception as e:
                    logger.warning(f"Narrative generation failed, using deterministic fallback: {e}")
                    narrative = (
                        build_data_fallback_narrative(state.question, result)
                        if has_rows
                        else build_empty_result_narrative(state.question, context)
                    )

        state.narrative = narrative
        fallback_key = self._narrative_fallback_key(context, state.question)
        cache_set(lambda: self.llm_cache.set(fallback_key, narrative), "Narrative")
        return PipelineStage.CAPTURE

    async def _step_capture(self, state: PipelineState) -> PipelineStage:
        await self._capture(state)
        return PipelineStage.DONE

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fallback_or_narrate(self, state: PipelineState) -> PipelineStage:
        if state.schema_catalog is None:
            return PipelineStage.NARRATE
        remaining = state.remaining_seconds()
        if remaining is not None and remaining < self.settings.sql_fallback_min_remaining:
            logger.info(
                f"Skipping SQL fallback, {remaining:.1f}s left "
                f"(need {self.settings.sql_fallback_min_remaining}s)"
            )
            return PipelineStage.NARRATE
        return PipelineStage.EXECUTE_SQL_FALLBACK

    def _narrative_call_limits(self, state: PipelineState) -> tuple[float | None, str | None]:
        """Timeout and model override for the narrative call, from the time left in the turn."""
        remaining = state.remaining_seconds()
        if remaining is None:
            return None, None
        timeout = min(
            self.settings.llm_timeout,
            max(self.settings.narrative_min_timeout, remaining - self.settings.narrative_timeout_margin),
        )
        model = None
        if remaining < self.settings.sql_fallback_min_remaining and self.settings.narrative_fast_model:
            logger.info(f"Using fast narrative model, {remaining:.1f}s left")
            model = self.settings.narrative_fast_model
        return timeout, model

    def _breaker(self) -> CircuitBreaker | None:
        if self.breakers is None:
            return None
        return self.breakers.get(self.adapter.provider)

    def _sync_backoff(self, error: BaseException | None = None) -> None:
        """Align the limiter with what the intent call just told us about the provider."""
        if self.rate_limiter is None:
            return
        if isinstance(error, LLMError):
            if error.code in (LLMError.RATE_LIMITED, LLMError.OVERLOADED, LLMError.CIRCUIT_OPEN):
                self.rate_limiter.set_level(BackoffLevel.MINIMAL)
            elif error.code == LLMError.TIMEOUT:
                self.rate_limiter.set_level(max(self.rate_limiter.level, BackoffLevel.REDUCED))
            return
        breaker = self._breaker()
        if breaker is not None and breaker.error_rate() >= BACKOFF_ERROR_RATE_THRESHOLD:
            if self.rate_limiter.level < BackoffLevel.REDUCED:
                self.rate_limiter.set_level(BackoffLevel.REDUCED)

    @staticmethod
    def _narrative_fallback_key(context: IntentContext, question: str) -> str:
        return LLMResponseCache.make_key(
            context.tenant_id,
            f"narrative-fallback:{context.lens_slug or '-'}:{context.location_id or '-'}:{context.domain or '-'}",
            question,
            context.history_dicts(),
        )

    def _masked(self, result: QueryResult | None) -> QueryResult | None:
        if result is None or self.row_masker is None:
            return result
        return replace(result, rows=self.row_masker(result.rows))

    async def _capture(self, state: PipelineState) -> None:
        """Record the turn. Never raises, never runs twice."""
        if self.eval_sink is None or state.captured:
            return
        state.captured = True
        try:
            state.eval_turn_id = await self.eval_sink.record_turn(self._build_eval_turn(state))
        except Exception as e:
            logger.error(f"Eval capture failed: {e}", exc_info=True)

    def _build_eval_turn(self, state: PipelineState) -> EvalTurn:
        context = state.context
        intent = state.intent
        result = self._masked(state.result)
        narrative = state.narrative
        return EvalTurn(
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            user_role=context.user_role,
            session_id=context.session_id,
            user_message=state.question,
            context={
                "current_date": context.current_date,
                "lens_slug": context.lens_slug,
                "location_id": context.location_id,
                "domain": context.domain,
                "history_turns": len(context.history),
            },
            plan=intent.plan.model_dump(mode="json", by_alias=True) if intent and intent.plan else None,
            is_clarification=bool(intent and intent.is_clarification),
            clarification_text=intent.clarification_text if intent else None,
            confidence=intent.confidence if intent else None,
            mode=state.mode.value if state.mode else None,
            provider=intent.provider if intent else None,
            model=intent.model if intent else None,
            tokens_input=state.tokens_input,
            tokens_output=state.tokens_output,
            latency_ms=state.llm_latency_ms,
            compiled_sql=state.executed_sql,
            compilation_errors=list(state.compilation_errors),
            tables_accessed=list(state.tables_accessed),
            execution_time_ms=result.execution_time_ms if result else None,
            row_count=result.row_count if result else None,
            result_sample=result.rows[:EVAL_RESULT_SAMPLE_ROWS] if result else [],
            execution_error=state.execution_error,
            cache_status=state.cache_status.value,
            narrative=narrative.text if narrative else None,
            sections=narrative.section_dicts() if narrative else [],
        )

    def _build_output(self, state: PipelineState) -> PipelineOutput:
        intent = state.intent
        result = state.result
        narrative = state.narrative
        is_clarification = bool(intent and intent.is_clarification)

        data = None
        if result is not None and not is_clarification:
            data = {
                "rows": result.rows,
                "row_count": result.row_count,
                "execution_time_ms": result.execution_time_ms,
                "truncated": result.truncated,
            }

        return PipelineOutput(
            is_clarification=is_clarification,
            clarification_text=intent.clarification_text if intent else None,
            clarification_options=list(intent.clarification_options) if intent else [],
            plan=intent.plan.model_dump(mode="json", by_alias=True) if intent and intent.plan else None,
            confidence=intent.confidence if intent else None,
            mode=state.mode.value if state.mode else None,
            compiled_sql=state.executed_sql,
            compilation_errors=list(state.compilation_errors),
            data=data,
            narrative=narrative.text if narrative else None,
            sections=narrative.section_dicts() if narrative else [],
            provider=intent.provider if intent else "",
            model=intent.model if intent else "",
            tokens_input=state.tokens_input,
            tokens_output=state.tokens_output,
            llm_latency_ms=state.llm_latency_ms,
            execution_time_ms=result.execution_time_ms if result else None,
            cache_status=state.cache_status,
            tables_accessed=list(state.tables_accessed),
            sql_explanation=state.sql_explanation,
            eval_turn_id=state.eval_turn_id,
        )
