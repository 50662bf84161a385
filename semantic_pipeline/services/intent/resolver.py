"""Intent resolver service."""

import logging
import time

from pydantic import ValidationError

from semantic_pipeline.config.prompts.intent import (
    INTENT_USER_SUFFIX,
    build_intent_examples_section,
    build_intent_system_prompt,
    build_retrieved_examples_section,
    build_schema_summary_section,
)
from semantic_pipeline.config.settings import Settings
from semantic_pipeline.infrastructure.llm.models import CompletionOptions, LLMAdapter, LLMError, LLMMessage
from semantic_pipeline.infrastructure.resilience.prompt_guard import PromptBudget, guard_prompt_size
from semantic_pipeline.services.catalog.models import RegistryCatalog
from semantic_pipeline.services.intent.models import (
    HistoryMessage,
    IntentContext,
    IntentExample,
    IntentResponse,
    QueryPlan,
    ResolvedIntent,
)
from semantic_pipeline.services.intent.retrieval import ExampleRetriever
from semantic_pipeline.utils.json_parser import JSONParser

logger = logging.getLogger(__name__)


def prune_user_history(
    history: tuple[HistoryMessage, ...] | list[HistoryMessage],
    max_turns: int = 6,
    max_chars: int = 4_000,
) -> list[LLMMessage]:
    """
    Keep only prior user turns, newest first, within a turn and character budget.

    Assistant turns carry narrative prose that pushes the model toward a
    conversational reply instead of JSON, so they are dropped.
    """
    kept: list[LLMMessage] = []
    used = 0
    for message in reversed(history):
        if message.role != "user" or not message.content.strip():
            continue
        if len(kept) >= max_turns or used + len(message.content) > max_chars:
            break
        kept.append(LLMMessage(role="user", content=message.content))
        used += len(message.content)
    kept.reverse()
    return kept


def parse_intent_response(raw: str) -> IntentResponse:
    """
    Parse the intent completion.

    Raises:
        LLMError: PARSE_ERROR when the content is not JSON or violates the contract
    """
    data = JSONParser.parse_object(raw)
    if data is None:
        raise LLMError(f"Intent resolver returned non-JSON: {raw[:200]}", code=LLMError.PARSE_ERROR)
    try:
        return IntentResponse.model_validate(data)
    except ValidationError as e:
        issues = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise LLMError(f"Intent resolver output validation failed: {issues}", code=LLMError.PARSE_ERROR) from e


def extract_query_plan(raw_plan: dict | None) -> QueryPlan | None:
    """Coerce the raw plan; a malformed plan is treated as no plan."""
    if raw_plan is None:
        return None
    try:
        return QueryPlan.model_validate(raw_plan)
    except ValidationError as e:
        logger.warning("Plan validation failed, treating as missing plan: %s", e.errors())
        return None


class IntentResolver:
    """Maps a question + history + catalog to a structured plan or a clarification."""

    def __init__(self, settings: Settings, adapter: LLMAdapter, retriever: ExampleRetriever | None = None):
        self.settings = settings
        self.adapter = adapter
        self.retriever = retriever

    async def retrieve_examples(
        self,
        question: str,
        context: IntentContext,
        golden: list[IntentExample],
    ) -> list[IntentExample]:
        """Similar past questions for the prompt. Retrieval never blocks resolution."""
        if self.retriever is None:
            return []
        try:
            retrieved = await self.retriever.retrieve(
                question, context.tenant_id, self.settings.intent_retrieval_max_examples
            )
        except Exception as e:
            logger.warning(f"Example retrieval failed, continuing without it: {e}")
            return []
        golden_questions = {" ".join(example.question.lower().split()) for example in golden}
        return [e for e in retrieved if " ".join(e.question.lower().split()) not in golden_questions]

    async def resolve(
        self,
        question: str,
        context: IntentContext,
        *,
        catalog: RegistryCatalog,
        examples: list[IntentExample] | None = None,
        lens_prompt_fragment: str | None = None,
        schema_summary: str | None = None,
    ) -> ResolvedIntent:
        """
        Resolve one question into a ResolvedIntent.

        Args:
            question: User's natural language question
            context: Request context
            catalog: Registry catalog snapshot
            examples: Golden examples for few-shot guidance
            lens_prompt_fragment: Extra domain guidance from the active lens
            schema_summary: Raw table summary, when a schema catalog exists

        Returns:
            ResolvedIntent

        Raises:
            LLMError: On provider failure or unparseable output
        """
        examples = examples or []
        retrieved = await self.retrieve_examples(question, context, examples)

        base_prompt = build_intent_system_prompt(catalog, context, lens_prompt_fragment=lens_prompt_fragment)
        guarded = guard_prompt_size(
            base_prompt,
            schema=build_schema_summary_section(schema_summary),
            examples=build_intent_examples_section(examples),
            retrieval=build_retrieved_examples_section(retrieved),
            budget=PromptBudget.from_settings(self.settings),
        )
        system_prompt = build_intent_system_prompt(
            catalog,
            context,
            lens_prompt_fragment=lens_prompt_fragment,
            schema_section=guarded.schema,
            examples_section=guarded.examples,
            retrieval_section=guarded.retrieval,
        )

        messages = prune_user_history(
            context.history,
            max_turns=self.settings.max_history_turns,
            max_chars=self.settings.max_history_chars,
        )
        messages.append(LLMMessage(role="user", content=question + INTENT_USER_SUFFIX))

        options = CompletionOptions(
            system_prompt=system_prompt,
            temperature=self.settings.intent_temperature,
            max_tokens=self.settings.intent_max_tokens,
            model=self.settings.intent_model,
            timeout=self.settings.llm_timeout,
        )

        start = time.time()
        response = await self.adapter.complete(messages, options)
        latency_ms = int((time.time() - start) * 1000)

        parsed = parse_intent_response(response.content)
        plan = extract_query_plan(parsed.plan)
        is_clarification = parsed.clarification_needed or plan is None

        clarification_text = None
        if is_clarification:
            clarification_text = parsed.clarification_message or (
                "Could you tell me a bit more about what you want to see?"
            )

        logger.info(
            "Intent resolved: clarification=%s confidence=%.2f metrics=%s",
            is_clarification,
            parsed.confidence,
            plan.metrics if plan else None,
        )

        return ResolvedIntent(
            plan=plan,
            confidence=parsed.confidence,
            is_clarification=is_clarification,
            clarification_text=clarification_text,
            clarification_options=parsed.clarification_options if is_clarification else [],
            provider=response.provider,
            model=response.model,
            tokens_input=response.tokens_input,
            tokens_output=response.tokens_output,
            latency_ms=latency_ms,
            raw_response=response.content,
            prompt_truncated=guarded.was_truncated,
        )
