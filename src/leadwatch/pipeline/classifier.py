from __future__ import annotations

from typing import Awaitable, Callable

import structlog
from pydantic import ValidationError

from leadwatch.errors import ClassifyError
from leadwatch.llm.client import chat_completion
from leadwatch.llm.prompts import load_prompt
from leadwatch.models.intent import ALL_INTENTS, Intent
from leadwatch.models.schemas import Classification, ClassificationResult, RawItem

logger = structlog.get_logger()

MAX_TEXT_CHARS = 2000

ClassifyFn = Callable[[RawItem], Awaitable[Classification]]


async def classify(item: RawItem) -> Classification:
    """Classify one comment with the LLM.

    Raises RateLimitedError when the service throttles us and ClassifyError for
    anything else (transport, HTTP status, unparseable output).
    """
    prompt = load_prompt(
        "classify",
        intents=ALL_INTENTS,
        source=item.source,
        author=item.author,
        username=item.username,
        text=item.text[:MAX_TEXT_CHARS],
    )

    result = await chat_completion(
        messages=[
            {"role": "system", "content": "You are a lead identification system. Respond with valid JSON only."},
            {"role": "user", "content": prompt},
        ],
        max_tokens=200,
        temperature=0.1,
        response_format={"type": "json_object"},
    )

    content = result["content"]
    if not isinstance(content, dict):
        raise ClassifyError(f"LLM did not return valid JSON: {str(content)[:200]}")

    try:
        parsed = ClassificationResult(**content)
    except ValidationError as e:
        raise ClassifyError(f"LLM returned an unexpected shape: {e.errors()[:3]}") from e

    intent = Intent.parse(parsed.intent)
    if intent is Intent.NEUTRAL and parsed.intent.strip().lower() != Intent.NEUTRAL.value:
        logger.debug("unknown_intent_label", label=parsed.intent, item_id=item.item_id)

    return Classification(
        intent=intent,
        confidence=parsed.confidence,
        is_lead=parsed.is_lead,
        lead_score=parsed.lead_score,
        need_summary=parsed.need_summary if parsed.is_lead else "",
    )
