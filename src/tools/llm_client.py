"""OpenRouter translator client: sanitized assessment in, plain-language summary out.

Only categorical prompts are ever sent. Anything carrying digits or currency
symbols is refused before a request is made.
"""

from openai import OpenAI, OpenAIError
import os
import re
import time
from typing import Optional
from src.orchestrator.retry_handler import retry_with_exponential_backoff
from src.utils.metrics import llm_tokens_counter, llm_cost_counter, llm_api_latency, llm_rejected_prompts
from src.utils.errors import IntelligenceError, LLMError, UnsanitizedPromptError
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Lazy-initialize OpenRouter client
_client = None

# Digits, currency symbols and percent signs
UNSANITIZED_PATTERN = re.compile(r"[0-9$€£¥%]")

# Pricing per 1M tokens (input tokens, simplified)
MODEL_PRICING = {
    "anthropic/claude-haiku-4.5": 0.80 / 1_000_000,
    "anthropic/claude-sonnet-4.5": 3.0 / 1_000_000,
    "openai/gpt-4o-mini": 0.15 / 1_000_000,
}

SYSTEM_PROMPT = (
    "You explain financial assessments to business owners. "
    "You only restate the categorical conclusions you are given and never invent figures."
)


def get_client():
    """Get or create the OpenRouter client (lazy initialization)"""
    global _client
    if _client is None:
        api_key = os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise LLMError("OPENROUTER_API_KEY environment variable is not set")
        _client = OpenAI(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1"
        )
    return _client


def assert_sanitized(prompt: str) -> None:
    """
    Refuse prompts that carry raw numbers.

    Raises:
        UnsanitizedPromptError: If the prompt contains a digit or currency symbol
    """
    match = UNSANITIZED_PATTERN.search(prompt)
    if match:
        raise UnsanitizedPromptError(
            f"Prompt contains numeric or currency data at position {match.start()}"
        )


def calculate_cost(tokens: int, model: str) -> float:
    """
    Calculate cost based on token usage and model pricing.

    Args:
        tokens: Number of tokens used
        model: Model name

    Returns:
        Cost in USD
    """
    price_per_token = MODEL_PRICING.get(model, 0.15 / 1_000_000)
    return tokens * price_per_token


def _complete(prompt: str, model: str) -> str:
    start_time = time.time()
    response = get_client().chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        timeout=60
    )

    latency = time.time() - start_time
    tokens = response.usage.total_tokens
    cost = calculate_cost(tokens, model)

    llm_tokens_counter.labels(model_name=model).inc(tokens)
    llm_cost_counter.labels(model_name=model).inc(cost)
    llm_api_latency.labels(model_name=model).observe(latency)

    logger.info(
        "LLM call successful",
        model=model,
        tokens=tokens,
        cost=cost,
        latency=latency
    )
    return response.choices[0].message.content


def translate_summary(
    prompt: str,
    model: Optional[str] = None,
    max_retries: int = 3
) -> str:
    """
    Turn a sanitized assessment prompt into a natural-language summary.

    Args:
        prompt: Output of build_llm_summary_prompt()
        model: Model name (defaults to $DEFAULT_LLM_MODEL)
        max_retries: Max attempts for the API call

    Returns:
        Summary text

    Raises:
        UnsanitizedPromptError: If the prompt carries numeric data (never sent)
        LLMError: If the API call fails after retries
    """
    try:
        assert_sanitized(prompt)
    except UnsanitizedPromptError:
        llm_rejected_prompts.inc()
        logger.error("Refusing to send unsanitized prompt to translator")
        raise

    model = model or os.getenv("DEFAULT_LLM_MODEL", "anthropic/claude-haiku-4.5")
    get_client()
    try:
        return retry_with_exponential_backoff(
            _complete, max_retries, 1, 8, prompt, model,
            retry_on=(OpenAIError,)
        )
    except IntelligenceError as e:
        raise LLMError(f"LLM API call failed: {e}") from e
