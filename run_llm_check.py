"""
run_llm_check.py — End-to-end check of the configured LLM provider

Runs one pass over every capability through the router:
  1. Validate settings, set up logging and Sentry
  2. Build the provider and router from settings
  3. Generate an embedding for a sample text
  4. Run a completion for each requested size (text and JSON)
  5. Print the results and the invocation statistics table

Usage:
    OPENAI_API_KEY=... python run_llm_check.py [sample_prompt.txt]
"""

import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from codebase_insights.core.config import settings, validate_settings
from codebase_insights.core.logging import setup_logging
from codebase_insights.core.sentry import init_sentry
from codebase_insights.llm.control import run_throttled
from codebase_insights.llm.errors import BadConfigurationLlmError
from codebase_insights.llm.providers import get_provider
from codebase_insights.llm.router import LlmRouter
from codebase_insights.llm.stats import InvocationStatistics
from codebase_insights.llm.types import RequestedSize

logger = logging.getLogger("llm_check")

DEFAULT_PROMPT = (
    "Summarize in two sentences what the following Python function does:\n\n"
    "def chunk(items, size):\n"
    "    return [items[i:i + size] for i in range(0, len(items), size)]\n"
)

JSON_SUFFIX = '\n\nReply only with a JSON object of the form {"summary": "..."}.'


def _section(title: str) -> None:
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def _load_prompt(argv: list[str]) -> tuple[str, str]:
    if len(argv) > 1:
        path = Path(argv[1])
        return path.name, path.read_text(encoding="utf-8")
    return "builtin-sample", DEFAULT_PROMPT


async def main(argv: list[str]) -> int:
    validate_settings()
    setup_logging()
    init_sentry()

    resource_id, prompt = _load_prompt(argv)

    _section("Step 1: Provider")
    router = LlmRouter(get_provider(), InvocationStatistics(print_event_ticks=settings.log_event_ticks))
    print(f"  Models: {router.describe_models()}")
    print(f"  Prompt: {resource_id} ({len(prompt)} chars)")

    _section("Step 2: Embeddings")
    start = time.monotonic()
    embedding = await router.generate_embedding(resource_id, prompt)
    if embedding is None:
        print("  ✗ No embedding produced")
    else:
        print(f"  ✓ {len(embedding)} dimensions in {time.monotonic() - start:.1f}s")

    _section("Step 3: Completions")
    jobs: list[tuple[str, RequestedSize, bool]] = [
        (f"{size.value}/{'json' if as_json else 'text'}", size, as_json)
        for size in RequestedSize
        for as_json in (False, True)
    ]

    def _task(size: RequestedSize, as_json: bool):
        async def _run():
            try:
                return await router.execute_completion(
                    resource_id,
                    prompt + JSON_SUFFIX if as_json else prompt,
                    size,
                    as_json=as_json,
                    context={"check": "run_llm_check"},
                )
            except BadConfigurationLlmError as e:
                logger.warning("Skipping %s: %s", size.value, e)
                return None

        return _run

    start = time.monotonic()
    results = await run_throttled([_task(size, as_json) for _, size, as_json in jobs], settings.llm_max_concurrency)
    print(f"  Finished {len(jobs)} completions in {time.monotonic() - start:.1f}s")

    for (label, _, _), result in zip(jobs, results):
        status = "✓" if result is not None else "✗"
        if isinstance(result, (dict, list)):
            rendered = json.dumps(result, ensure_ascii=False)
        else:
            rendered = (result or "").strip().replace("\n", " ")
        print(f"  {status} {label:25s} {rendered[:100]}")

    _section("Step 4: Statistics")
    router.log_stats_summary(include_total=True)

    await router.close()
    return 0 if all(r is not None for r in results) and embedding is not None else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv)))
