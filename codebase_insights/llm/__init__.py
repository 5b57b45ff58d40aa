"""LLM Invocation Resilience & Throttling Layer.

Async infrastructure for invoking remote LLM endpoints reliably:
  - Throttled Batch Executor (bounded concurrency, order preserving)
  - Timeout Guard (fire-and-forget deadline race)
  - Retry Orchestrator (bounded linear backoff with jitter)
  - Invocation Router (tier escalation + prompt cropping)
  - Invocation Statistics (success/failure/retry/step-up/crop counters)
"""
