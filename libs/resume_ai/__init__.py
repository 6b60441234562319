__all__ = [
    "models",
    "errors",
    "events",
    "schemas",
    "state_machine",
    "extraction",
    "reconcile",
    "highlights",
    "llm_provider",
    "generation",
    "prompts",
    "job_store",
    "workflow",
    "poller",
    "fast_path",
    "logging",
    "config",
]
