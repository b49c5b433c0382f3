"""
Paper Insight core package.

Modules
───────
models             — Pydantic data models (GenericRequest, AnalysisResult, reports, jobs)
errors             — ErrorKind classification and typed exceptions
cancellation       — CancellationToken threaded through every provider call
anthropic_provider — native adapter: Claude Messages API + web_search tool
compat_provider    — Chat Completions adapter over httpx
retry              — bounded exponential-backoff retry
dispatcher         — settings snapshot, model fallback chain, retry
extractor          — JSON recovery from free-text model output
prompts            — prompt templates per operation
analysis           — PaperAnalyst: analysis, secondary checks, chat, trends
history            — HistoryStore protocol + SQLite implementation
jobs               — single-concurrency FIFO JobQueue
"""
