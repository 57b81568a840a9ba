"""Match orchestration for optimizer benchmarking.

`core.MatchOrchestrator` runs head-to-head matches between two optimizers on
random instances, or a single optimizer over a graph corpus, and stops on an
SPRT decision.

CLI usage is available via `python -m processes.orchestrator`.
"""
