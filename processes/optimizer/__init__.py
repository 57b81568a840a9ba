"""Optimizer process package.

`OptimizerSession` owns one external optimizer process and speaks the
line-based pull protocol with it; `types` holds the protocol messages and the
error hierarchy surfaced to the orchestrator.
"""
