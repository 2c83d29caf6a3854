"""Multi-stage orchestration pipeline: plan, execute, verify and critique."""

__version__ = "0.1.0"
