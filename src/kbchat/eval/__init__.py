"""Evaluation harness for kbchat retrieval accuracy."""

from .cli import EvaluationResult, main

__all__ = ["EvaluationResult", "main"]
