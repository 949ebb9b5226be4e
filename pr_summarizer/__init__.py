"""
GitHub PR Summarizer Application

A FastAPI-based application that watches starred GitHub repositories,
summarizes their pull requests with an LLM, and serves the summaries.
"""

__version__ = "1.0.0"
