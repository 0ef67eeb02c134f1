"""Pipelines for requirement normalization, matching, recommendations and intake.

Each step is callable on its own so the engines can be driven by the API, by
batch jobs, or directly from tests.
"""
