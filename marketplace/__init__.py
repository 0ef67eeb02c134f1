"""Marketplace backend: requirement matching, recommendations, persistence and API.

The matching and recommendation engines live in ``marketplace.pipelines`` and
are pure over already-fetched data; ``marketplace.repository`` supplies that
data and persists results.
"""
