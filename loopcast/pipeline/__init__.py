"""
This package contains the supervision pipeline.

The `Supervisor` drives the whole service: it pulls work items, runs one
encoder session at a time, evaluates each session, and applies the retry and
backoff policy until a shutdown is requested or the retry budget runs out.
"""
