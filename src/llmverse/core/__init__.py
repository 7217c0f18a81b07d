"""Streaming response orchestration."""
