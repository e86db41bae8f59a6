"""Ingestion layer.

This package contains the sanitizers that coerce raw payloads into canonical
models and the reconciliation pipeline that fetches an authoritative match
snapshot from the backend.
"""
