"""Shared FastAPI dependencies for participant identity and metadata."""

from fastapi import Request

from course_feedback.config import settings
from course_feedback.services.identity import AnonymousIdentityProvider, StorageIdentityProvider
from course_feedback.services.metadata import MetadataCollector


def get_identity_provider(request: Request) -> AnonymousIdentityProvider:
    """Anonymous ID kept in the signed session cookie of this browser."""
    return StorageIdentityProvider(request.session, key=settings.ANONYMOUS_ID_KEY)


def get_metadata_collector() -> MetadataCollector:
    return MetadataCollector()
