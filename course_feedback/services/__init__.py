"""Feedback session services: access, identity, metadata, submission, statistics."""
