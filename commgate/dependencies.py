"""
FastAPI dependencies for the gateway services.

The app factory stores one instance of each service on ``app.state``;
routes receive them through these getters so tests can swap any of them
with ``app.dependency_overrides``.
"""

from fastapi import Request

from commgate.services.approval_service import ApprovalService
from commgate.services.content_filter import ContentFilterMatcher
from commgate.services.policy_pipeline import PolicyPipeline


def get_policy_pipeline(request: Request) -> PolicyPipeline:
    return request.app.state.pipeline


def get_approval_service(request: Request) -> ApprovalService:
    return request.app.state.approval_service


def get_filter_matcher(request: Request) -> ContentFilterMatcher:
    return request.app.state.matcher


def get_started_at(request: Request) -> float:
    return request.app.state.started_at
