"""
External collaborators: repository checkout, Structurizr model download and report
renderers. All failures surface as ``AcquisitionError`` subclasses.
"""

from __future__ import annotations

from archdrift.integration.base import (
    AcquisitionError,
    ArchdriftError,
    AuthorizationError,
    BackoffConfig,
    CheckoutError,
    ModelFetchError,
    NotFoundError,
    RenderError,
    SheetNotFoundError,
    classify_http_status,
    compute_backoff_delay,
    is_retryable_error,
    run_with_retries,
)
from archdrift.integration.git_checkout import Checkout, CommandResult, GitCheckout
from archdrift.integration.local_report import JsonRenderer, MarkdownRenderer, report_slug
from archdrift.integration.sheets import SheetsRenderer, authorization_url
from archdrift.integration.structurizr import StructurizrClient, collect_locators, sign_request

__all__ = [
    "AcquisitionError",
    "ArchdriftError",
    "AuthorizationError",
    "BackoffConfig",
    "Checkout",
    "CheckoutError",
    "CommandResult",
    "GitCheckout",
    "JsonRenderer",
    "MarkdownRenderer",
    "ModelFetchError",
    "NotFoundError",
    "RenderError",
    "SheetNotFoundError",
    "SheetsRenderer",
    "StructurizrClient",
    "authorization_url",
    "classify_http_status",
    "collect_locators",
    "compute_backoff_delay",
    "is_retryable_error",
    "report_slug",
    "run_with_retries",
    "sign_request",
]
