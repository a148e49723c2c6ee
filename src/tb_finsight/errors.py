# TB FinSight - Trial Balance Reporting & Ratio Analysis for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exception hierarchy for TB FinSight.

Three kinds of problems are distinguished:

- validation errors (malformed rows, non-numeric amounts) are *data*: they
  are collected as ``RowError`` objects by the ingestion layer and never
  raised;
- precondition errors (no period, no taxonomy, no mappings) are expected
  and recoverable. They derive from ``NotReadyError`` and carry a short
  guidance message for the user;
- backend errors (data store or classifier backend failure) derive from
  ``BackendError`` and abort the current operation.

Invalid arguments passed by callers still raise ``ValueError``.
"""


class FinSightError(Exception):
    """Base class for all TB FinSight errors."""


class NotReadyError(FinSightError):
    """
    Raised when an operation cannot run yet because required data is missing.

    Attributes
    ----------
    guidance:
        Short, user-facing hint such as "upload data first".
    """

    def __init__(self, message: str, guidance: str = "") -> None:
        super().__init__(message)
        self.guidance = guidance


class NoPeriodError(NotReadyError):
    """Raised when no financial period can be resolved for an operation."""

    def __init__(self, message: str = "No financial period found.") -> None:
        super().__init__(message, guidance="upload data first")


class BackendError(FinSightError):
    """Raised when the data store or the classifier backend fails."""
