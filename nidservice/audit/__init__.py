# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Request audit pipeline: snapshot sanitization and asynchronous persistence."""

from .sanitize import redaction_marker, sanitize_for_storage, sanitize_with_report
from .sink import AuditContext, AuditOutcome, AuditRecord, AuditSink

__all__ = [
    "AuditContext",
    "AuditOutcome",
    "AuditRecord",
    "AuditSink",
    "redaction_marker",
    "sanitize_for_storage",
    "sanitize_with_report",
]
