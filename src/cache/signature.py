# src/cache/signature.py — v1
"""Record signature: a deterministic fingerprint of render-relevant fields.

Not cryptographic. Two signatures are compared by exact string equality
only. Requirement and file lists are projected in their existing order,
because order is part of what the rendered composite looks like.

Tracked per record: id, status, overall status, application date,
last-modified marker. Per requirement: id, name. Per file: id, file name,
status, upload timestamp, content hash, size, retrieval reference.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from permitpreview.core.models import AttachmentFile, Record, Requirement

logger = logging.getLogger(__name__)


def compute_signature(record: Record | None) -> str | None:
    """Compute the cache signature of a record.

    Args:
        record: Record to fingerprint. None yields None.

    Returns:
        Signature string, or the bare record id if serialization fails.
    """
    if record is None:
        return None
    try:
        return json.dumps(
            _project_record(record),
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        logger.warning(
            "Signature serialization failed for %s, using record id: %s",
            record.id, e,
        )
        return str(record.id or "")


def _project_record(record: Record) -> dict[str, Any]:
    return {
        "id": record.id,
        "status": record.status,
        "overallStatus": record.overall_status,
        "applicationDate": record.application_date,
        "updatedAt": record.updated_at,
        "requirements": [_project_requirement(r) for r in record.requirements],
    }


def _project_requirement(req: Requirement) -> dict[str, Any]:
    return {
        "id": req.id,
        "name": req.name,
        "files": [_project_file(f) for f in req.files],
    }


def _project_file(f: AttachmentFile) -> dict[str, Any]:
    return {
        "id": f.id,
        "fileName": f.file_name,
        "status": f.status,
        "uploadedAt": f.uploaded_at,
        "fileHash": f.file_hash,
        "fileSize": f.file_size,
        "downloadUrl": f.download_url,
    }
