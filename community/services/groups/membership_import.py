"""
CSV membership import.

File format: header ``email,full_name,role,cohort`` followed by one row per
member. Each row is resolved and added on its own, so one bad row never
aborts the batch; the returned report lists what happened.
"""

import csv
import io
import logging
from typing import Optional, List, Dict, Any

from common.utils.exceptions import ValidationException
from community.services.groups.group_service import GroupService
from community.services.identity.identity_service import IdentityService

logger = logging.getLogger(__name__)

CSV_HEADER = ["email", "full_name", "role", "cohort"]


def parse_membership_rows(csv_content: str) -> Dict[str, Any]:
    """
    Split a membership CSV into well-formed rows and row errors.

    Args:
        csv_content: CSV text including the header line

    Returns:
        dict with rows ({row, email, fullName, role, cohortLabel}) and errors ({row, reason})

    Raises:
        ValidationException: If the header is missing or not the expected one
    """
    reader = csv.reader(io.StringIO(csv_content.lstrip("﻿")))

    header = next(reader, None)
    if header is None or [h.strip() for h in header] != CSV_HEADER:
        raise ValidationException(
            message=f"CSV header must be {','.join(CSV_HEADER)}",
            code="INVALID_CSV_HEADER",
        )

    rows: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for fields in reader:
        line_num = reader.line_num
        if not fields or not any(f.strip() for f in fields):
            continue

        if len(fields) != len(CSV_HEADER):
            errors.append({"row": line_num, "reason": "malformed row"})
            continue

        email, full_name, role, cohort = (f.strip() for f in fields)
        if not email:
            errors.append({"row": line_num, "reason": "missing email"})
            continue

        rows.append({
            "row": line_num,
            "email": email.lower(),
            "fullName": full_name,
            "role": "admin" if role.lower() == "admin" else "member",
            "cohortLabel": cohort,
        })

    return {"rows": rows, "errors": errors}


class MembershipImporter:
    """
    Imports group memberships from CSV files.
    """

    def __init__(self, group_service: GroupService, identity_service: IdentityService):
        self._group_service = group_service
        self._identity_service = identity_service

    async def import_csv(self, csv_content: str, group_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Import memberships from a CSV file.

        Args:
            csv_content: CSV text
            group_id: Target group for every row; when omitted each row's
                cohort column names the target group

        Returns:
            dict with added, skipped and errors ({row, reason})
        """
        target_group = None
        if group_id:
            target_group = await self._group_service.get_group(group_id)
            if target_group.get("archived"):
                raise ValidationException(message="Group is archived", code="GROUP_ARCHIVED")

        parsed = parse_membership_rows(csv_content)
        report: Dict[str, Any] = {"added": 0, "skipped": 0, "errors": list(parsed["errors"])}

        resolved = await self._identity_service.find_by_emails(
            [row["email"] for row in parsed["rows"]]
        )
        cohorts: Dict[str, Optional[Dict[str, Any]]] = {}

        for row in parsed["rows"]:
            identity = resolved.get(row["email"])
            if not identity:
                report["errors"].append({"row": row["row"], "reason": "user not found"})
                continue

            group = target_group
            if group is None:
                label = row["cohortLabel"]
                if label not in cohorts:
                    cohorts[label] = await self._group_service.find_active_by_name(label)
                group = cohorts[label]
                if group is None:
                    report["errors"].append({"row": row["row"], "reason": "unknown cohort"})
                    continue

            added = await self._group_service.add_member(
                str(group["_id"]), identity["id"], row["role"]
            )
            if added:
                report["added"] += 1
            else:
                report["skipped"] += 1

        report["errors"].sort(key=lambda e: e["row"])

        logger.info(
            f"CSV import finished: {report['added']} added, "
            f"{report['skipped']} skipped, {len(report['errors'])} errors"
        )

        return report
