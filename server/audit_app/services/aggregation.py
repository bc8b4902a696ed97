from __future__ import annotations

from dataclasses import dataclass
from datetime import date

SEVERITY_DEDUCTIONS = {
    "critical": 30,
    "high": 20,
    "medium": 10,
    "low": 5,
}

COMPLIANT_SCORE = 80


@dataclass(frozen=True)
class PackageSummary:
    overall_status: str
    audit_score: int
    total_findings: int
    critical_findings: int
    open_findings: int
    resolved_findings: int
    response_due_date: date | None


def audit_score(findings) -> int:
    score = 100
    for finding in findings:
        score -= SEVERITY_DEDUCTIONS.get(finding.severity, 0)
    return max(0, score)


def overall_status(findings) -> str:
    unresolved = [f for f in findings if f.status != "resolved"]
    if not unresolved:
        return "resolved"
    statuses = {f.status for f in unresolved}
    if "disputed" in statuses:
        return "disputed"
    if "open" in statuses:
        return "findings_issued"
    return "cardholder_response"


def summarize_findings(findings) -> PackageSummary:
    findings = list(findings)
    total = len(findings)
    resolved = sum(1 for f in findings if f.status == "resolved")
    due_dates = [f.due_date for f in findings if f.status != "resolved" and f.due_date]
    return PackageSummary(
        overall_status=overall_status(findings),
        audit_score=audit_score(findings),
        total_findings=total,
        critical_findings=sum(1 for f in findings if f.severity == "critical"),
        open_findings=total - resolved,
        resolved_findings=resolved,
        response_due_date=min(due_dates) if due_dates else None,
    )


def compliance_metrics(statuses) -> dict:
    """Roll package statuses up into dashboard figures."""
    statuses = list(statuses)
    total = len(statuses)
    compliant = sum(
        1 for s in statuses if s.overall_status == "resolved" and s.audit_score >= COMPLIANT_SCORE
    )
    return {
        "total_packages": total,
        "audited_packages": sum(1 for s in statuses if s.overall_status != "pending_audit"),
        "compliant_packages": compliant,
        "disputed_packages": sum(1 for s in statuses if s.overall_status == "disputed"),
        "pending_audit": sum(1 for s in statuses if s.overall_status == "pending_audit"),
        "compliance_rate": round(compliant / total * 100, 2) if total else 0.0,
        "critical_findings": sum(s.critical_findings for s in statuses),
        "open_findings": sum(s.open_findings for s in statuses),
        "resolved_findings": sum(s.resolved_findings for s in statuses),
    }
