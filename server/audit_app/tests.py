from datetime import date, timedelta
from types import SimpleNamespace

from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from .consumers import NotificationConsumer
from .models import AuditFinding, AuditPackageStatus, CardholderResponse, Notification
from .notifications import create_notification_for_user, package_group, user_group
from .services.aggregation import audit_score, compliance_metrics, overall_status, summarize_findings
from .services.lifecycle import InvalidTransition, auditor_transition, cardholder_transition
from .subscriptions import (
    subscribe_to_findings,
    subscribe_to_notifications,
    subscribe_to_package_status,
)

User = get_user_model()


def make_user(username, role):
    return User.objects.create_user(
        username, email=f"{username}@example.com", password="pass", role=role
    )


def finding_stub(status="open", severity="medium", due_date=None):
    return SimpleNamespace(status=status, severity=severity, due_date=due_date)


class LifecycleTests(SimpleTestCase):
    def test_cardholder_transitions(self):
        self.assertEqual(cardholder_transition("open", "acknowledge"), "acknowledged")
        self.assertEqual(cardholder_transition("open", "resolve"), "in_progress")
        self.assertEqual(cardholder_transition("acknowledged", "request_extension"), "in_progress")
        self.assertEqual(cardholder_transition("in_progress", "dispute"), "disputed")

    def test_terminal_findings_refuse_cardholder_responses(self):
        for finding_status in ("resolved", "disputed"):
            with self.assertRaises(InvalidTransition):
                cardholder_transition(finding_status, "acknowledge")

    def test_unknown_response_types(self):
        with self.assertRaises(InvalidTransition):
            cardholder_transition("open", "ignore")
        with self.assertRaises(InvalidTransition):
            auditor_transition("open", "approve", "resolve")

    def test_accept_depends_on_pending_response(self):
        self.assertEqual(auditor_transition("in_progress", "accept", "resolve").finding_status, "resolved")
        self.assertEqual(auditor_transition("disputed", "accept", "dispute").finding_status, "disputed")
        decision = auditor_transition("in_progress", "accept", "request_extension")
        self.assertEqual(decision.finding_status, "in_progress")
        self.assertTrue(decision.extend_due_date)
        self.assertFalse(auditor_transition("acknowledged", "accept", "acknowledge").extend_due_date)

    def test_reject_and_more_info(self):
        reject = auditor_transition("in_progress", "reject", "resolve")
        self.assertEqual(reject.finding_status, "open")
        self.assertEqual(reject.cardholder_response_status, "rejected")
        self.assertEqual(reject.auditor_response_status, "pending_cardholder_response")
        more = auditor_transition("in_progress", "request_more_info", "resolve")
        self.assertEqual(more.finding_status, "in_progress")
        self.assertEqual(more.cardholder_response_status, "needs_revision")

    def test_escalate_needs_no_pending_response(self):
        decision = auditor_transition("open", "escalate", None)
        self.assertEqual(decision.finding_status, "disputed")
        self.assertIsNone(decision.cardholder_response_status)

    def test_accept_without_pending_response_fails(self):
        with self.assertRaises(InvalidTransition):
            auditor_transition("open", "accept", None)

    def test_disputed_findings_stay_disputed(self):
        for pending in ("dispute", "resolve"):
            self.assertEqual(auditor_transition("disputed", "accept", pending).finding_status, "disputed")
        for response_type in ("reject", "request_more_info"):
            with self.assertRaises(InvalidTransition):
                auditor_transition("disputed", response_type, "dispute")

    def test_resolved_findings_are_final(self):
        with self.assertRaises(InvalidTransition):
            auditor_transition("resolved", "escalate", None)


class AggregationTests(SimpleTestCase):
    def test_empty_package(self):
        summary = summarize_findings([])
        self.assertEqual(summary.total_findings, 0)
        self.assertEqual(summary.open_findings, 0)
        self.assertEqual(summary.overall_status, "resolved")
        self.assertEqual(summary.audit_score, 100)
        self.assertIsNone(summary.response_due_date)

    def test_critical_open_finding(self):
        summary = summarize_findings([finding_stub(severity="critical")])
        self.assertEqual(summary.critical_findings, 1)
        self.assertEqual(summary.overall_status, "findings_issued")
        self.assertEqual(summary.audit_score, 70)

    def test_status_precedence(self):
        self.assertEqual(
            overall_status([finding_stub("open"), finding_stub("disputed")]), "disputed"
        )
        self.assertEqual(
            overall_status([finding_stub("acknowledged"), finding_stub("open")]), "findings_issued"
        )
        self.assertEqual(
            overall_status([finding_stub("in_progress"), finding_stub("resolved")]),
            "cardholder_response",
        )
        self.assertEqual(overall_status([finding_stub("resolved")]), "resolved")

    def test_counts_and_due_date(self):
        soon, later = date(2026, 1, 5), date(2026, 2, 1)
        findings = [
            finding_stub("resolved", due_date=date(2025, 12, 1)),
            finding_stub("disputed", due_date=later),
            finding_stub("open", due_date=soon),
        ]
        summary = summarize_findings(findings)
        self.assertEqual(summary.total_findings, 3)
        self.assertEqual(summary.resolved_findings, 1)
        self.assertEqual(summary.open_findings, 2)
        self.assertEqual(summary.open_findings + summary.resolved_findings, summary.total_findings)
        self.assertEqual(summary.response_due_date, soon)

    def test_score_floor(self):
        self.assertEqual(audit_score([finding_stub(severity="critical")] * 4), 0)
        self.assertEqual(audit_score([finding_stub(severity="low"), finding_stub(severity="high")]), 75)

    def test_compliance_metrics(self):
        statuses = [
            SimpleNamespace(overall_status="resolved", audit_score=95, critical_findings=0, open_findings=0, resolved_findings=1),
            SimpleNamespace(overall_status="resolved", audit_score=60, critical_findings=1, open_findings=0, resolved_findings=2),
            SimpleNamespace(overall_status="disputed", audit_score=70, critical_findings=1, open_findings=1, resolved_findings=0),
            SimpleNamespace(overall_status="pending_audit", audit_score=100, critical_findings=0, open_findings=0, resolved_findings=0),
        ]
        metrics = compliance_metrics(statuses)
        self.assertEqual(metrics["total_packages"], 4)
        self.assertEqual(metrics["audited_packages"], 3)
        self.assertEqual(metrics["compliant_packages"], 1)
        self.assertEqual(metrics["disputed_packages"], 1)
        self.assertEqual(metrics["compliance_rate"], 25.0)
        self.assertEqual(metrics["critical_findings"], 2)
        self.assertEqual(compliance_metrics([])["compliance_rate"], 0.0)


class FindingWorkflowTests(TestCase):
    def setUp(self):
        self.auditor = make_user("audrey", User.Roles.AUDITOR)
        self.cardholder = make_user("carl", User.Roles.CARDHOLDER)
        self.admin = make_user("root", User.Roles.ADMIN)

    def raise_finding(self, package_id="PKG-1", severity="medium", **extra):
        return AuditFinding.objects.create(
            package_id=package_id,
            request_id="REQ-1",
            cardholder=self.cardholder,
            auditor=self.auditor,
            category=AuditFinding.Category.DOCUMENTATION,
            title="Missing receipt",
            severity=severity,
            **extra,
        )

    def package(self, package_id="PKG-1"):
        return AuditPackageStatus.objects.get(package_id=package_id)

    def test_critical_finding_updates_package(self):
        self.raise_finding(severity="medium")
        before = self.package()
        self.raise_finding(severity="critical")
        after = self.package()
        self.assertEqual(after.critical_findings, before.critical_findings + 1)
        self.assertEqual(after.total_findings, 2)
        self.assertEqual(after.overall_status, "findings_issued")
        self.assertEqual(after.cardholder, self.cardholder)
        self.assertEqual(after.request_id, "REQ-1")

    def test_new_finding_notifies_cardholder(self):
        finding = self.raise_finding()
        notification = Notification.objects.get(user=self.cardholder)
        self.assertEqual(notification.related_finding, finding)
        self.assertIn("PKG-1", notification.message)

    def test_resolution_requires_auditor_acceptance(self):
        finding = self.raise_finding()
        finding.submit_cardholder_response(self.cardholder, "resolve", "Receipt attached", ["receipt.pdf"])
        finding.refresh_from_db()
        self.assertEqual(finding.status, "in_progress")
        package = self.package()
        self.assertEqual(package.overall_status, "cardholder_response")
        self.assertEqual(package.open_findings, 1)
        self.assertIsNone(package.audit_completed_at)
        # auditor of the finding is told about the response
        self.assertTrue(Notification.objects.filter(user=self.auditor, related_finding=finding).exists())

        finding.submit_auditor_response(self.auditor, "accept", "Looks good")
        finding.refresh_from_db()
        self.assertEqual(finding.status, "resolved")
        self.assertEqual(finding.resolution_notes, "Looks good")
        self.assertEqual(finding.cardholder_response.status, "accepted")
        after = self.package()
        self.assertEqual(after.resolved_findings, package.resolved_findings + 1)
        self.assertEqual(after.open_findings, package.open_findings - 1)
        self.assertEqual(after.overall_status, "resolved")
        self.assertIsNotNone(after.audit_completed_at)

    def test_resolved_finding_is_final(self):
        finding = self.raise_finding()
        finding.submit_cardholder_response(self.cardholder, "resolve")
        finding.submit_auditor_response(self.auditor, "accept")
        with self.assertRaises(InvalidTransition):
            finding.submit_cardholder_response(self.cardholder, "dispute")
        with self.assertRaises(InvalidTransition):
            finding.submit_auditor_response(self.auditor, "reject")

    def test_reject_reopens_finding(self):
        finding = self.raise_finding()
        finding.submit_cardholder_response(self.cardholder, "resolve")
        finding.submit_auditor_response(self.auditor, "reject", "Wrong receipt")
        finding.refresh_from_db()
        self.assertEqual(finding.status, "open")
        response = finding.cardholder_response
        self.assertEqual(response.status, "rejected")
        self.assertEqual(response.auditor_feedback, "Wrong receipt")
        self.assertEqual(finding.auditor_response.status, "pending_cardholder_response")
        self.assertEqual(self.package().overall_status, "findings_issued")

    def test_extension_moves_due_date(self):
        finding = self.raise_finding()
        original_due = finding.due_date
        finding.submit_cardholder_response(self.cardholder, "request_extension")
        finding.submit_auditor_response(self.auditor, "accept")
        finding.refresh_from_db()
        self.assertEqual(finding.status, "in_progress")
        self.assertEqual(finding.due_date, original_due + timedelta(days=7))
        self.assertEqual(self.package().response_due_date, finding.due_date)

    def test_new_response_supersedes_pending_one(self):
        finding = self.raise_finding()
        first = finding.submit_cardholder_response(self.cardholder, "acknowledge")
        second = finding.submit_cardholder_response(self.cardholder, "resolve")
        first.refresh_from_db()
        self.assertEqual(first.status, CardholderResponse.Status.NEEDS_REVISION)
        self.assertEqual(finding.pending_cardholder_response, second)

    def test_dispute_then_escalate(self):
        finding = self.raise_finding()
        finding.submit_cardholder_response(self.cardholder, "dispute", "Policy allows this")
        self.assertEqual(self.package().overall_status, "disputed")
        with self.assertRaises(InvalidTransition):
            finding.submit_cardholder_response(self.cardholder, "resolve")

        finding.submit_auditor_response(self.auditor, "escalate")
        finding.refresh_from_db()
        self.assertEqual(finding.status, "disputed")
        self.assertTrue(Notification.objects.filter(user=self.admin, related_finding=finding).exists())
        self.assertFalse(
            Notification.objects.filter(user=self.auditor, message__contains="escalated").exists()
        )

    def test_package_counts_stay_consistent(self):
        first = self.raise_finding()
        self.raise_finding(severity="low")
        first.submit_cardholder_response(self.cardholder, "resolve")
        first.submit_auditor_response(self.auditor, "accept")
        package = self.package()
        self.assertEqual(package.total_findings, 2)
        self.assertEqual(package.open_findings + package.resolved_findings, package.total_findings)
        self.assertEqual(package.audit_score, 85)

    def test_moving_a_finding_refreshes_both_packages(self):
        finding = self.raise_finding(package_id="PKG-A", severity="critical")
        finding.package_id = "PKG-B"
        finding.save()
        old = self.package("PKG-A")
        self.assertEqual(old.total_findings, 0)
        self.assertEqual(old.critical_findings, 0)
        self.assertEqual(old.overall_status, "resolved")
        self.assertEqual(self.package("PKG-B").critical_findings, 1)

    def test_disputed_finding_cannot_be_reopened(self):
        finding = self.raise_finding()
        finding.submit_cardholder_response(self.cardholder, "dispute")
        with self.assertRaises(InvalidTransition):
            finding.submit_auditor_response(self.auditor, "reject")
        finding.submit_auditor_response(self.auditor, "accept")
        finding.refresh_from_db()
        self.assertEqual(finding.status, "disputed")
        self.assertEqual(finding.cardholder_response.status, "accepted")

    def test_deleting_findings_recomputes_package(self):
        finding = self.raise_finding(severity="critical")
        finding.delete()
        package = self.package()
        self.assertEqual(package.total_findings, 0)
        self.assertEqual(package.overall_status, "resolved")


class SubscriptionTests(TestCase):
    def setUp(self):
        self.auditor = make_user("audrey", User.Roles.AUDITOR)
        self.cardholder = make_user("carl", User.Roles.CARDHOLDER)

    def raise_finding(self, package_id):
        return AuditFinding.objects.create(
            package_id=package_id,
            cardholder=self.cardholder,
            auditor=self.auditor,
            category=AuditFinding.Category.FINANCIAL,
            title="Split purchase",
        )

    def test_findings_feed_filters_by_package(self):
        received = []
        subscription = subscribe_to_findings("PKG-1", received.append)
        finding = self.raise_finding("PKG-1")
        self.raise_finding("PKG-2")
        subscription.unsubscribe()
        self.raise_finding("PKG-1")
        self.assertEqual(received, [finding])

    def test_package_status_feed(self):
        received = []
        with subscribe_to_package_status("PKG-1", received.append):
            self.raise_finding("PKG-1")
            self.raise_finding("PKG-2")
        self.assertTrue(received)
        self.assertTrue(all(status.package_id == "PKG-1" for status in received))
        self.assertEqual(received[-1].total_findings, 1)

    def test_notification_feed_is_per_user(self):
        received = []
        with subscribe_to_notifications(self.cardholder, received.append):
            self.raise_finding("PKG-1")
        with subscribe_to_notifications(self.auditor, received.append):
            self.raise_finding("PKG-1")
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].user, self.cardholder)


class AuditApiTests(APITestCase):
    def setUp(self):
        cache.clear()
        self.auditor = make_user("audrey", User.Roles.AUDITOR)
        self.cardholder = make_user("carl", User.Roles.CARDHOLDER)
        self.other_cardholder = make_user("cora", User.Roles.CARDHOLDER)
        self.requester = make_user("rita", User.Roles.REQUESTER)
        self.admin = make_user("root", User.Roles.ADMIN)

    def create_finding(self, severity="high", package_id="PKG-9"):
        self.client.force_authenticate(user=self.auditor)
        response = self.client.post(
            reverse("audit-finding-list"),
            {
                "package_id": package_id,
                "request_id": "REQ-9",
                "cardholder": self.cardholder.uid,
                "category": "compliance",
                "title": "Vendor not approved",
                "severity": severity,
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data

    def test_auditor_raises_finding(self):
        data = self.create_finding()
        self.assertEqual(data["auditor"]["uid"], self.auditor.uid)
        self.assertEqual(data["cardholder"]["uid"], self.cardholder.uid)
        self.assertEqual(data["status"], "open")
        self.assertEqual(data["due_date"], (timezone.localdate() + timedelta(days=14)).isoformat())

    def test_finding_must_target_a_cardholder(self):
        self.client.force_authenticate(user=self.auditor)
        response = self.client.post(
            reverse("audit-finding-list"),
            {
                "package_id": "PKG-9",
                "cardholder": self.requester.uid,
                "category": "compliance",
                "title": "Vendor not approved",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cardholder_cannot_raise_findings(self):
        self.client.force_authenticate(user=self.cardholder)
        response = self.client.post(reverse("audit-finding-list"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_debug_role_grants_no_audit_powers(self):
        self.client.force_authenticate(user=self.cardholder)
        self.client.post(reverse("debug-role"), {"role": "auditor"}, format="json")
        response = self.client.post(reverse("audit-finding-list"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.get(reverse("package-status-metrics"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_finding_visibility(self):
        finding = self.create_finding()
        self.client.force_authenticate(user=self.cardholder)
        response = self.client.get(reverse("audit-finding-list"))
        self.assertEqual([f["id"] for f in response.data], [finding["id"]])

        self.client.force_authenticate(user=self.other_cardholder)
        self.assertEqual(self.client.get(reverse("audit-finding-list")).data, [])

        self.client.force_authenticate(user=self.requester)
        self.assertEqual(self.client.get(reverse("audit-finding-list")).data, [])

        self.client.force_authenticate(user=self.auditor)
        response = self.client.get(reverse("audit-finding-list"), {"package": "OTHER"})
        self.assertEqual(response.data, [])

    def test_respond_and_review(self):
        finding = self.create_finding()
        self.client.force_authenticate(user=self.cardholder)
        response = self.client.post(
            reverse("audit-finding-respond", kwargs={"pk": finding["id"]}),
            {"response_type": "resolve", "response_text": "Vendor onboarded", "supporting_documents": ["form.pdf"]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "in_progress")
        self.assertEqual(response.data["cardholder_response"]["supporting_documents"], ["form.pdf"])

        self.client.force_authenticate(user=self.auditor)
        response = self.client.post(
            reverse("audit-finding-review", kwargs={"pk": finding["id"]}),
            {"response_type": "accept", "response_text": "Confirmed"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["status"], "resolved")

        response = self.client.get(reverse("package-status-detail", kwargs={"package_id": "PKG-9"}))
        self.assertEqual(response.data["overall_status"], "resolved")
        self.assertEqual(response.data["resolved_findings"], 1)
        self.assertEqual(response.data["open_findings"], 0)

        self.client.force_authenticate(user=self.cardholder)
        response = self.client.post(
            reverse("audit-finding-respond", kwargs={"pk": finding["id"]}),
            {"response_type": "dispute"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_only_named_cardholder_responds(self):
        finding = self.create_finding()
        self.client.force_authenticate(user=self.other_cardholder)
        response = self.client.post(
            reverse("audit-finding-respond", kwargs={"pk": finding["id"]}),
            {"response_type": "acknowledge"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        self.client.force_authenticate(user=self.auditor)
        response = self.client.post(
            reverse("audit-finding-respond", kwargs={"pk": finding["id"]}),
            {"response_type": "acknowledge"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_review_without_pending_response(self):
        finding = self.create_finding()
        response = self.client.post(
            reverse("audit-finding-review", kwargs={"pk": finding["id"]}),
            {"response_type": "accept"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_finding_cannot_change_package(self):
        finding = self.create_finding(severity="critical", package_id="PKG-A")
        response = self.client.patch(
            reverse("audit-finding-detail", kwargs={"pk": finding["id"]}),
            {"package_id": "PKG-B"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("package_id", response.data)
        package = AuditPackageStatus.objects.get(package_id="PKG-A")
        self.assertEqual(package.total_findings, AuditFinding.objects.filter(package_id="PKG-A").count())
        self.assertEqual(package.critical_findings, 1)
        self.assertFalse(AuditPackageStatus.objects.filter(package_id="PKG-B").exists())

        response = self.client.patch(
            reverse("audit-finding-detail", kwargs={"pk": finding["id"]}),
            {"package_id": "PKG-A", "title": "Vendor still not approved"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["title"], "Vendor still not approved")

    def test_cannot_edit_resolved_finding(self):
        finding = AuditFinding.objects.create(
            package_id="PKG-3",
            cardholder=self.cardholder,
            auditor=self.auditor,
            category="financial",
            title="Over limit",
            status="resolved",
        )
        self.client.force_authenticate(user=self.auditor)
        response = self.client.patch(
            reverse("audit-finding-detail", kwargs={"pk": finding.id}), {"title": "Changed"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_package_status_visibility_and_metrics(self):
        self.create_finding(severity="critical")
        self.create_finding(package_id="PKG-10")

        self.client.force_authenticate(user=self.cardholder)
        response = self.client.get(reverse("package-status-list"))
        self.assertEqual(len(response.data), 2)
        response = self.client.get(reverse("package-status-metrics"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.other_cardholder)
        response = self.client.get(reverse("package-status-detail", kwargs={"package_id": "PKG-9"}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        self.client.force_authenticate(user=self.auditor)
        response = self.client.get(reverse("package-status-metrics"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["total_packages"], 2)
        self.assertEqual(response.data["critical_findings"], 1)
        self.assertEqual(response.data["open_findings"], 2)

        response = self.client.post(reverse("package-status-recompute", kwargs={"package_id": "PKG-9"}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["audit_score"], 70)

    def test_notifications(self):
        self.create_finding()
        self.client.force_authenticate(user=self.cardholder)
        response = self.client.get(reverse("notification-list"))
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["related_package_id"], "PKG-9")

        notification_id = response.data[0]["id"]
        response = self.client.patch(reverse("notification-mark-read", kwargs={"pk": notification_id}))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(Notification.objects.get(pk=notification_id).is_read)

        self.create_finding(package_id="PKG-11")
        self.client.force_authenticate(user=self.cardholder)
        response = self.client.patch(reverse("notification-mark-all-read"))
        self.assertEqual(response.data["count"], 1)

        self.client.force_authenticate(user=self.requester)
        self.assertEqual(self.client.get(reverse("notification-list")).data, [])


class NotificationConsumerTests(TransactionTestCase):
    def setUp(self):
        self.auditor = make_user("audrey", User.Roles.AUDITOR)
        self.cardholder = make_user("carl", User.Roles.CARDHOLDER)
        self.other_cardholder = make_user("cora", User.Roles.CARDHOLDER)

    def connect_as(self, user=None, token=None):
        if token is None:
            token = AccessToken.for_user(user)
        path = f"/ws/notifications/?token={token}" if token else "/ws/notifications/"
        return WebsocketCommunicator(NotificationConsumer.as_asgi(), path)

    def run_socket(self, scenario):
        async def run():
            await get_channel_layer().flush()
            return await scenario()

        return async_to_sync(run)()

    def active_groups(self):
        return {name for name, members in get_channel_layer().groups.items() if members}

    def test_connection_without_token_is_rejected(self):
        async def scenario():
            connected, _ = await self.connect_as(token="").connect()
            return connected

        self.assertFalse(self.run_socket(scenario))

    def test_invalid_token_is_rejected(self):
        async def scenario():
            connected, _ = await self.connect_as(token="not-a-jwt").connect()
            return connected

        self.assertFalse(self.run_socket(scenario))

    def test_token_joins_user_group_and_answers_ping(self):
        async def scenario():
            communicator = self.connect_as(self.cardholder)
            connected, _ = await communicator.connect()
            await communicator.send_json_to({"type": "ping"})
            reply = await communicator.receive_json_from()
            groups = self.active_groups()
            await communicator.disconnect()
            return connected, reply, groups, self.active_groups()

        connected, reply, groups, after = self.run_socket(scenario)
        self.assertTrue(connected)
        self.assertEqual(reply, {"type": "pong"})
        self.assertEqual(groups, {user_group(self.cardholder.id)})
        self.assertEqual(after, set())

    def test_unseen_identity_is_provisioned(self):
        token = AccessToken()
        token["user_id"] = "idp-socket-1"

        async def scenario():
            communicator = self.connect_as(token=str(token))
            connected, _ = await communicator.connect()
            await communicator.disconnect()
            return connected

        self.assertTrue(self.run_socket(scenario))
        self.assertEqual(User.objects.get(uid="idp-socket-1").role, User.Roles.REQUESTER)

    def test_mark_read_ignores_bad_payloads(self):
        own = Notification.objects.create(user=self.cardholder, message="New finding")
        foreign = Notification.objects.create(user=self.auditor, message="Cardholder responded")

        async def scenario():
            communicator = self.connect_as(self.cardholder)
            await communicator.connect()
            await communicator.send_json_to([])
            await communicator.send_to(text_data="{broken")
            await communicator.send_json_to({"type": "mark_read", "notification_id": "abc"})
            await communicator.send_json_to({"type": "mark_read", "notification_id": foreign.id})
            await communicator.send_json_to({"type": "mark_read", "notification_id": own.id})
            await communicator.send_json_to({"type": "ping"})
            reply = await communicator.receive_json_from()
            await communicator.disconnect()
            return reply

        self.assertEqual(self.run_socket(scenario), {"type": "pong"})
        own.refresh_from_db()
        foreign.refresh_from_db()
        self.assertTrue(own.is_read)
        self.assertFalse(foreign.is_read)

    def test_cardholder_watches_only_own_package(self):
        finding = AuditFinding.objects.create(
            package_id="PKG-1",
            cardholder=self.cardholder,
            auditor=self.auditor,
            category=AuditFinding.Category.FINANCIAL,
            title="Split purchase",
        )

        async def scenario():
            stranger = self.connect_as(self.other_cardholder)
            await stranger.connect()
            await stranger.send_json_to({"type": "watch_package", "package_id": "PKG-1"})
            refused = await stranger.receive_json_from()
            await stranger.disconnect()

            owner = self.connect_as(self.cardholder)
            await owner.connect()
            await owner.send_json_to({"type": "watch_package", "package_id": "PKG-1"})
            accepted = await owner.receive_json_from()
            watching = self.active_groups()

            finding.severity = AuditFinding.Severity.CRITICAL
            await database_sync_to_async(finding.save)()
            pushed = await owner.receive_json_from()

            await owner.send_json_to({"type": "unwatch_package", "package_id": "PKG-1"})
            await owner.send_json_to({"type": "ping"})
            await owner.receive_json_from()
            unwatched = self.active_groups()
            await owner.disconnect()
            return refused, accepted, watching, pushed, unwatched, self.active_groups()

        refused, accepted, watching, pushed, unwatched, after = self.run_socket(scenario)
        self.assertEqual(refused["type"], "error")
        self.assertEqual(accepted, {"type": "watching", "package_id": "PKG-1"})
        self.assertIn(package_group("PKG-1"), watching)
        self.assertEqual(pushed["type"], "package_status")
        self.assertEqual(pushed["package_status"]["package_id"], "PKG-1")
        self.assertEqual(pushed["package_status"]["critical_findings"], 1)
        self.assertEqual(unwatched, {user_group(self.cardholder.id)})
        self.assertEqual(after, set())

    def test_auditor_can_watch_any_package(self):
        async def scenario():
            communicator = self.connect_as(self.auditor)
            await communicator.connect()
            await communicator.send_json_to({"type": "watch_package", "package_id": "PKG-404"})
            reply = await communicator.receive_json_from()
            await communicator.disconnect()
            return reply

        self.assertEqual(self.run_socket(scenario)["type"], "watching")

    def test_notifications_are_pushed_to_the_user(self):
        async def scenario():
            communicator = self.connect_as(self.cardholder)
            await communicator.connect()
            notification = await database_sync_to_async(create_notification_for_user)(
                self.cardholder, "Response due soon"
            )
            pushed = await communicator.receive_json_from()
            await communicator.disconnect()
            return notification, pushed

        notification, pushed = self.run_socket(scenario)
        self.assertEqual(pushed["type"], "notification")
        self.assertEqual(pushed["notification"]["id"], notification.id)
        self.assertEqual(pushed["notification"]["message"], "Response due soon")
