from decimal import Decimal
from unittest.mock import Mock, patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import AccessToken

from .identity import LOAD_ERROR, AuthIdentity, AuthState, IdentityAdapter, UserStore
from .roles import (
    authorize,
    belongs_to_org,
    can_approve_amount,
    get_effective_user,
    has_role_level,
    is_admin,
    is_approver,
    is_auditor,
    is_cardholder,
    is_requester,
    needs_role_assignment,
)
from .routing import HomeRouter, RouteState, home_route_for
from .session import AuthSession

User = get_user_model()

ALL_ROLES = [choice for choice, _ in User.Roles.choices]


def make_user(username, role, **extra):
    return User.objects.create_user(
        username,
        email=f"{username}@example.com",
        password="pass",
        role=role,
        **extra,
    )


class EffectiveUserTests(TestCase):
    def setUp(self):
        self.user = make_user("alice", User.Roles.REQUESTER)

    def test_no_override_returns_same_user(self):
        self.assertIs(get_effective_user(self.user, None), self.user)

    def test_override_replaces_role_on_a_copy(self):
        for role in ALL_ROLES:
            effective = get_effective_user(self.user, role)
            self.assertEqual(effective.role, role)
            self.assertIsNot(effective, self.user)
        self.assertEqual(self.user.role, User.Roles.REQUESTER)

    def test_missing_user_stays_missing(self):
        self.assertIsNone(get_effective_user(None, User.Roles.ADMIN))

    def test_unknown_override_is_rejected(self):
        with self.assertRaises(ValueError):
            get_effective_user(self.user, "superuser")

    def test_overridden_copy_cannot_be_saved(self):
        effective = get_effective_user(self.user, User.Roles.ADMIN)
        with self.assertRaises(ValueError):
            effective.save()
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, User.Roles.REQUESTER)


class AuthorizeTests(TestCase):
    def setUp(self):
        self.cardholder = make_user("carol", User.Roles.CARDHOLDER)
        self.admin = make_user("root", User.Roles.ADMIN)

    def test_cardholder_is_not_auditor_or_admin(self):
        self.assertFalse(authorize(self.cardholder, ["auditor", "admin"]))

    def test_membership(self):
        self.assertTrue(authorize(self.cardholder, ["cardholder", "admin"]))

    def test_missing_user_or_loading_is_unauthorized(self):
        for roles in ([], ["admin"], ALL_ROLES):
            self.assertFalse(authorize(None, roles))
            self.assertFalse(authorize(self.admin, roles, loading=True))
            self.assertFalse(authorize(None, roles, require_all=True))

    def test_require_all_only_matches_single_role(self):
        self.assertTrue(authorize(self.admin, ["admin"], require_all=True))
        self.assertFalse(authorize(self.admin, ["admin", "auditor"], require_all=True))

    def test_convenience_predicates(self):
        approver = make_user("amos", User.Roles.APPROVER)
        auditor = make_user("audrey", User.Roles.AUDITOR)
        self.assertTrue(is_admin(self.admin))
        self.assertFalse(is_admin(approver))
        self.assertTrue(is_approver(approver))
        self.assertTrue(is_approver(self.admin))
        self.assertFalse(is_approver(self.cardholder))
        self.assertTrue(is_cardholder(self.cardholder))
        self.assertFalse(is_cardholder(auditor))
        self.assertTrue(is_auditor(auditor))
        self.assertTrue(is_auditor(self.admin))
        self.assertTrue(is_requester(self.cardholder))
        self.assertFalse(is_requester(None))

    def test_role_helpers(self):
        approver = make_user("amos", User.Roles.APPROVER, approval_limit=Decimal("500.00"), org_id="ORG-1")
        self.assertTrue(has_role_level(self.admin, User.Roles.AUDITOR))
        self.assertFalse(has_role_level(approver, User.Roles.AUDITOR))
        self.assertTrue(belongs_to_org(approver, "ORG-1"))
        self.assertFalse(belongs_to_org(approver, "ORG-2"))
        self.assertTrue(can_approve_amount(approver, 500))
        self.assertFalse(can_approve_amount(approver, "500.01"))
        self.assertTrue(can_approve_amount(self.admin, 10**6))
        self.assertFalse(can_approve_amount(self.cardholder, 1))
        self.assertTrue(needs_role_assignment(make_user("newbie", User.Roles.REQUESTER)))
        self.assertFalse(needs_role_assignment(approver))


class AuthSessionTests(TestCase):
    def setUp(self):
        self.requester = make_user("rita", User.Roles.REQUESTER)
        self.auditor = make_user("audrey", User.Roles.AUDITOR)
        self.storage = {}
        self.session = AuthSession(self.storage)

    def test_starts_loading_and_unauthorized(self):
        self.assertTrue(self.session.loading)
        self.assertFalse(self.session.authorize(ALL_ROLES))

    def test_switch_role_changes_effective_user_only(self):
        self.session.on_auth_state_change(AuthState(user=self.requester, loading=False))
        self.session.switch_role(User.Roles.AUDITOR)
        self.assertEqual(self.session.effective_user.role, User.Roles.AUDITOR)
        self.assertEqual(self.session.original_user.role, User.Roles.REQUESTER)
        self.assertTrue(self.session.authorize(["auditor"]))
        self.session.switch_role(None)
        self.assertEqual(self.session.effective_user.role, User.Roles.REQUESTER)

    def test_identity_change_clears_override(self):
        self.session.on_auth_state_change(AuthState(user=self.requester, loading=False))
        self.session.switch_role(User.Roles.ADMIN)
        self.session.on_auth_state_change(AuthState(user=None, loading=True))
        self.assertEqual(self.session.debug_role, User.Roles.ADMIN)
        self.session.on_auth_state_change(AuthState(user=self.auditor, loading=False))
        self.assertIsNone(self.session.debug_role)
        self.assertEqual(self.session.effective_user.role, User.Roles.AUDITOR)

    def test_sign_out_clears_override(self):
        self.session.on_auth_state_change(AuthState(user=self.requester, loading=False))
        self.session.switch_role(User.Roles.ADMIN)
        self.session.on_auth_state_change(AuthState(user=None, loading=False))
        self.assertIsNone(self.session.debug_role)
        self.assertEqual(self.storage, {})

    def test_same_identity_keeps_override(self):
        self.session.on_auth_state_change(AuthState(user=self.requester, loading=False))
        self.session.switch_role(User.Roles.APPROVER)
        fresh = AuthSession(self.storage)
        fresh.on_auth_state_change(AuthState(user=self.requester, loading=False))
        self.assertEqual(fresh.debug_role, User.Roles.APPROVER)

    def test_switch_without_user_or_to_unknown_role_fails(self):
        with self.assertRaises(ValueError):
            self.session.switch_role(User.Roles.ADMIN)
        self.session.on_auth_state_change(AuthState(user=self.requester, loading=False))
        with self.assertRaises(ValueError):
            self.session.switch_role("owner")


class HomeRouterTests(TestCase):
    EXPECTED = {
        "requester": "/requests",
        "approver": "/approvals",
        "cardholder": "/purchases",
        "auditor": "/audit-packages",
        "admin": "/admin",
    }

    def test_fixed_targets(self):
        for role, target in self.EXPECTED.items():
            self.assertEqual(home_route_for(role), target)

    def test_unknown_or_missing_role_falls_back_to_dashboard(self):
        self.assertEqual(home_route_for("superuser"), "/dashboard")
        self.assertEqual(home_route_for(None), "/dashboard")
        self.assertEqual(home_route_for(""), "/dashboard")

    def test_waits_for_identity(self):
        navigate = Mock()
        router = HomeRouter(navigate)
        self.assertIsNone(router.evaluate(AuthSession()))
        self.assertEqual(router.state, RouteState.LOADING)
        navigate.assert_not_called()

    def test_unauthenticated_redirects_to_login(self):
        navigate = Mock()
        session = AuthSession()
        session.on_auth_state_change(AuthState(user=None, loading=False))
        router = HomeRouter(navigate)
        self.assertEqual(router.evaluate(session), "/login")
        self.assertEqual(router.state, RouteState.REDIRECTED)
        navigate.assert_called_once_with("/login")

    def test_routes_on_original_role_not_debug_role(self):
        user = make_user("carl", User.Roles.CARDHOLDER)
        session = AuthSession()
        session.on_auth_state_change(AuthState(user=user, loading=False))
        session.switch_role(User.Roles.ADMIN)
        navigate = Mock()
        router = HomeRouter(navigate)
        self.assertEqual(router.evaluate(session), "/purchases")
        self.assertEqual(router.state, RouteState.ROUTED)
        # terminal: evaluating again does not navigate twice
        router.evaluate(session)
        navigate.assert_called_once_with("/purchases")


class IdentityAdapterTests(TestCase):
    def setUp(self):
        self.adapter = IdentityAdapter()
        self.states = []
        self.subscription = self.adapter.subscribe_auth_state(self.states.append)

    def tearDown(self):
        self.subscription.unsubscribe()

    def test_first_login_provisions_user(self):
        identity = AuthIdentity(uid="idp-42", email="new@example.com", name="New Person")
        user = self.adapter.handle_auth_state_change(identity)
        self.assertEqual(user.uid, "idp-42")
        self.assertEqual(user.role, User.Roles.REQUESTER)
        self.assertEqual(user.name, "New Person")
        self.assertTrue(self.states[0].loading)
        self.assertEqual(self.states[-1], AuthState(user=user, loading=False))

    def test_existing_user_is_reused(self):
        existing = make_user("alice", User.Roles.AUDITOR)
        user = self.adapter.handle_auth_state_change(AuthIdentity(uid=existing.uid))
        self.assertEqual(user.pk, existing.pk)
        self.assertEqual(User.objects.count(), 1)

    @override_settings(DEFAULT_USER_ROLE="admin")
    def test_default_role_comes_from_settings(self):
        user = self.adapter.handle_auth_state_change(AuthIdentity(uid="idp-7"))
        self.assertEqual(user.role, User.Roles.ADMIN)

    def test_store_failure_publishes_error_state(self):
        with patch.object(UserStore, "get_user_by_id", side_effect=DatabaseError("down")):
            user = self.adapter.handle_auth_state_change(AuthIdentity(uid="idp-9"))
        self.assertIsNone(user)
        self.assertEqual(self.states[-1], AuthState(user=None, loading=False, error=LOAD_ERROR))

    def test_sign_out_publishes_empty_state(self):
        self.adapter.handle_auth_state_change(None)
        self.assertEqual(self.states, [AuthState(user=None, loading=False)])

    def test_unsubscribe_stops_delivery(self):
        self.subscription()
        self.adapter.handle_auth_state_change(None)
        self.assertEqual(self.states, [])
        self.assertFalse(self.subscription.active)

    def test_update_user_validates_fields(self):
        user = make_user("alice", User.Roles.REQUESTER)
        store = UserStore()
        updated = store.update_user(user.uid, {"role": "approver", "approval_limit": Decimal("2500")})
        self.assertEqual(updated.role, User.Roles.APPROVER)
        with self.assertRaises(ValueError):
            store.update_user(user.uid, {"is_superuser": True})
        with self.assertRaises(ValueError):
            store.update_user(user.uid, {"role": "owner"})


class SubscriptionTests(TestCase):
    def test_context_manager_and_predicate(self):
        from django.dispatch import Signal

        from .subscriptions import subscribe

        ping = Signal()
        received = []
        with subscribe(ping, received.append, predicate=lambda kw: kw.get("n", 0) > 1) as sub:
            ping.send(sender=None, n=1)
            ping.send(sender=None, n=2)
        ping.send(sender=None, n=3)
        self.assertFalse(sub.active)
        self.assertEqual([payload["n"] for payload in received], [2])
        # safe to dispose twice
        sub.unsubscribe()


class CurrentUserApiTests(APITestCase):
    def setUp(self):
        self.requester = make_user("rita", User.Roles.REQUESTER)
        self.auditor = make_user("audrey", User.Roles.AUDITOR)

    def test_me_requires_authentication(self):
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_reports_roles(self):
        self.client.force_authenticate(user=self.requester)
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["role"], "requester")
        self.assertEqual(response.data["original_role"], "requester")
        self.assertIsNone(response.data["debug_role"])

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_debug_role_is_visible_but_not_trusted(self):
        self.client.force_authenticate(user=self.requester)
        response = self.client.post(reverse("debug-role"), {"role": "admin"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.data["role"], "admin")
        self.assertEqual(response.data["original_role"], "requester")

        response = self.client.get(reverse("role-check"), {"roles": "admin"})
        self.assertTrue(response.data["authorized"])

        # server-side gates still use the persisted role
        response = self.client.get(reverse("user-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.requester.refresh_from_db()
        self.assertEqual(self.requester.role, User.Roles.REQUESTER)

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_identity_switch_clears_debug_role(self):
        self.client.force_authenticate(user=self.requester)
        self.client.post(reverse("debug-role"), {"role": "admin"}, format="json")
        self.client.force_authenticate(user=self.auditor)
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.data["role"], "auditor")
        self.assertIsNone(response.data["debug_role"])

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_clear_debug_role(self):
        self.client.force_authenticate(user=self.requester)
        self.client.post(reverse("debug-role"), {"role": "cardholder"}, format="json")
        response = self.client.delete(reverse("debug-role"))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.data["role"], "requester")

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_unknown_debug_role_is_rejected(self):
        self.client.force_authenticate(user=self.requester)
        response = self.client.post(reverse("debug-role"), {"role": "owner"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=False)
    def test_debug_role_switching_can_be_disabled(self):
        self.client.force_authenticate(user=self.requester)
        response = self.client.post(reverse("debug-role"), {"role": "admin"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_role_check_for_anonymous_is_false(self):
        response = self.client.get(reverse("role-check"), {"roles": ",".join(ALL_ROLES)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["authorized"])

    def test_role_check_cardholder_against_auditor_admin(self):
        cardholder = make_user("carl", User.Roles.CARDHOLDER)
        self.client.force_authenticate(user=cardholder)
        response = self.client.get(reverse("role-check"), {"roles": "auditor,admin"})
        self.assertFalse(response.data["authorized"])


class HomeRoutingApiTests(APITestCase):
    def test_anonymous_home_goes_to_login(self):
        response = self.client.get(reverse("home"))
        self.assertEqual(response.status_code, status.HTTP_302_FOUND)
        self.assertEqual(response["Location"], "/login")

        response = self.client.get(reverse("home-route"))
        self.assertEqual(response.data, {"state": "redirected", "target": "/login"})

    def test_each_role_lands_on_its_home(self):
        for role, target in HomeRouterTests.EXPECTED.items():
            user = make_user(f"user-{role}", role)
            self.client.force_login(user)
            response = self.client.get(reverse("home"))
            self.assertEqual(response["Location"], target)
            self.client.logout()

    @override_settings(DEBUG_ROLE_SWITCHING_ENABLED=True)
    def test_home_visit_ignores_and_clears_debug_role(self):
        user = make_user("carl", User.Roles.CARDHOLDER)
        self.client.force_authenticate(user=user)
        self.client.post(reverse("debug-role"), {"role": "auditor"}, format="json")
        response = self.client.get(reverse("home-route"))
        self.assertEqual(response.data, {"state": "routed", "target": "/purchases"})
        response = self.client.get(reverse("current-user"))
        self.assertIsNone(response.data["debug_role"])


class TokenProvisioningTests(APITestCase):
    def test_token_for_unseen_identity_provisions_requester(self):
        token = AccessToken()
        token["user_id"] = "idp-subject-1"
        token["email"] = "fresh@example.com"
        token["name"] = "Fresh User"
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["uid"], "idp-subject-1")
        self.assertEqual(response.data["role"], "requester")
        self.assertTrue(User.objects.filter(uid="idp-subject-1").exists())

    def test_token_for_existing_user(self):
        user = make_user("audrey", User.Roles.AUDITOR)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {AccessToken.for_user(user)}")
        response = self.client.get(reverse("home-route"))
        self.assertEqual(response.data["target"], "/audit-packages")

    def test_inactive_user_is_rejected(self):
        user = make_user("gone", User.Roles.REQUESTER)
        token = AccessToken.for_user(user)
        User.objects.filter(pk=user.pk).update(is_active=False)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get(reverse("current-user"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class UserAdminApiTests(APITestCase):
    def setUp(self):
        self.admin = make_user("root", User.Roles.ADMIN)
        self.requester = make_user("rita", User.Roles.REQUESTER)

    def test_admin_assigns_role_and_org(self):
        self.client.force_authenticate(user=self.admin)
        url = reverse("user-detail", kwargs={"uid": self.requester.uid})
        response = self.client.patch(
            url, {"role": "approver", "org_id": "ORG-7", "approval_limit": "1500.00"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.requester.refresh_from_db()
        self.assertEqual(self.requester.role, User.Roles.APPROVER)
        self.assertEqual(self.requester.org_id, "ORG-7")
        self.assertEqual(self.requester.approval_limit, Decimal("1500.00"))

    def test_non_admin_cannot_edit_users(self):
        self.client.force_authenticate(user=self.requester)
        url = reverse("user-detail", kwargs={"uid": self.requester.uid})
        response = self.client.patch(url, {"role": "admin"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
