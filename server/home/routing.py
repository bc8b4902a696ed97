import enum
import logging

from .models import User

logger = logging.getLogger(__name__)

LOGIN_ROUTE = "/login"
DASHBOARD_ROUTE = "/dashboard"


class RouteState(str, enum.Enum):
    LOADING = "loading"
    ROUTED = "routed"
    REDIRECTED = "redirected"


def home_route_for(role) -> str:
    try:
        role = User.Roles(role)
    except ValueError:
        return DASHBOARD_ROUTE
    match role:
        case User.Roles.REQUESTER:
            return "/requests"
        case User.Roles.APPROVER:
            return "/approvals"
        case User.Roles.CARDHOLDER:
            return "/purchases"
        case User.Roles.AUDITOR:
            return "/audit-packages"
        case User.Roles.ADMIN:
            return "/admin"
        case _:
            return DASHBOARD_ROUTE


class HomeRouter:
    """Sends a freshly established session to its role's landing route.

    Routing always uses the original (persisted) role; a debug override only
    changes what the user sees, never where the home page sends them.
    """

    def __init__(self, navigate):
        self._navigate = navigate
        self.state = RouteState.LOADING
        self.target = None

    def evaluate(self, session):
        if self.state is not RouteState.LOADING:
            return self.target
        if session.loading:
            return None
        user = session.original_user
        if user is None:
            self.state = RouteState.REDIRECTED
            self.target = LOGIN_ROUTE
        else:
            self.state = RouteState.ROUTED
            self.target = home_route_for(user.role)
            logger.info(
                f"Routing user {user.username} (role: {user.role}, effective: {session.effective_user.role}) to {self.target}"
            )
        self._navigate(self.target)
        return self.target
