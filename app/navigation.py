from __future__ import annotations

from dataclasses import dataclass

from app.auth import AuthorizedUser, Role
from app.security.route_guard import DEFAULT_FALLBACK_PATH, AccessPolicy

CLINICAL = AccessPolicy.roles(Role.ADMIN, Role.PHARMACIST)
ADMIN_ONLY = AccessPolicy.roles(Role.ADMIN)
ANY_SIGNED_IN = AccessPolicy.authenticated()

MAIN_SECTION = 'Main'
MANAGEMENT_SECTION = 'Management'
SYSTEM_SECTION = 'System'


@dataclass(frozen=True)
class NavRoute:
    path: str
    label: str
    icon: str
    section: str
    policy: AccessPolicy
    fallback: str = DEFAULT_FALLBACK_PATH


ROUTES: tuple[NavRoute, ...] = (
    NavRoute('/dashboard', 'Dashboard', 'home', MAIN_SECTION, CLINICAL),
    NavRoute('/medicines', 'Medicines', 'book', MAIN_SECTION, CLINICAL),
    NavRoute('/inventory', 'Inventory', 'package', MAIN_SECTION, CLINICAL),
    NavRoute('/prescriptions', 'Prescriptions', 'clipboard', MAIN_SECTION, CLINICAL),
    NavRoute('/sales', 'Sales', 'shopping-cart', MAIN_SECTION, ANY_SIGNED_IN),
    NavRoute('/customers', 'Customers', 'users', MANAGEMENT_SECTION, ANY_SIGNED_IN),
    NavRoute('/suppliers', 'Suppliers', 'database', MANAGEMENT_SECTION, ANY_SIGNED_IN),
    NavRoute('/reports', 'Reports', 'bar-chart', MANAGEMENT_SECTION, CLINICAL),
    NavRoute('/invoices', 'Invoices', 'file-text', MANAGEMENT_SECTION, ANY_SIGNED_IN),
    NavRoute('/settings', 'Settings', 'settings', SYSTEM_SECTION, ADMIN_ONLY),
)

_BY_PATH = {route.path: route for route in ROUTES}


@dataclass(frozen=True)
class SidebarLink:
    path: str
    label: str
    icon: str
    active: bool


def lookup(path: str) -> NavRoute | None:
    return _BY_PATH.get(path)


def accessible_routes(user: AuthorizedUser) -> list[NavRoute]:
    return [route for route in ROUTES if route.policy.permits(user.role)]


def home_path_for(user: AuthorizedUser, preferred: str) -> str:
    # A user bounced from the preferred home must land somewhere they can open.
    route = lookup(preferred)
    if route and route.policy.permits(user.role):
        return route.path
    routes = accessible_routes(user)
    return routes[0].path if routes else '/login'


def sidebar_links(user: AuthorizedUser | None, current_path: str) -> list[tuple[str, list[SidebarLink]]]:
    if user is None:
        return []
    sections: dict[str, list[SidebarLink]] = {}
    for route in accessible_routes(user):
        sections.setdefault(route.section, []).append(
            SidebarLink(path=route.path, label=route.label, icon=route.icon, active=route.path == current_path)
        )
    return list(sections.items())
