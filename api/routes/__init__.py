from .access import router as access_router
from .audit import router as audit_router
from .auth import router as auth_router
from .bulk import router as bulk_router
from .groups import router as groups_router
from .roles import permissions_router, router as roles_router
from .tools import privilege_router, router as tools_router
from .users import router as users_router

ROUTERS = [
    auth_router,
    access_router,
    tools_router,
    privilege_router,
    roles_router,
    permissions_router,
    groups_router,
    users_router,
    bulk_router,
    audit_router,
]
