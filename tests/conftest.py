"""
Shared fixtures: a fresh SQLite database per test and a small organisation.

    admin  super_admin (100)
    carol  admin (80), member of sre-leads
    bob    manager (50), direct approver of github and aws-console
    alice  user (10)
    dave   user (10)

sre-leads approves prod-db. legacy-crm is inactive.
"""
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from core.context import ActorContext
from core.identity import IdentityStore
from core.security import create_access_token
from core.tools import ToolRegistry
from models import database
from models.database import SessionLocal, configure_engine, get_session, init_db
from models.entities import Role

ORG_USERS = [
    ("admin", "super_admin"),
    ("carol", "admin"),
    ("bob", "manager"),
    ("alice", "user"),
    ("dave", "user"),
]

ORG_TOOLS = [
    ("github", True),
    ("aws-console", True),
    ("prod-db", True),
    ("jenkins", True),
    ("legacy-crm", False),
]


def build_org(session) -> SimpleNamespace:
    """Create the fixture organisation through the services and return actors and ids."""
    system = ActorContext.system()
    identity = IdentityStore(session)
    registry = ToolRegistry(session)
    roles = {role.name: role.id for role in session.query(Role).all()}

    org = SimpleNamespace(roles=roles, tools={})
    for name, role in ORG_USERS:
        user = identity.create_user(system, f"{name}@acme.io", first_name=name.title(), role_ids=[roles[role]])
        setattr(org, name, ActorContext(user.id, ip_address="10.0.0.1", user_agent="pytest"))

    sre = identity.create_group(org.admin, "sre-leads", "SRE Leads")
    identity.add_members(org.admin, sre.id, [org.carol.actor_id])
    org.sre_group = sre.id

    for name, is_active in ORG_TOOLS:
        tool = registry.create(org.admin, name, name.replace("-", " ").title(), category="Engineering", is_active=is_active)
        org.tools[name] = tool.id

    registry.add_approver(org.admin, org.tools["github"], user_id=org.bob.actor_id)
    registry.add_approver(org.admin, org.tools["aws-console"], user_id=org.bob.actor_id)
    registry.add_approver(org.admin, org.tools["prod-db"], group_id=sre.id)
    session.flush()
    return org


@pytest.fixture(autouse=True)
def db(tmp_path):
    """Point the engine at a throwaway database file and seed it."""
    configure_engine(f"sqlite:///{tmp_path / 'accesshub-test.db'}")
    init_db()
    yield
    database.engine.dispose()


@pytest.fixture
def session():
    s = SessionLocal()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def org(session):
    return build_org(session)


@pytest.fixture
def committed_org():
    """The organisation committed to the database, for API and CLI tests."""
    with get_session() as s:
        return build_org(s)


@pytest.fixture
def client():
    from api.app import create_app

    with TestClient(create_app(run_sweeper=False)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Bearer headers for an actor, skipping the password login."""
    def build(actor: ActorContext):
        token = create_access_token(actor.actor_id, "user@acme.io", [])
        return {"Authorization": f"Bearer {token}"}
    return build
