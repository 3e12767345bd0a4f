"""Shared test fixtures for the Pagehaven test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- storage_dir: per-test local object storage root
- seed_data: owner, member, invitee, stranger + one site per access type
- deploy_files: helper writing files into a site's active deployment
- login: helper logging a user in on the web app host
"""

import pytest
from werkzeug.security import generate_password_hash

from pagehaven import create_app
from pagehaven.extensions import db as _db
from pagehaven.models.deployment import Deployment
from pagehaven.models.site import Site, SiteInvite, SiteMember
from pagehaven.models.user import User
from pagehaven.services import site_service, storage_service
from pagehaven.services.file_service import deployment_key, deployment_prefix

WEB = "https://app.example.com"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def storage_dir(app, tmp_path):
    """Point the local storage backend at a fresh temp directory."""
    root = tmp_path / "storage"
    root.mkdir()
    app.config["LOCAL_STORAGE_DIR"] = str(root)
    yield root
    app.config["LOCAL_STORAGE_DIR"] = None


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _user(email, password="password123", full_name=None):
    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


def _site_with_deployment(owner, subdomain, access_type, password=None):
    site = site_service.create_site(owner, subdomain.title(), subdomain)
    site_service.set_access(site, access_type, password=password)

    deployment = Deployment(
        site_id=site.id,
        storage_path="",
        status="live",
        deployed_by=owner.id,
    )
    _db.session.add(deployment)
    _db.session.flush()
    deployment.storage_path = deployment_prefix(site.id, deployment.id)
    site.active_deployment_id = deployment.id
    _db.session.commit()
    return site


@pytest.fixture
def seed_data(app, db_session):
    """Seed users and one deployed site per access type.

    Users:
        owner    — owns every site
        member   — viewer member of the private and owner-only sites
        invitee  — pending invite to the private site
        stranger — no relation to any site

    Returns a dict of plain IDs plus the objects themselves.
    """
    owner = _user("owner@example.com", full_name="Site Owner")
    member = _user("member@example.com", full_name="Site Member")
    invitee = _user("invitee@example.com", full_name="Invited Visitor")
    stranger = _user("stranger@example.com", full_name="Stranger")
    _db.session.commit()

    public = _site_with_deployment(owner, "public-site", "public")
    protected = _site_with_deployment(owner, "pw-site", "password", password="letmein")
    private = _site_with_deployment(owner, "private-site", "private")
    owner_only = _site_with_deployment(owner, "owner-site", "owner_only")

    for site in (private, owner_only):
        _db.session.add(SiteMember(site_id=site.id, user_id=member.id, role="viewer"))
    _db.session.add(
        SiteInvite(
            site_id=private.id,
            email=invitee.email,
            invited_by=owner.id,
        )
    )
    _db.session.commit()

    return {
        "owner": owner,
        "owner_id": owner.id,
        "member_id": member.id,
        "invitee_id": invitee.id,
        "stranger_id": stranger.id,
        "public": public,
        "public_id": public.id,
        "protected": protected,
        "protected_id": protected.id,
        "password_hash": protected.access.password_hash,
        "private": private,
        "private_id": private.id,
        "owner_only": owner_only,
        "owner_only_id": owner_only.id,
    }


@pytest.fixture
def deploy_files(app):
    """Write files straight into a site's active deployment.

    Usage: deploy_files(site_id, {"index.html": b"<h1>hi</h1>"})
    """

    def _deploy(site_id, files):
        site = _db.session.get(Site, site_id)
        for path, data in files.items():
            storage_service.put_object(
                deployment_key(site.id, site.active_deployment_id, path), data
            )

    return _deploy


@pytest.fixture
def login(client):
    """Log in through the web app; the session cookie covers *.example.com."""

    def _login(email, password="password123"):
        return client.post(
            "/auth/login",
            data={"email": email, "password": password},
            base_url=WEB,
            follow_redirects=False,
        )

    return _login
