"""Tests for the site service — resolution, policy snapshots, management."""

from datetime import datetime, timedelta, timezone

import pytest

from pagehaven.extensions import db
from pagehaven.models.deployment import Deployment
from pagehaven.models.site import Site, SiteAccess, SiteInvite, SiteMember
from pagehaven.models.user import User
from pagehaven.services import site_service, storage_service
from pagehaven.services.access_service import AccessType
from pagehaven.services.file_service import deployment_key

WEB = "https://app.example.com"


class TestSplitHost:
    @pytest.mark.parametrize(
        "host,expected",
        [
            ("docs.example.com", ("docs.example.com", "docs")),
            ("Docs.Example.com:8080", ("docs.example.com", "docs")),
            ("docs.example.com.", ("docs.example.com", "docs")),
            ("localhost", ("localhost", "localhost")),
            ("", ("", "")),
        ],
    )
    def test_split(self, host, expected):
        assert site_service.split_host(host) == expected


class TestResolveSite:
    def test_by_subdomain(self, seed_data):
        resolved = site_service.resolve_site("private-site.example.com")
        assert resolved.site_id == seed_data["private_id"]
        assert resolved.subdomain == "private-site"
        assert resolved.active_deployment_id == seed_data["private"].active_deployment_id

    def test_policy_snapshot(self, seed_data):
        policy = site_service.resolve_site("private-site.example.com").policy
        assert policy.access_type is AccessType.PRIVATE
        assert policy.owner_id == seed_data["owner_id"]
        assert policy.member_ids == frozenset({seed_data["owner_id"], seed_data["member_id"]})
        assert [i.email for i in policy.invites] == ["invitee@example.com"]
        assert policy.password_hash is None

    def test_password_policy(self, seed_data):
        policy = site_service.resolve_site("pw-site.example.com").policy
        assert policy.access_type is AccessType.PASSWORD
        assert policy.password_hash == seed_data["password_hash"]

    def test_unknown(self, seed_data):
        assert site_service.resolve_site("nope.example.com") is None
        assert site_service.resolve_site("") is None

    def test_custom_domain(self, seed_data):
        site = site_service.create_site(
            seed_data["owner"], "Shop", "storefront", custom_domain="Shop.Customer.TEST"
        )
        resolved = site_service.resolve_site("shop.customer.test:443")
        assert resolved.site_id == site.id

    def test_custom_domain_not_matched_by_first_label(self, seed_data):
        """A custom domain whose first label is another site's subdomain."""
        shop = site_service.create_site(
            seed_data["owner"], "Shop", "storefront", custom_domain="public-site.customer.test"
        )
        resolved = site_service.resolve_site("public-site.customer.test")
        assert resolved.site_id == shop.id

    def test_unregistered_custom_domain(self, seed_data):
        """A foreign host never falls back to a subdomain lookup."""
        assert site_service.resolve_site("public-site.evil.test") is None

    def test_nested_label_under_sites_domain(self, seed_data):
        """Only single-label subdomains of SITES_DOMAIN are sites."""
        assert site_service.resolve_site("a.public-site.example.com") is None

    def test_explicit_sites_domain(self, seed_data):
        assert site_service.resolve_site("public-site.other.test", sites_domain="other.test")
        assert site_service.resolve_site("public-site.example.com", sites_domain="other.test") is None

    def test_missing_access_row_is_public(self, seed_data):
        SiteAccess.query.filter_by(site_id=seed_data["public_id"]).delete()
        db.session.commit()
        policy = site_service.resolve_site("public-site.example.com").policy
        assert policy.access_type is AccessType.PUBLIC


class TestHostHelpers:
    def test_is_site_host(self, seed_data):
        assert site_service.is_site_host("anything.example.com", "example.com")
        assert not site_service.is_site_host("example.com", "example.com")
        assert not site_service.is_site_host("evil.test", "example.com")

    def test_site_base_url(self, seed_data):
        assert site_service.site_base_url(seed_data["public"], WEB, "example.com") == (
            "https://public-site.example.com"
        )

    @pytest.mark.parametrize(
        "url,safe",
        [
            ("/docs", True),
            ("https://app.example.com/x", True),
            ("http://public-site.example.com/", True),
            ("", False),
            ("//evil.test/", False),
            ("/\\evil.test", False),
            ("https://evil.test/", False),
            ("https://example.com.evil.test/", False),
            ("ftp://public-site.example.com/", False),
        ],
    )
    def test_is_safe_redirect(self, seed_data, url, safe):
        assert site_service.is_safe_redirect(url, WEB, "example.com") is safe


class TestCreateSite:
    def test_defaults(self, seed_data):
        site = site_service.create_site(seed_data["owner"], "New", "New-Site")
        assert site.subdomain == "new-site"
        assert site.access.access_type == "public"
        assert site.active_deployment_id is None
        member = SiteMember.query.filter_by(site_id=site.id).one()
        assert member.user_id == seed_data["owner_id"]
        assert member.role == "owner"

    def test_subdomain_is_immutable(self, seed_data):
        site = seed_data["public"]
        with pytest.raises(ValueError):
            site.subdomain = "renamed"
        site.subdomain = "PUBLIC-SITE"  # same value, different case
        assert site.subdomain == "public-site"


class TestSetAccess:
    def test_password_requires_password(self, seed_data):
        with pytest.raises(ValueError):
            site_service.set_access(seed_data["public"], "password")

    def test_password_is_hashed(self, seed_data):
        access = site_service.set_access(seed_data["public"], "password", password="pw")
        assert access.password_hash
        assert access.password_hash != "pw"

    def test_leaving_password_clears_hash(self, seed_data):
        access = site_service.set_access(seed_data["protected"], AccessType.PRIVATE)
        assert access.access_type == "private"
        assert access.password_hash is None

    def test_unknown_type(self, seed_data):
        with pytest.raises(ValueError):
            site_service.set_access(seed_data["public"], "friends_only")


class TestVerifySitePassword:
    def test_right_password_returns_hash(self, seed_data):
        token = site_service.verify_site_password(seed_data["protected_id"], "letmein")
        assert token == seed_data["password_hash"]

    def test_wrong_password(self, seed_data):
        assert site_service.verify_site_password(seed_data["protected_id"], "nope") is None
        assert site_service.verify_site_password(seed_data["protected_id"], "") is None

    def test_not_a_password_site(self, seed_data):
        assert site_service.verify_site_password(seed_data["public_id"], "letmein") is None
        assert site_service.verify_site_password("missing", "letmein") is None


class TestMembersAndInvites:
    def test_add_member_is_idempotent(self, seed_data):
        stranger = db.session.get(User, seed_data["stranger_id"])
        first = site_service.add_member(seed_data["public"], stranger)
        second = site_service.add_member(seed_data["public"], stranger, role="editor")
        assert first.id == second.id
        assert second.role == "viewer"

    def test_invite_normalizes_email(self, seed_data):
        invite = site_service.invite_visitor(
            seed_data["private"], "  New@Example.COM ", seed_data["owner"]
        )
        assert invite.email == "new@example.com"
        assert invite.is_pending

    def test_invite_without_expiry(self, seed_data):
        invite = site_service.invite_visitor(
            seed_data["private"], "a@example.com", seed_data["owner"], expires_days=None
        )
        assert invite.expires_at is None
        assert not invite.is_expired

    def test_accept_invite(self, seed_data):
        invite = SiteInvite.query.filter_by(site_id=seed_data["private_id"]).one()
        invitee = db.session.get(User, seed_data["invitee_id"])

        membership, error = site_service.accept_invite(invite, invitee)

        assert error is None
        assert membership.role == "viewer"
        assert invite.is_accepted
        policy = site_service.resolve_site("private-site.example.com").policy
        assert invitee.id in policy.member_ids

    def test_accept_twice(self, seed_data):
        invite = SiteInvite.query.filter_by(site_id=seed_data["private_id"]).one()
        invitee = db.session.get(User, seed_data["invitee_id"])
        site_service.accept_invite(invite, invitee)

        membership, error = site_service.accept_invite(invite, invitee)

        assert membership is None
        assert "already been accepted" in error

    def test_accept_expired(self, seed_data):
        invite = SiteInvite.query.filter_by(site_id=seed_data["private_id"]).one()
        invite.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.session.commit()

        membership, error = site_service.accept_invite(
            invite, db.session.get(User, seed_data["invitee_id"])
        )

        assert membership is None
        assert "expired" in error

    def test_find_pending_invite(self, seed_data):
        invitee = db.session.get(User, seed_data["invitee_id"])
        stranger = db.session.get(User, seed_data["stranger_id"])

        invite = site_service.find_pending_invite(seed_data["private_id"], invitee)

        assert invite is not None
        assert invite.email == "invitee@example.com"
        assert site_service.find_pending_invite(seed_data["private_id"], stranger) is None
        assert site_service.find_pending_invite(seed_data["public_id"], invitee) is None

    def test_find_pending_invite_skips_used_and_expired(self, seed_data):
        """Accepted or expired invites are not pending."""
        invitee = db.session.get(User, seed_data["invitee_id"])
        invite = SiteInvite.query.filter_by(site_id=seed_data["private_id"]).one()
        invite.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.session.commit()

        assert site_service.find_pending_invite(seed_data["private_id"], invitee) is None

    def test_find_pending_invite_by_user_id(self, seed_data):
        """Invites bound to a user match even under another email."""
        stranger = db.session.get(User, seed_data["stranger_id"])
        site_service.invite_visitor(
            seed_data["private"], "old-address@example.com", seed_data["owner"], user=stranger
        )

        invite = site_service.find_pending_invite(seed_data["private_id"], stranger)

        assert invite.user_id == stranger.id
        membership, error = site_service.accept_invite(invite, stranger)
        assert error is None
        assert membership.user_id == stranger.id

    def test_accept_wrong_email(self, seed_data):
        invite = SiteInvite.query.filter_by(site_id=seed_data["private_id"]).one()

        membership, error = site_service.accept_invite(
            invite, db.session.get(User, seed_data["stranger_id"])
        )

        assert membership is None
        assert "different email" in error


class TestDeployDirectory:
    def test_uploads_and_activates(self, seed_data, tmp_path):
        bundle = tmp_path / "dist"
        (bundle / "css").mkdir(parents=True)
        (bundle / "index.html").write_bytes(b"<h1>v2</h1>")
        (bundle / "css" / "main.css").write_bytes(b"body{}")
        site = seed_data["public"]
        previous = site.active_deployment_id

        deployment = site_service.deploy_directory(
            site, str(bundle), seed_data["owner"], commit_message="v2"
        )

        assert deployment.status == "live"
        assert deployment.file_count == 2
        assert deployment.total_size == len(b"<h1>v2</h1>") + len(b"body{}")
        assert deployment.finished_at is not None
        assert site.active_deployment_id == deployment.id != previous
        stored = storage_service.get_object(deployment_key(site.id, deployment.id, "css/main.css"))
        assert stored.body == b"body{}"



class TestDeleteSite:
    def test_cascades_and_removes_files(self, seed_data, deploy_files, storage_dir):
        site_id = seed_data["private_id"]
        deployment_id = seed_data["private"].active_deployment_id
        deploy_files(site_id, {"index.html": b"x"})
        assert (storage_dir / "sites" / site_id).exists()

        site_service.delete_site(seed_data["private"])

        assert db.session.get(Site, site_id) is None
        assert SiteAccess.query.filter_by(site_id=site_id).count() == 0
        assert SiteMember.query.filter_by(site_id=site_id).count() == 0
        assert SiteInvite.query.filter_by(site_id=site_id).count() == 0
        assert Deployment.query.filter_by(site_id=site_id).count() == 0
        assert not (storage_dir / "sites" / site_id / "deployments" / deployment_id).exists()
        assert site_service.resolve_site("private-site.example.com") is None
