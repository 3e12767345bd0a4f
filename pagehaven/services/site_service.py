"""Site service — host → site resolution and site management.

resolve_site() is the read path used on every hosted-site request. It
returns a ResolvedSite whose `policy` is a plain SitePolicy snapshot, so
the access decision never touches the ORM.

The remaining functions are the write paths used by the CLI and the gate
pages: creating sites, changing access, members and invites, deploying.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlsplit

from flask import current_app
from sqlalchemy.orm import joinedload
from werkzeug.security import check_password_hash, generate_password_hash

from pagehaven.extensions import db
from pagehaven.models.deployment import Deployment
from pagehaven.models.site import Site, SiteAccess, SiteInvite, SiteMember
from pagehaven.services import storage_service
from pagehaven.services.access_service import (
    AccessType,
    InviteGrant,
    SitePolicy,
)
from pagehaven.services.file_service import deployment_key, deployment_prefix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSite:
    site_id: str
    subdomain: str
    active_deployment_id: Optional[str]
    policy: SitePolicy


# ──────────────────────────────────────────────
# Resolution
# ──────────────────────────────────────────────

def split_host(host):
    """Return (hostname, subdomain) for a Host header value.

    The port is dropped; the subdomain is the first DNS label.
    """
    hostname = (host or "").strip().lower().split(":", 1)[0].rstrip(".")
    subdomain = hostname.split(".", 1)[0]
    return hostname, subdomain


def _site_query():
    # members/invites are dynamic relationships, loaded in build_policy()
    return Site.query.options(joinedload(Site.access))


def build_policy(site):
    """Snapshot a Site row (plus access rows) into a SitePolicy."""
    access = site.access
    access_type = AccessType(access.access_type) if access else AccessType.PUBLIC
    return SitePolicy(
        site_id=site.id,
        owner_id=site.owner_id,
        access_type=access_type,
        password_hash=access.password_hash if access else None,
        member_ids=frozenset(m.user_id for m in site.members),
        invites=tuple(
            InviteGrant(
                email=i.email,
                user_id=i.user_id,
                expires_at=i.expires_at,
                accepted=i.is_accepted,
            )
            for i in site.invites
        ),
    )


def _subdomain_of(hostname, sites_domain):
    """'docs' for docs.<sites_domain>; None for any other host."""
    suffix = f".{sites_domain.lower()}" if sites_domain else None
    if not suffix or not hostname.endswith(suffix):
        return None
    label = hostname[: -len(suffix)]
    if not label or "." in label:
        return None
    return label


def find_site(host, sites_domain=None):
    """Site row for a Host header value, or None.

    Hosts under SITES_DOMAIN are looked up by subdomain only; every other
    host is looked up as a custom domain.
    """
    sites_domain = sites_domain or current_app.config["SITES_DOMAIN"]
    hostname, _ = split_host(host)
    if not hostname:
        return None

    subdomain = _subdomain_of(hostname, sites_domain)
    if subdomain is not None:
        return _site_query().filter(Site.subdomain == subdomain).first()
    return _site_query().filter(Site.custom_domain == hostname).first()


def resolve_site(host, sites_domain=None):
    """Find the site a request is addressed to.

    Args:
        host: Host header value (port is ignored)
        sites_domain: defaults to SITES_DOMAIN from app config

    Returns:
        ResolvedSite, or None when no site matches
    """
    site = find_site(host, sites_domain)
    if site is None:
        return None

    return ResolvedSite(
        site_id=site.id,
        subdomain=site.subdomain,
        active_deployment_id=site.active_deployment_id,
        policy=build_policy(site),
    )


def is_site_host(hostname, sites_domain):
    """True if `hostname` belongs to a hosted site (subdomain or custom domain)."""
    hostname = (hostname or "").lower()
    if sites_domain and hostname.endswith(f".{sites_domain.lower()}"):
        return True
    return Site.query.filter_by(custom_domain=hostname).first() is not None


def site_base_url(site, web_base_url, sites_domain):
    """Public root URL of a site, using the web app's scheme."""
    scheme = urlsplit(web_base_url).scheme or "https"
    host = site.custom_domain or f"{site.subdomain}.{sites_domain}"
    return f"{scheme}://{host}"


def site_hostnames(site, sites_domain):
    """Every hostname the site is served on."""
    hostnames = {f"{site.subdomain}.{sites_domain}".lower()}
    if site.custom_domain:
        hostnames.add(site.custom_domain.lower())
    return hostnames


def is_safe_redirect(url, web_base_url, sites_domain):
    """Post-gate redirects may only go to this app or a hosted site.

    Relative paths are fine; absolute URLs must be http(s) and point at the
    web app host or a site host. Prevents open redirects via ?redirect=.
    """
    if not url:
        return False
    if url.startswith("/") and not url.startswith("//") and "\\" not in url:
        return True

    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    hostname = parts.hostname.lower()
    if hostname == (urlsplit(web_base_url).hostname or "").lower():
        return True
    return is_site_host(hostname, sites_domain)


# ──────────────────────────────────────────────
# Management
# ──────────────────────────────────────────────

def create_site(owner, name, subdomain, custom_domain=None, description=None):
    """Create a public site owned by `owner`, who also becomes its first member."""
    site = Site(
        name=name,
        subdomain=subdomain,
        custom_domain=custom_domain.lower().strip() if custom_domain else None,
        description=description,
        owner_id=owner.id,
    )
    db.session.add(site)
    db.session.flush()

    db.session.add(SiteAccess(site_id=site.id, access_type=AccessType.PUBLIC.value))
    db.session.add(SiteMember(site_id=site.id, user_id=owner.id, role="owner"))
    db.session.commit()

    logger.info(f"Created site {site.subdomain} (id: {site.id})")
    return site


def set_access(site, access_type, password=None):
    """Change who may view a site.

    Args:
        site: Site row
        access_type: AccessType or its string value
        password: plain-text password, required for AccessType.PASSWORD

    Returns:
        SiteAccess: the updated access row
    """
    access_type = AccessType(access_type)
    if access_type is AccessType.PASSWORD and not password:
        raise ValueError("A password is required for password-protected sites.")

    access = site.access or SiteAccess(site_id=site.id)
    access.access_type = access_type.value
    if access_type is AccessType.PASSWORD:
        access.password_hash = generate_password_hash(password)
    else:
        access.password_hash = None

    db.session.add(access)
    db.session.commit()
    logger.info(f"Site {site.subdomain} access set to {access_type.value}")
    return access


def verify_site_password(site_id, password):
    """Check a gate password.

    Returns:
        str|None: the stored hash (the gate token) if the password is
        right, else None
    """
    access = SiteAccess.query.filter_by(site_id=site_id).first()
    if access is None or access.access_type != AccessType.PASSWORD.value:
        return None
    if not access.password_hash or not password:
        return None
    if not check_password_hash(access.password_hash, password):
        return None
    return access.password_hash


def add_member(site, user, role="viewer", invited_by=None):
    """Grant standing access. Idempotent per (site, user)."""
    membership = SiteMember.query.filter_by(
        site_id=site.id, user_id=user.id
    ).first()
    if membership is None:
        membership = SiteMember(
            site_id=site.id,
            user_id=user.id,
            role=role,
            invited_by=invited_by.id if invited_by else None,
        )
        db.session.add(membership)
        db.session.commit()
    return membership


def invite_visitor(site, email, invited_by, user=None, expires_days=30):
    """Create a pending visitor invite for a private site."""
    invite = SiteInvite(
        site_id=site.id,
        email=email,
        user_id=user.id if user else None,
        invited_by=invited_by.id,
        expires_at=(
            datetime.now(timezone.utc) + timedelta(days=expires_days)
            if expires_days
            else None
        ),
    )
    db.session.add(invite)
    db.session.commit()
    return invite


def _invite_belongs_to(invite, user):
    if invite.user_id is not None and invite.user_id == user.id:
        return True
    return invite.email == user.email.lower().strip()


def find_pending_invite(site_id, user):
    """The user's pending invite to a site, or None."""
    candidates = SiteInvite.query.filter(
        SiteInvite.site_id == site_id,
        db.or_(
            SiteInvite.user_id == user.id,
            SiteInvite.email == user.email.lower().strip(),
        ),
    ).order_by(SiteInvite.created_at.desc())
    for invite in candidates:
        if invite.is_pending:
            return invite
    return None


def accept_invite(invite, user):
    """Turn a pending invite into a viewer membership.

    Returns:
        tuple: (membership, error_message)
    """
    if invite.is_accepted:
        return None, "This invite has already been accepted."
    if invite.is_expired:
        return None, "This invite has expired."
    if not _invite_belongs_to(invite, user):
        return None, "This invite is reserved for a different email address."

    invite.user_id = user.id
    invite.accepted_at = datetime.now(timezone.utc)
    db.session.add(invite)

    membership = SiteMember.query.filter_by(
        site_id=invite.site_id, user_id=user.id
    ).first()
    if membership is None:
        membership = SiteMember(
            site_id=invite.site_id,
            user_id=user.id,
            role="viewer",
            invited_by=invite.invited_by,
        )
        db.session.add(membership)

    db.session.commit()
    return membership, None


def deploy_directory(site, directory, deployed_by, commit_message=None):
    """Upload every file under `directory` and make it the live deployment.

    Returns:
        Deployment: the new, active deployment row
    """
    deployment = Deployment(
        site_id=site.id,
        storage_path="",
        status="processing",
        deployed_by=deployed_by.id,
        commit_message=commit_message,
    )
    db.session.add(deployment)
    db.session.flush()
    deployment.storage_path = deployment_prefix(site.id, deployment.id)
    db.session.commit()

    file_count = 0
    total_size = 0
    try:
        for root, _dirs, files in os.walk(directory):
            for filename in sorted(files):
                full_path = os.path.join(root, filename)
                rel_path = os.path.relpath(full_path, directory).replace(os.sep, "/")
                with open(full_path, "rb") as f:
                    data = f.read()
                total_size += storage_service.put_object(
                    deployment_key(site.id, deployment.id, rel_path), data
                )
                file_count += 1
    except (OSError, storage_service.StorageError):
        deployment.status = "failed"
        deployment.finished_at = datetime.now(timezone.utc)
        db.session.commit()
        logger.exception(f"Deployment {deployment.id} failed for {site.subdomain}")
        raise

    deployment.status = "live"
    deployment.file_count = file_count
    deployment.total_size = total_size
    deployment.finished_at = datetime.now(timezone.utc)
    site.active_deployment_id = deployment.id
    db.session.commit()

    logger.info(
        f"Deployed {file_count} files ({total_size} bytes) to {site.subdomain}"
    )
    return deployment


def delete_site(site):
    """Delete a site, its access rows, and its stored files."""
    site_id = site.id
    prefixes = [d.storage_path for d in site.deployments if d.storage_path]

    site.active_deployment_id = None
    db.session.flush()
    db.session.delete(site)
    db.session.commit()

    for prefix in prefixes:
        storage_service.delete_prefix(prefix)
    logger.info(f"Deleted site {site_id}")
