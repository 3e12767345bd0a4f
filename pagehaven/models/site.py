"""Site models.

- Site: a hosted static bundle reachable at <subdomain>.<SITES_DOMAIN>
  (or a custom domain). The subdomain never changes after creation.
- SiteAccess: one row per site, controls who may view it.
- SiteMember: users with standing access (and the owner's team).
- SiteInvite: visitor invites for private sites, pending until accepted.

Every child row cascades on site deletion.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from pagehaven.extensions import db


class Site(db.Model):
    __tablename__ = "sites"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    subdomain = db.Column(db.String(63), unique=True, nullable=False, index=True)
    custom_domain = db.Column(db.String(255), unique=True, nullable=True)
    description = db.Column(db.Text, nullable=True)
    owner_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    active_deployment_id = db.Column(
        db.String(36),
        db.ForeignKey("deployments.id", use_alter=True, name="fk_sites_active_deployment_id"),
        nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    owner = db.relationship("User", back_populates="owned_sites")
    access = db.relationship(
        "SiteAccess",
        back_populates="site",
        uselist=False,
        cascade="all, delete-orphan",
    )
    members = db.relationship(
        "SiteMember",
        back_populates="site",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    invites = db.relationship(
        "SiteInvite",
        back_populates="site",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    deployments = db.relationship(
        "Deployment",
        back_populates="site",
        foreign_keys="Deployment.site_id",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    active_deployment = db.relationship(
        "Deployment", foreign_keys=[active_deployment_id], post_update=True
    )

    @validates("subdomain")
    def _validate_subdomain(self, key, value):
        value = value.lower().strip()
        if self.subdomain is not None and value != self.subdomain:
            raise ValueError("A site's subdomain cannot be changed.")
        return value

    def __repr__(self):
        return f"<Site {self.subdomain}>"


class SiteAccess(db.Model):
    __tablename__ = "site_access"

    ACCESS_TYPES = ["public", "password", "private", "owner_only"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    access_type = db.Column(
        db.String(20), default="public", nullable=False
    )  # public | password | private | owner_only
    password_hash = db.Column(
        db.String(255), nullable=True
    )  # only for password sites; the gate cookie carries this value
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    site = db.relationship("Site", back_populates="access")

    @validates("access_type")
    def _validate_access_type(self, key, value):
        if value not in self.ACCESS_TYPES:
            raise ValueError(f"Unknown access type: {value!r}")
        return value

    def __repr__(self):
        return f"<SiteAccess site={self.site_id} ({self.access_type})>"


class SiteMember(db.Model):
    __tablename__ = "site_members"

    ROLES = ["owner", "admin", "editor", "viewer"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    role = db.Column(db.String(20), default="viewer", nullable=False)
    invited_by = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint("site_id", "user_id", name="uq_site_member"),
    )

    # --- Relationships ---
    site = db.relationship("Site", back_populates="members")
    user = db.relationship(
        "User", foreign_keys=[user_id], back_populates="site_memberships"
    )

    def __repr__(self):
        return f"<SiteMember user={self.user_id} site={self.site_id}>"


class SiteInvite(db.Model):
    __tablename__ = "site_invites"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    email = db.Column(db.String(255), nullable=False)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # set once the invitee has an account
    invited_by = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    expires_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # null = never expires
    accepted_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # set when the invite turns into a membership
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    site = db.relationship("Site", back_populates="invites")

    @validates("email")
    def _normalize_email(self, key, value):
        return value.lower().strip()

    @property
    def is_expired(self):
        """Check if the invite has expired."""
        if self.expires_at is None:
            return False
        expires = self.expires_at
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) > expires

    @property
    def is_accepted(self):
        return self.accepted_at is not None

    @property
    def is_pending(self):
        """Neither accepted nor expired."""
        return not self.is_accepted and not self.is_expired

    def __repr__(self):
        return f"<SiteInvite {self.email} site={self.site_id}>"
