"""Access service — who may view a hosted site, and where to send them if not.

Pure decision logic, no database or request access. The site resolver
builds a SitePolicy snapshot; the request layer builds Credentials from
cookies and the login session. evaluate_access() turns the two into an
AccessCheckResult, and build_gate_redirect() turns a denial into the URL
of the matching gate page on the web app.

Decisions are computed per request and never cached: cookies and sessions
belong to the request, not the site.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote


class AccessType(str, enum.Enum):
    PUBLIC = "public"
    PASSWORD = "password"
    PRIVATE = "private"
    OWNER_ONLY = "owner_only"


class DenialReason(str, enum.Enum):
    PASSWORD_REQUIRED = "password_required"
    LOGIN_REQUIRED = "login_required"
    NOT_INVITED = "not_invited"
    NOT_MEMBER = "not_member"


@dataclass(frozen=True)
class Identity:
    """A verified visitor, as reported by the login session."""

    user_id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Credentials:
    password_cookie: Optional[str] = None
    identity: Optional[Identity] = None


@dataclass(frozen=True)
class InviteGrant:
    email: str
    user_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    accepted: bool = False

    def is_pending(self, now=None):
        if self.accepted:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now <= expires

    def matches(self, identity):
        if self.user_id is not None and self.user_id == identity.user_id:
            return True
        if identity.email and self.email:
            return self.email.lower() == identity.email.lower()
        return False


@dataclass(frozen=True)
class SitePolicy:
    """Everything the evaluator needs to know about one site."""

    site_id: str
    owner_id: str
    access_type: AccessType = AccessType.PUBLIC
    password_hash: Optional[str] = None
    member_ids: frozenset = field(default_factory=frozenset)
    invites: tuple = ()


@dataclass(frozen=True)
class AccessCheckResult:
    allowed: bool
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls):
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason):
        return cls(allowed=False, reason=DenialReason(reason))


# ──────────────────────────────────────────────
# Access decision
# ──────────────────────────────────────────────

def verify_password_cookie(password_cookie, stored_hash):
    """The gate cookie holds the stored hash itself, so compare exactly.

    A missing cookie or a missing/empty stored hash never verifies.
    """
    if not password_cookie or not stored_hash:
        return False
    return password_cookie == stored_hash


def _check_password(policy, credentials):
    if verify_password_cookie(credentials.password_cookie, policy.password_hash):
        return AccessCheckResult.allow()
    return AccessCheckResult.deny(DenialReason.PASSWORD_REQUIRED)


def _check_private(policy, credentials):
    identity = credentials.identity
    if identity is None:
        return AccessCheckResult.deny(DenialReason.LOGIN_REQUIRED)
    if identity.user_id in policy.member_ids:
        return AccessCheckResult.allow()
    # An invite only counts once accepted, which turns it into a membership.
    if any(i.is_pending() and i.matches(identity) for i in policy.invites):
        return AccessCheckResult.deny(DenialReason.NOT_INVITED)
    return AccessCheckResult.deny(DenialReason.NOT_MEMBER)


def _check_owner_only(policy, credentials):
    identity = credentials.identity
    if identity is None:
        return AccessCheckResult.deny(DenialReason.LOGIN_REQUIRED)
    if identity.user_id == policy.owner_id:
        return AccessCheckResult.allow()
    # No separate "not_owner" reason; members and invitees are refused too.
    return AccessCheckResult.deny(DenialReason.NOT_MEMBER)


def evaluate_access(policy, credentials):
    """Decide whether `credentials` may view the site behind `policy`.

    Args:
        policy: SitePolicy for the requested site
        credentials: Credentials built from the current request

    Returns:
        AccessCheckResult: allowed, or denied with a DenialReason

    Raises:
        ValueError: if the policy carries an access type this function
            does not handle.
    """
    access_type = AccessType(policy.access_type)

    if access_type is AccessType.PUBLIC:
        return AccessCheckResult.allow()
    elif access_type is AccessType.PASSWORD:
        return _check_password(policy, credentials)
    elif access_type is AccessType.PRIVATE:
        return _check_private(policy, credentials)
    elif access_type is AccessType.OWNER_ONLY:
        return _check_owner_only(policy, credentials)

    raise ValueError(f"Unhandled access type: {access_type!r}")


# ──────────────────────────────────────────────
# Denial → gate page / HTTP status
# ──────────────────────────────────────────────

def _encode_component(value):
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe="!~*'()")


def build_gate_redirect(reason, site_id, original_url, web_base_url):
    """Build the gate page URL for a denial.

    The original URL travels in a single `redirect` parameter so the
    gate page can send the visitor back once the gate is satisfied.
    Unknown reasons go to the generic denied page without a redirect.
    """
    web_base_url = web_base_url.rstrip("/")
    redirect = _encode_component(original_url)
    reason = getattr(reason, "value", reason)

    if reason == DenialReason.PASSWORD_REQUIRED.value:
        return (
            f"{web_base_url}/gate/password"
            f"?siteId={_encode_component(site_id)}&redirect={redirect}"
        )
    if reason == DenialReason.LOGIN_REQUIRED.value:
        return f"{web_base_url}/gate/login?redirect={redirect}"
    if reason in (DenialReason.NOT_INVITED.value, DenialReason.NOT_MEMBER.value):
        return f"{web_base_url}/gate/denied?reason={reason}&redirect={redirect}"
    return f"{web_base_url}/gate/denied?reason=unknown"


def access_denied_status(reason):
    """HTTP status + message for a denial, for callers that asked for JSON.

    Returns:
        tuple: (status_code, message)
    """
    reason = getattr(reason, "value", reason)
    if reason == DenialReason.PASSWORD_REQUIRED.value:
        return 401, "Password required"
    if reason == DenialReason.LOGIN_REQUIRED.value:
        return 401, "Login required"
    if reason == DenialReason.NOT_MEMBER.value:
        return 403, "You are not a member of this site"
    if reason == DenialReason.NOT_INVITED.value:
        return 403, "You are not invited to this site"
    return 403, "Access denied"
