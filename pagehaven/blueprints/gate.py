"""Gate blueprint — /gate/*

Interstitial pages a visitor lands on when a hosted site refuses them.
Every gate carries the original target in `redirect` and sends the visitor
back to it once the gate is satisfied. Relative targets are resolved
against the site the visitor came from (see middleware.site_host).

Route Map:
  GET/POST /gate/password?siteId=&redirect=  — password-protected sites
  GET      /gate/login?redirect=             — private / owner-only sites
  GET      /gate/denied?reason=&redirect=    — signed in, but not allowed
  POST     /gate/accept                      — accept a pending site invite
"""

import logging
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    session,
    url_for,
)
from flask_login import current_user, login_required

from pagehaven.extensions import db, limiter
from pagehaven.middleware.site_host import GATE_ORIGIN_KEY
from pagehaven.models.site import Site
from pagehaven.services import site_service
from pagehaven.services.dispatch_service import PASSWORD_TOKEN_PARAM

gate_bp = Blueprint("gate", __name__, url_prefix="/gate")

logger = logging.getLogger(__name__)

DENIAL_MESSAGES = {
    "not_member": "You are not a member of this site.",
    "not_invited": "You have been invited to this site, but the invite has not been accepted yet.",
    "unknown": "You do not have access to this site.",
}


def _is_relative(target):
    return target.startswith("/") and not target.startswith("//")


def _safe_redirect_target(target):
    """Return `target` if it is a safe post-gate destination, else None."""
    if site_service.is_safe_redirect(
        target,
        current_app.config["WEB_BASE_URL"],
        current_app.config["SITES_DOMAIN"],
    ):
        return target
    return None


def _site_origin():
    """Origin of the hosted site that sent the visitor here, if known and safe."""
    origin = session.get(GATE_ORIGIN_KEY)
    if origin and _safe_redirect_target(origin) and not _is_relative(origin):
        return origin
    return None


def _gate_target(target):
    """Resolve a relative `redirect` against the originating site."""
    origin = _site_origin()
    if target and _is_relative(target) and origin:
        target = urljoin(origin, target)
    return _safe_redirect_target(target)


def _with_token(url, token):
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query = [(k, v) for k, v in query if k != PASSWORD_TOKEN_PARAM]
    query.append((PASSWORD_TOKEN_PARAM, token))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _password_target(site, target):
    """Where the password gate may send the token: only the site's own hosts."""
    sites_domain = current_app.config["SITES_DOMAIN"]
    site_root = site_service.site_base_url(
        site, current_app.config["WEB_BASE_URL"], sites_domain
    )
    hostnames = site_service.site_hostnames(site, sites_domain)

    if _is_relative(target):
        origin = _site_origin()
        base = site_root
        if origin and (urlsplit(origin).hostname or "") in hostnames:
            base = origin
        target = urljoin(base, target)

    parts = urlsplit(target)
    if parts.scheme in ("http", "https") and (parts.hostname or "") in hostnames:
        return target
    return f"{site_root}/"


# ──────────────────────────────────────────────
# GET/POST /gate/password?siteId=<id>&redirect=<url>
# ──────────────────────────────────────────────

@gate_bp.route("/password", methods=["GET", "POST"])
@limiter.limit("10 per minute", methods=["POST"])
def password():
    """Password gate.

    GET: show the password form
    POST: check the password; on success redirect back to the site with
    the gate token, which the site host swaps for a cookie
    """
    site_id = request.values.get("siteId", "")
    site = db.session.get(Site, site_id) if site_id else None
    if site is None:
        return render_template("gate/denied.html", message=DENIAL_MESSAGES["unknown"]), 404

    target = _password_target(site, request.values.get("redirect", ""))

    if request.method == "POST":
        token = site_service.verify_site_password(site.id, request.form.get("password", ""))
        if token is None:
            logger.info(f"Wrong gate password for site {site.subdomain}")
            flash("Incorrect password.", "error")
            return render_template(
                "gate/password.html", site=site, site_id=site.id, redirect_url=target
            ), 401

        return redirect(_with_token(target, token))

    return render_template(
        "gate/password.html", site=site, site_id=site.id, redirect_url=target
    )


# ──────────────────────────────────────────────
# GET /gate/login?redirect=<url>
# ──────────────────────────────────────────────

@gate_bp.route("/login")
def login():
    """Login gate — sign in, then go back to the site."""
    target = _gate_target(request.args.get("redirect", "")) or "/"

    if current_user.is_authenticated:
        return redirect(target)

    return redirect(url_for("auth.login", next=target))


# ──────────────────────────────────────────────
# GET /gate/denied?reason=<reason>&redirect=<url>
# ──────────────────────────────────────────────

@gate_bp.route("/denied")
def denied():
    """Signed in but not allowed.

    Offers signing in as someone else, and accepting the invite when the
    visitor has a pending one.
    """
    reason = request.args.get("reason", "unknown")
    if reason not in DENIAL_MESSAGES:
        reason = "unknown"
    target = _gate_target(request.args.get("redirect", ""))

    switch_account_url = None
    if target:
        switch_account_url = url_for("auth.logout", next=url_for("gate.login", redirect=target))

    can_accept = False
    if reason == "not_invited" and target and current_user.is_authenticated:
        site = site_service.find_site(urlsplit(target).netloc)
        can_accept = bool(
            site and site_service.find_pending_invite(site.id, current_user)
        )

    return render_template(
        "gate/denied.html",
        reason=reason,
        message=DENIAL_MESSAGES[reason],
        redirect_url=target,
        switch_account_url=switch_account_url,
        can_accept=can_accept,
    ), 403


# ──────────────────────────────────────────────
# POST /gate/accept
# ──────────────────────────────────────────────

@gate_bp.route("/accept", methods=["POST"])
@login_required
def accept():
    """Accept the signed-in visitor's pending invite, then go to the site."""
    target = _safe_redirect_target(request.form.get("redirect", ""))
    site = site_service.find_site(urlsplit(target).netloc) if target else None
    invite = site_service.find_pending_invite(site.id, current_user) if site else None

    if invite is None:
        flash("There is no pending invite for this site.", "error")
        return redirect(url_for("gate.denied", reason="not_member", redirect=target or ""))

    _, error = site_service.accept_invite(invite, current_user._get_current_object())
    if error:
        flash(error, "error")
        return redirect(url_for("gate.denied", reason="not_member", redirect=target))

    logger.info(f"{current_user.email} accepted invite to {site.subdomain}")
    flash("Invite accepted.", "success")
    return redirect(target)
