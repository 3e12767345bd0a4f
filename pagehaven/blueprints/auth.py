"""Auth blueprint — /auth/*

Email + password login and logout for site owners and visitors. The
session it creates is what the site host reads as the visitor identity.
"""

from flask import (
    Blueprint,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_user, logout_user
from werkzeug.security import check_password_hash

from pagehaven.extensions import limiter
from pagehaven.models.user import User
from pagehaven.services import site_service

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _next_url(candidate, default="/"):
    """Only relative paths, the web app and hosted sites (no open redirect)."""
    if site_service.is_safe_redirect(
        candidate,
        current_app.config["WEB_BASE_URL"],
        current_app.config["SITES_DOMAIN"],
    ):
        return candidate
    return default


# ──────────────────────────────────────────────
# GET/POST /auth/login?next=<url>
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["GET", "POST"])
@limiter.limit("15 per minute", methods=["POST"])
def login():
    """Standard email + password login.

    After login, redirects to the `next` query param, which for gated
    sites is the page the visitor originally asked for.
    """
    if current_user.is_authenticated:
        return redirect(_next_url(request.args.get("next", "")))

    if request.method == "POST":
        email = request.form.get("email", "").lower().strip()
        password = request.form.get("password", "")
        remember = bool(request.form.get("remember"))
        next_field = request.form.get("next", "")

        if not email or not password:
            flash("Email and password are required.", "error")
            return render_template("auth/login.html", email=email, next_url=next_field)

        user = User.query.filter_by(email=email).first()

        if user is None or not check_password_hash(user.password_hash, password):
            flash("Invalid email or password.", "error")
            return render_template("auth/login.html", email=email, next_url=next_field)

        if not user.is_active:
            flash("Your account has been deactivated.", "error")
            return render_template("auth/login.html", email=email, next_url=next_field)

        login_user(user, remember=remember)

        flash("Logged in successfully.", "success")
        return redirect(_next_url(next_field or request.args.get("next", "")))

    # GET — render login form
    return render_template(
        "auth/login.html",
        next_url=request.args.get("next", ""),
    )


# ──────────────────────────────────────────────
# GET /auth/logout?next=<url>
# ──────────────────────────────────────────────

@auth_bp.route("/logout")
def logout():
    """Log out, then go to `next` (defaults to the login page)."""
    logout_user()
    flash("You have been logged out.", "info")
    return redirect(_next_url(request.args.get("next", ""), url_for("auth.login")))
