import os
import logging

import click
from flask import Flask, g, render_template
from werkzeug.security import generate_password_hash

from pagehaven.config import config_by_name
from pagehaven.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from pagehaven import models  # noqa: F401

    # --- Site-host middleware (hosted sites are answered before routing) ---
    from pagehaven.middleware.site_host import init_site_host_middleware
    init_site_host_middleware(app)

    # --- Register blueprints ---
    from pagehaven.blueprints.auth import auth_bp
    from pagehaven.blueprints.gate import gate_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(gate_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        """Landing page of the web app."""
        return render_template("index.html")

    # --- Error handlers ---
    @app.errorhandler(403)
    def forbidden(e):
        return render_template("errors/403.html"), 403

    @app.errorhandler(404)
    def not_found(e):
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def server_error(e):
        return render_template("errors/500.html"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every web app response.

        Hosted-site responses only get nosniff (set by the dispatcher);
        framing and CSP are the site author's business.
        """
        if g.get("site_host"):
            return response
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=()"
        )
        # Content Security Policy
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; "
            "base-uri 'self'; "
            "form-action 'self'; "
            "frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    from pagehaven.models.site import Site
    from pagehaven.models.user import User
    from pagehaven.services import site_service

    def _get_site(subdomain):
        site = Site.query.filter_by(subdomain=subdomain.lower()).first()
        if site is None:
            raise click.ClickException(f"No site with subdomain {subdomain!r}")
        return site

    def _get_user(email):
        user = User.query.filter_by(email=email.lower().strip()).first()
        if user is None:
            raise click.ClickException(f"No user with email {email!r}")
        return user

    @app.cli.command("create-user")
    @click.option("--email", required=True, help="Login email")
    @click.option("--password", required=True, help="Login password")
    @click.option("--name", "full_name", default=None, help="Display name")
    def create_user(email, password, full_name):
        """Create a user account."""
        email = email.lower().strip()
        if User.query.filter_by(email=email).first():
            raise click.ClickException(f"User already exists: {email}")
        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name=full_name,
        )
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created user: {email} (id: {user.id})")

    @app.cli.command("create-site")
    @click.argument("subdomain")
    @click.option("--owner", "owner_email", required=True, help="Owner email")
    @click.option("--name", default=None, help="Display name (defaults to subdomain)")
    @click.option("--custom-domain", default=None, help="Optional custom domain")
    def create_site(subdomain, owner_email, name, custom_domain):
        """Create a public site.

        Usage:
            flask create-site docs --owner me@example.com
        """
        owner = _get_user(owner_email)
        if Site.query.filter_by(subdomain=subdomain.lower()).first():
            raise click.ClickException(f"Subdomain already taken: {subdomain}")
        site = site_service.create_site(
            owner, name or subdomain, subdomain, custom_domain=custom_domain
        )
        click.echo(f"Created site: {site.subdomain} (id: {site.id})")

    @app.cli.command("set-access")
    @click.argument("subdomain")
    @click.argument(
        "access_type",
        type=click.Choice(["public", "password", "private", "owner_only"]),
    )
    @click.option("--password", default=None, help="Required for password sites")
    def set_access(subdomain, access_type, password):
        """Change who may view a site.

        Usage:
            flask set-access docs password --password s3cret
            flask set-access docs private
        """
        site = _get_site(subdomain)
        try:
            site_service.set_access(site, access_type, password=password)
        except ValueError as e:
            raise click.ClickException(str(e))
        click.echo(f"{site.subdomain}: access is now {access_type}")

    @app.cli.command("add-member")
    @click.argument("subdomain")
    @click.argument("email")
    @click.option(
        "--role",
        default="viewer",
        type=click.Choice(["owner", "admin", "editor", "viewer"]),
    )
    def add_member(subdomain, email, role):
        """Give a user standing access to a site."""
        site = _get_site(subdomain)
        user = _get_user(email)
        site_service.add_member(site, user, role=role)
        click.echo(f"{user.email} is now a {role} of {site.subdomain}")

    @app.cli.command("invite")
    @click.argument("subdomain")
    @click.argument("email")
    @click.option("--invited-by", "inviter_email", default=None, help="Defaults to the owner")
    @click.option("--expires-days", default=30, show_default=True, type=int)
    def invite(subdomain, email, inviter_email, expires_days):
        """Invite a visitor to a private site."""
        site = _get_site(subdomain)
        inviter = _get_user(inviter_email) if inviter_email else site.owner
        existing = User.query.filter_by(email=email.lower().strip()).first()
        invite_row = site_service.invite_visitor(
            site, email, inviter, user=existing, expires_days=expires_days
        )
        click.echo(f"Invited {invite_row.email} to {site.subdomain}")

    @app.cli.command("deploy")
    @click.argument("subdomain")
    @click.argument(
        "directory",
        type=click.Path(exists=True, file_okay=False, dir_okay=True),
    )
    @click.option("--as", "deployer_email", default=None, help="Defaults to the owner")
    @click.option("--message", default=None, help="Deployment note")
    def deploy(subdomain, directory, deployer_email, message):
        """Upload a directory of static files and make it live.

        Usage:
            flask deploy docs ./dist
        """
        site = _get_site(subdomain)
        deployer = _get_user(deployer_email) if deployer_email else site.owner
        deployment = site_service.deploy_directory(
            site, directory, deployer, commit_message=message
        )
        click.echo(
            f"Deployed {deployment.file_count} files to {site.subdomain} "
            f"(deployment {deployment.id})"
        )

    @app.cli.command("seed-demo")
    @click.option("--email", default="owner@pagehaven.local", help="Owner email")
    @click.option("--password", default="owner123", help="Owner password")
    def seed_demo(email, password):
        """Create a demo owner and one site per access type.

        Usage:
            flask seed-demo
        """
        owner = User.query.filter_by(email=email).first()
        if owner is None:
            owner = User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name="Demo Owner",
            )
            db.session.add(owner)
            db.session.commit()
            click.echo(f"Created owner: {email}")

        for access_type in ("public", "password", "private", "owner_only"):
            subdomain = f"demo-{access_type.replace('_', '-')}"
            site = Site.query.filter_by(subdomain=subdomain).first()
            if site is None:
                site = site_service.create_site(owner, f"Demo ({access_type})", subdomain)
            site_service.set_access(
                site,
                access_type,
                password="demo" if access_type == "password" else None,
            )

        sites_domain = app.config["SITES_DOMAIN"]
        click.echo("")
        click.echo("=" * 60)
        click.echo("Demo data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Owner:     {email} / {password}")
        for access_type in ("public", "password", "private", "owner_only"):
            click.echo(f"  Site:      demo-{access_type.replace('_', '-')}.{sites_domain}")
        click.echo("  Password site password: demo")
        click.echo("  Deploy files with: flask deploy <subdomain> <directory>")
        click.echo("=" * 60)
