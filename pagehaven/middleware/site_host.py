"""Site-host middleware — serves hosted sites before normal routing.

Runs before every request. A request addressed to the web app's own host
(WEB_BASE_URL) falls through to the blueprints; any other host that is a
subdomain of SITES_DOMAIN or a registered custom domain is handed to the
RequestDispatcher and answered here.

Visitor identity comes from the Flask-Login session. For it to reach
site subdomains, SESSION_COOKIE_DOMAIN must cover SITES_DOMAIN.

Gate redirects carry the path the visitor asked for (`redirect=%2Fdocs`).
The site's origin is remembered in the shared session under GATE_ORIGIN_KEY
so the gate pages can send the visitor back to the right host.
"""

import functools
import logging
from urllib.parse import urlsplit

from flask import Response, current_app, g, jsonify, request, session
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from pagehaven.extensions import db
from pagehaven.services import site_service, storage_service
from pagehaven.services.access_service import Identity
from pagehaven.services.dispatch_service import RequestDispatcher, SiteRequest

logger = logging.getLogger(__name__)

GATE_ORIGIN_KEY = "gate_origin"


def build_dispatcher(app):
    """Create the dispatcher from app config."""
    return RequestDispatcher(
        resolve_site=functools.partial(
            site_service.resolve_site, sites_domain=app.config["SITES_DOMAIN"]
        ),
        fetch_object=storage_service.get_object,
        web_base_url=app.config["WEB_BASE_URL"],
        default_cache_control=app.config["STATIC_CACHE_CONTROL"],
        password_cookie_max_age=app.config["PASSWORD_COOKIE_MAX_AGE"],
    )


def _web_hostname(app):
    return (urlsplit(app.config["WEB_BASE_URL"]).hostname or "").lower()


def _current_identity():
    if current_user.is_authenticated:
        return Identity(user_id=current_user.id, email=current_user.email)
    return None


def _request_target():
    """Path plus raw query string, e.g. /docs?page=2."""
    if request.query_string:
        return f"{request.path}?{request.query_string.decode('latin-1')}"
    return request.path


def _wants_json():
    best = request.accept_mimetypes.best_match(["text/html", "application/json"])
    return best == "application/json"


def to_site_request():
    """Adapt the current Flask request."""
    return SiteRequest(
        host=request.host,
        path=request.path,
        url=_request_target(),
        query=request.args.to_dict(),
        cookies=dict(request.cookies),
        identity=_current_identity(),
        wants_json=_wants_json(),
    )


def _is_gate_redirect(site_response):
    gate_prefix = f"{current_app.config['WEB_BASE_URL'].rstrip('/')}/gate/"
    location = site_response.headers.get("Location", "")
    return site_response.status == 302 and location.startswith(gate_prefix)


def to_flask_response(site_response):
    response = Response(
        site_response.body,
        status=site_response.status,
        headers=site_response.headers,
    )
    secure = not current_app.debug
    for name, value, max_age in site_response.cookies:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path="/",
            secure=secure,
            httponly=True,
            samesite="Lax",
        )
    return response


def serve_site_host():
    """Before-request hook: answer hosted-site requests.

    Returns None for web app requests so normal routing continues.
    """
    hostname, _ = site_service.split_host(request.host)
    if hostname == _web_hostname(current_app):
        return None
    if not site_service.is_site_host(hostname, current_app.config["SITES_DOMAIN"]):
        return None

    g.site_host = True
    if request.method not in ("GET", "HEAD"):
        return jsonify({"error": "Method not allowed"}), 405

    dispatcher = current_app.extensions["pagehaven.dispatcher"]
    try:
        site_response = dispatcher.dispatch(to_site_request())
    except (storage_service.StorageError, SQLAlchemyError):
        db.session.rollback()
        logger.exception(f"Upstream failure serving {hostname}{request.path}")
        return jsonify({"error": "Upstream failure"}), 502

    if _is_gate_redirect(site_response):
        session[GATE_ORIGIN_KEY] = request.host_url.rstrip("/")
    return to_flask_response(site_response)


def init_site_host_middleware(app):
    """Build the dispatcher and register the hook, ahead of other hooks."""
    app.extensions["pagehaven.dispatcher"] = build_dispatcher(app)
    app.before_request_funcs.setdefault(None, []).insert(0, serve_site_host)
