"""Dispatch service — one hosted-site request in, one response out.

RequestDispatcher runs the serving path for a single request:

    resolve site -> evaluate access -> serve file | redirect to gate

It works on plain SiteRequest / SiteResponse values so it can be driven
without an HTTP server; the site-host middleware adapts Flask's request
and response objects around it. Collaborators and settings are passed in
at construction time. The dispatcher keeps no state between requests.

Files are only fetched after access has been granted. Storage and
database errors propagate to the caller untouched.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from pagehaven.services.access_service import (
    Credentials,
    Identity,
    access_denied_status,
    build_gate_redirect,
    evaluate_access,
)
from pagehaven.services.file_service import (
    content_type as infer_content_type,
    deployment_key,
    normalize_path,
)

logger = logging.getLogger(__name__)

PASSWORD_TOKEN_PARAM = "__pagehaven_token"
NOT_FOUND_PAGE = "404.html"


def password_cookie_name(site_id):
    return f"site_password_{site_id}"


@dataclass
class SiteRequest:
    host: str
    path: str
    url: str = ""
    query: dict = field(default_factory=dict)
    cookies: dict = field(default_factory=dict)
    identity: Optional[Identity] = None
    # Accept: application/json callers get a status + JSON body, not a redirect
    wants_json: bool = False


@dataclass
class SiteResponse:
    status: int
    headers: dict = field(default_factory=dict)
    body: bytes = b""
    # (name, value, max_age) triples for the adapter to set
    cookies: list = field(default_factory=list)


def _json_response(status, payload):
    return SiteResponse(
        status=status,
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload).encode("utf-8"),
    )


def _strip_query_param(url, name):
    """Drop every `name=` pair from the query, leaving the rest byte-for-byte."""
    parts = urlsplit(url)
    kept = [
        pair
        for pair in parts.query.split("&")
        if pair and unquote_plus(pair.split("=", 1)[0]) != name
    ]
    return urlunsplit(parts._replace(query="&".join(kept)))


class RequestDispatcher:
    """Serve hosted-site requests.

    Args:
        resolve_site: callable(host) -> ResolvedSite | None
        fetch_object: callable(key) -> StoredObject | None
        web_base_url: base URL of the web app hosting the gate pages
        default_cache_control: Cache-Control for objects stored without one
        password_cookie_max_age: lifetime of the password gate cookie
    """

    def __init__(
        self,
        resolve_site,
        fetch_object,
        web_base_url,
        default_cache_control="public, max-age=3600",
        password_cookie_max_age=30 * 24 * 60 * 60,
    ):
        self.resolve_site = resolve_site
        self.fetch_object = fetch_object
        self.web_base_url = web_base_url
        self.default_cache_control = default_cache_control
        self.password_cookie_max_age = password_cookie_max_age

    def dispatch(self, request):
        site = self.resolve_site(request.host)
        if site is None:
            return _json_response(404, {"error": "Site not found"})

        if not site.active_deployment_id:
            return _json_response(404, {"error": "No deployment available"})

        token_response = self._exchange_password_token(site, request)
        if token_response is not None:
            return token_response

        cookie_name = password_cookie_name(site.site_id)
        credentials = Credentials(
            password_cookie=request.cookies.get(cookie_name),
            identity=request.identity,
        )
        result = evaluate_access(site.policy, credentials)

        if not result.allowed:
            logger.debug(
                f"Access to {site.subdomain} denied ({result.reason.value})"
            )
            location = build_gate_redirect(
                result.reason,
                site.site_id,
                request.url or request.path,
                self.web_base_url,
            )
            if request.wants_json:
                status, message = access_denied_status(result.reason)
                return _json_response(
                    status,
                    {"error": message, "reason": result.reason.value, "gate": location},
                )
            return SiteResponse(status=302, headers={"Location": location})

        return self._serve(site, request.path)

    def _exchange_password_token(self, site, request):
        """Turn ?__pagehaven_token=<hash> from the password gate into a cookie.

        Returns None when the request carries no valid token.
        """
        token = request.query.get(PASSWORD_TOKEN_PARAM)
        password_hash = site.policy.password_hash
        if not token or not password_hash or token != password_hash:
            return None

        clean_url = _strip_query_param(request.url or request.path, PASSWORD_TOKEN_PARAM)
        return SiteResponse(
            status=302,
            headers={"Location": clean_url},
            cookies=[
                (
                    password_cookie_name(site.site_id),
                    token,
                    self.password_cookie_max_age,
                )
            ],
        )

    def _serve(self, site, path):
        found = self._find(site, normalize_path(path))
        if found is not None:
            key, obj, fallback_type = found
            return self._file_response(200, key, obj, fallback_type)

        not_found = self.fetch_object(
            deployment_key(site.site_id, site.active_deployment_id, NOT_FOUND_PAGE)
        )
        if not_found is not None:
            response = self._file_response(404, NOT_FOUND_PAGE, not_found)
            response.headers["Cache-Control"] = "public, max-age=0"
            return response

        return _json_response(404, {"error": "File not found"})

    def _find(self, site, file_path):
        """Look up a file, then its clean-URL variants.

        Returns (path, StoredObject, forced_content_type) or None.
        """
        candidates = [
            (file_path, None),
            (f"{file_path}.html", "text/html"),
            (f"{file_path}/index.html", "text/html"),
        ]
        for candidate, forced_type in candidates:
            obj = self.fetch_object(
                deployment_key(site.site_id, site.active_deployment_id, candidate)
            )
            if obj is not None:
                return candidate, obj, forced_type
        return None

    def _file_response(self, status, path, obj, forced_type=None):
        headers = {
            "Content-Type": forced_type or obj.content_type or infer_content_type(path),
            "Cache-Control": obj.cache_control or self.default_cache_control,
            "X-Content-Type-Options": "nosniff",
        }
        return SiteResponse(status=status, headers=headers, body=obj.body)
