"""File service — request path → storage key, file name → content type.

Both helpers are pure string functions. Storage keys are opaque object
names, not filesystem paths: normalize_path() only strips the leading
slash and fills in index.html for directory paths.
"""

DEFAULT_CONTENT_TYPE = "application/octet-stream"
INDEX_DOCUMENT = "index.html"

CONTENT_TYPES = {
    # HTML
    "html": "text/html",
    "htm": "text/html",
    # CSS / JavaScript
    "css": "text/css",
    "js": "application/javascript",
    "mjs": "application/javascript",
    "json": "application/json",
    # Images
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "ico": "image/x-icon",
    # Fonts
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
    "otf": "font/otf",
    "eot": "application/vnd.ms-fontobject",
    # Documents
    "pdf": "application/pdf",
    "xml": "application/xml",
    "txt": "text/plain",
    "md": "text/markdown",
    # Media
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "webm": "video/webm",
    # Archives / binaries
    "zip": "application/zip",
    "wasm": "application/wasm",
}


def content_type(path):
    """Infer a MIME type from the extension after the last dot.

    Case-insensitive; unknown or missing extensions give
    application/octet-stream.
    """
    if "." not in path:
        return DEFAULT_CONTENT_TYPE
    ext = path.rsplit(".", 1)[1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def normalize_path(request_path):
    """Map a request path to the storage key of the file to serve.

    "/" -> "index.html", "/about/" -> "about/index.html",
    "about" -> "about". Only one leading slash is removed.
    """
    key = request_path[1:] if request_path.startswith("/") else request_path
    if not key or key.endswith("/"):
        key = f"{key}{INDEX_DOCUMENT}"
    return key


def deployment_prefix(site_id, deployment_id):
    """Object-storage prefix holding every file of one deployment."""
    return f"sites/{site_id}/deployments/{deployment_id}/"


def deployment_key(site_id, deployment_id, file_path):
    """Full object key for a file inside a deployment."""
    return deployment_prefix(site_id, deployment_id) + file_path.lstrip("/")
