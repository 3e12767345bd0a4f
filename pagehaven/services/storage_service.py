"""Storage service — site files in Supabase Storage (prod) or local disk (dev).

Supabase bucket: sites (must be created in the Supabase dashboard).
Local fallback: instance/storage/ directory (or LOCAL_STORAGE_DIR).

Keys look like sites/<site_id>/deployments/<deployment_id>/<path> and are
treated as opaque object names. The local backend maps them onto the
filesystem, so it refuses any key that would leave its root.

Reads return None for a missing object and raise StorageError for every
other failure; nothing here retries.
"""

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Optional

import requests
from flask import current_app
from werkzeug.security import safe_join

from pagehaven.services.file_service import content_type as infer_content_type

logger = logging.getLogger(__name__)

READ_TIMEOUT = 30


class StorageError(Exception):
    """Object storage could not answer (network, auth, 5xx...)."""


@dataclass
class StoredObject:
    body: bytes
    content_type: Optional[str] = None
    cache_control: Optional[str] = None


def _get_supabase_config():
    """Return Supabase storage config if available, else None."""
    url = current_app.config.get("SUPABASE_URL")
    key = current_app.config.get("SUPABASE_SERVICE_KEY")
    bucket = current_app.config.get("SUPABASE_STORAGE_BUCKET", "sites")

    if url and key:
        return {"url": url.rstrip("/"), "key": key, "bucket": bucket}
    return None


def _local_root():
    return current_app.config.get("LOCAL_STORAGE_DIR") or os.path.join(
        current_app.instance_path, "storage"
    )


def _local_path(key):
    """Filesystem path for a key, or None if the key escapes the root."""
    return safe_join(_local_root(), key)


# ──────────────────────────────────────────────
# Read
# ──────────────────────────────────────────────

def get_object(key):
    """Fetch one object.

    Args:
        key: full object key (see file_service.deployment_key)

    Returns:
        StoredObject, or None if there is no such object

    Raises:
        StorageError: storage is unreachable or answered with an error
    """
    supabase = _get_supabase_config()
    if supabase:
        return _get_supabase(supabase, key)
    return _get_local(key)


def _get_supabase(config, key):
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{key}"
    headers = {"Authorization": f"Bearer {config['key']}"}

    try:
        resp = requests.get(url, headers=headers, timeout=READ_TIMEOUT)
    except requests.RequestException as e:
        logger.error(f"Supabase read failed for {key}: {e}")
        raise StorageError("Object storage unreachable") from e

    if resp.status_code == 404 or _is_supabase_not_found(resp):
        return None

    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        logger.error(f"Supabase read failed for {key}: {e}")
        raise StorageError(f"Object storage returned {resp.status_code}") from e

    return StoredObject(
        body=resp.content,
        content_type=resp.headers.get("Content-Type"),
        cache_control=resp.headers.get("Cache-Control"),
    )


def _is_supabase_not_found(resp):
    """Supabase reports some missing objects as 400 {"statusCode": "404"}."""
    if resp.status_code != 400:
        return False
    try:
        payload = resp.json()
    except ValueError:
        return False
    return str(payload.get("statusCode")) == "404"


def _get_local(key):
    path = _local_path(key)
    if path is None:
        logger.warning(f"Rejected storage key outside root: {key!r}")
        return None
    if not os.path.isfile(path):
        return None

    try:
        with open(path, "rb") as f:
            body = f.read()
    except OSError as e:
        logger.error(f"Local read failed for {key}: {e}")
        raise StorageError("Local storage read failed") from e

    # Local disk keeps no HTTP metadata; the dispatcher infers the type.
    return StoredObject(body=body)


# ──────────────────────────────────────────────
# Write / delete (deployments)
# ──────────────────────────────────────────────

def put_object(key, data, content_type=None, cache_control=None):
    """Store one object, overwriting any existing one.

    Returns the number of bytes written.
    """
    content_type = content_type or infer_content_type(key)
    supabase = _get_supabase_config()
    if supabase:
        _put_supabase(supabase, key, data, content_type, cache_control)
    else:
        _put_local(key, data)
    return len(data)


def _put_supabase(config, key, data, content_type, cache_control):
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{key}"
    headers = {
        "Authorization": f"Bearer {config['key']}",
        "Content-Type": content_type,
        "x-upsert": "true",
    }
    if cache_control:
        headers["Cache-Control"] = cache_control

    try:
        resp = requests.post(url, headers=headers, data=data, timeout=READ_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Supabase upload failed for {key}: {e}")
        raise StorageError("Object storage upload failed") from e

    logger.info(f"Uploaded to Supabase: {key}")


def _put_local(key, data):
    path = _local_path(key)
    if path is None:
        raise StorageError(f"Refusing to write outside storage root: {key!r}")

    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)

    logger.info(f"Stored locally: {path}")


def delete_prefix(prefix):
    """Delete every object under a prefix. Best-effort, does not raise."""
    supabase = _get_supabase_config()
    if supabase:
        _delete_prefix_supabase(supabase, prefix)
        return

    path = _local_path(prefix)
    if path is None:
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to delete local prefix {prefix}: {e}")


def _delete_prefix_supabase(config, prefix):
    headers = {"Authorization": f"Bearer {config['key']}"}
    try:
        resp = requests.post(
            f"{config['url']}/storage/v1/object/list/{config['bucket']}",
            headers=headers,
            json={"prefix": prefix.rstrip("/"), "limit": 1000},
            timeout=READ_TIMEOUT,
        )
        resp.raise_for_status()
        names = [
            f"{prefix.rstrip('/')}/{item['name']}"
            for item in resp.json()
            if item.get("id")  # folders have no id
        ]
        if names:
            requests.delete(
                f"{config['url']}/storage/v1/object/{config['bucket']}",
                headers=headers,
                json={"prefixes": names},
                timeout=READ_TIMEOUT,
            )
    except Exception as e:
        logger.warning(f"Failed to delete from Supabase: {e}")
