"""Packaging and deployment helpers for hosted functions.

A hosted function is a directory with an `index.js` that exports a `schema`.
Deploying zips the directory, uploads the archive, starts the function and
then follows the rollout with `DeploymentMonitor`.
"""

import fnmatch
import logging
import os
import re
import tempfile
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import httpx

from .exceptions import McpBossError
from .monitor import Outcome

logger = logging.getLogger(__name__)

ZIP_EXCLUDE_PATTERNS = [".git/**", ".gitignore", "*.zip", ".DS_Store", "Thumbs.db"]

_ES_MODULE_SCHEMA = re.compile(r"export\s+const\s+schema\s*=", re.IGNORECASE)
_COMMONJS_SCHEMA = re.compile(r"module\.exports\.schema\s*=", re.IGNORECASE)


@dataclass
class IndexCheck:
    """Result of inspecting a function directory's index.js."""

    exists: bool
    has_schema: bool
    error: Optional[str] = None


def check_index_js(directory: str) -> IndexCheck:
    index_path = Path(directory) / "index.js"
    if not index_path.is_file():
        return IndexCheck(exists=False, has_schema=False, error="index.js file not found")

    try:
        content = index_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return IndexCheck(exists=True, has_schema=False, error=f"Failed to read index.js: {e}")

    has_schema = bool(_ES_MODULE_SCHEMA.search(content) or _COMMONJS_SCHEMA.search(content))
    return IndexCheck(
        exists=True,
        has_schema=has_schema,
        error=None if has_schema else (
            'index.js must export a schema (either "export const schema" or "module.exports.schema")'
        ),
    )


def _is_excluded(relative_path: str, patterns: List[str]) -> bool:
    name = os.path.basename(relative_path)
    for pattern in patterns:
        if pattern.endswith("/**"):
            prefix = pattern[:-3]
            if relative_path == prefix or relative_path.startswith(prefix + "/"):
                return True
        elif fnmatch.fnmatch(name, pattern):
            return True
    return False


def list_package_files(directory: str, exclude: Optional[List[str]] = None) -> List[str]:
    """Relative POSIX paths of every file that goes into the package."""
    patterns = ZIP_EXCLUDE_PATTERNS if exclude is None else exclude
    root = Path(directory)
    files = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if not _is_excluded(relative, patterns):
            files.append(relative)
    return files


def create_zip_from_directory(directory: str) -> str:
    """Zip `directory` into a temporary file and return its path."""
    zip_path = os.path.join(tempfile.gettempdir(), f"hosted-function-{uuid.uuid4()}.zip")
    files = list_package_files(directory)

    try:
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
            for relative in files:
                archive.write(os.path.join(directory, relative), arcname=relative)
    except Exception:
        cleanup_zip_file(zip_path)
        raise

    logger.debug(f"Packaged {len(files)} files from {directory} into {zip_path}")
    return zip_path


def cleanup_zip_file(zip_path: str) -> None:
    try:
        os.unlink(zip_path)
    except OSError:
        logger.warning(f"Could not clean up temporary ZIP file: {zip_path}")


async def resolve_pod_name(client: Any, function_id: str, outcome: Outcome) -> Optional[str]:
    """Pod name of the deployment, from the outcome or the status endpoint.

    The status lookup covers streams that ended before a `podInfo` event.
    """
    if outcome.pod_name:
        return outcome.pod_name

    try:
        status = await client.get_deployment_status(function_id)
    except (McpBossError, httpx.HTTPError) as e:
        logger.warning(f"Failed to look up deployment status for {function_id}: {e}")
        return None

    deployments = status.get("deployments") or []
    if deployments and isinstance(deployments[0], dict):
        return deployments[0].get("name")
    return None
