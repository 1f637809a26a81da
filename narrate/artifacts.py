"""Output directory management and JSON project artifacts."""

import json
import logging
import os
import re
import shutil
import time

from narrate.constants import OUTPUT_DIR

logger = logging.getLogger(__name__)

WRITE_RETRIES = 3

# Invalidation map: setting key → list of subdirs to delete
INVALIDATION_MAP = {
    "voice": ["final"],
    "speed": ["final"],
    "quality": ["final"],
    "max-length": ["final"],
    "concurrency": [],
    "timeout": [],
    "partial": [],
    "provider": ["final"],
}

SUBDIRS = ["final"]


def slug_from_path(text_path: str) -> str:
    """Convert input filename to output directory slug.

    "Deep Sea Notes.txt" → "deep_sea_notes"
    "/path/to/The Open Window.txt" → "the_open_window"
    """
    basename = os.path.splitext(os.path.basename(text_path))[0]
    # Replace non-alphanumeric with underscore, collapse multiples, strip edges
    slug = re.sub(r"[^a-zA-Z0-9]+", "_", basename).strip("_").lower()
    return slug


def init_output_dir(text_path: str, output_base: str = OUTPUT_DIR) -> str:
    """Create output/<slug>/ and its subdirectories.

    Returns the project directory path.
    """
    project_dir = os.path.join(output_base, slug_from_path(text_path))
    for subdir in SUBDIRS:
        os.makedirs(os.path.join(project_dir, subdir), exist_ok=True)
    return project_dir


def write_bytes(path: str, payload: bytes, retries: int = WRITE_RETRIES) -> str:
    """Write payload to path atomically, retrying transient OS errors.

    The file is written next to its target and moved into place, so a
    repeated write replaces rather than appends and readers never see a
    half-written file.
    """
    tmp_path = f"{path}.tmp"
    last_error = None
    for attempt in range(retries):
        try:
            with open(tmp_path, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, path)
            return path
        except OSError as e:
            last_error = e
            logger.warning("Write to %s failed (attempt %d/%d): %s", path, attempt + 1, retries, e)
            if attempt < retries - 1:
                time.sleep(0.1 * (2 ** attempt))
    raise last_error


def write_artifact(project_dir: str, filename: str, data: dict) -> str:
    """Write JSON artifact to project_dir/filename.

    Returns path to the written file.
    """
    path = os.path.join(project_dir, filename)
    return write_bytes(path, json.dumps(data, indent=2).encode("utf-8"))


def load_artifact(project_dir: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(project_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


def invalidate_downstream(project_dir: str, setting_key: str) -> list[str]:
    """Delete downstream subdirectories for a given setting change.

    Returns list of deleted subdirectory names.
    """
    deleted = []
    for subdir in INVALIDATION_MAP.get(setting_key, []):
        path = os.path.join(project_dir, subdir)
        if os.path.exists(path) and os.listdir(path):
            shutil.rmtree(path)
            os.makedirs(path, exist_ok=True)  # recreate empty dir
            deleted.append(subdir)
    return deleted


def get_project_status(project_dir: str) -> dict:
    """Return dict describing current state of each pipeline step."""
    status = {}

    script = load_artifact(project_dir, "script.json")
    if script:
        status["chunk"] = {"state": "done", "segments": len(script.get("segments", []))}
    else:
        status["chunk"] = {"state": "pending"}

    manifest = load_artifact(os.path.join(project_dir, "final"), "output.json")
    if manifest:
        stats = manifest.get("stats", {})
        failed = stats.get("failed_segments", [])
        status["generate"] = {
            "state": "partial" if failed else "done",
            "segments": stats.get("segments", 0),
            "failed": len(failed),
        }
        status["export"] = {"state": "done", "file": manifest.get("file", "")}
    else:
        status["generate"] = {"state": "pending"}
        status["export"] = {"state": "pending"}

    return status


def list_projects(output_base: str = OUTPUT_DIR) -> list[str]:
    """List all project slugs under the output directory.

    Returns sorted list of directory names that contain a script.json.
    """
    if not os.path.exists(output_base):
        return []
    projects = []
    for name in os.listdir(output_base):
        project_dir = os.path.join(output_base, name)
        if os.path.isdir(project_dir) and os.path.exists(os.path.join(project_dir, "script.json")):
            projects.append(name)
    return sorted(projects)
