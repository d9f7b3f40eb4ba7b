"""Content fingerprints of the configuration payload.

The convergence trigger compares these against the last successful run to
decide whether the playbook has to run again.
"""

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_SKIPPED_NAMES = {".DS_Store", "__pycache__", ".git"}


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def tracked_files(ansible_dir: Path, playbook: str, roles_dirs: list[str]) -> list[Path]:
    """Playbook plus every regular file under the role directories, sorted."""
    ansible_dir = Path(ansible_dir)
    files = [ansible_dir / playbook]
    for roles_dir in roles_dirs:
        root = ansible_dir / roles_dir
        if not root.is_dir():
            continue
        for path in root.rglob("*"):
            if path.is_file() and not _SKIPPED_NAMES.intersection(path.relative_to(root).parts):
                files.append(path)
    return sorted(set(files))


def compute_fingerprints(ansible_dir: Path, playbook: str, roles_dirs: list[str]) -> dict[str, str]:
    """
    Hash the tracked configuration payload.

    Args:
        ansible_dir: Directory holding the playbook and roles
        playbook: Playbook path relative to ansible_dir
        roles_dirs: Role directories relative to ansible_dir

    Returns:
        dict: POSIX path relative to ansible_dir -> SHA-256 hex digest.
        A missing playbook is simply absent from the map.
    """
    ansible_dir = Path(ansible_dir)
    fingerprints = {}
    for path in tracked_files(ansible_dir, playbook, roles_dirs):
        if not path.is_file():
            continue
        fingerprints[path.relative_to(ansible_dir).as_posix()] = file_sha256(path)
    logger.debug(f"Fingerprinted {len(fingerprints)} file(s) under {ansible_dir}")
    return fingerprints


__all__ = ["compute_fingerprints", "file_sha256", "tracked_files"]
