"""Identity repository adapter - fetches identity manifests plus their file sets.

References are local paths (resolved against the project root) or git URLs
with an optional ``#subfolder`` suffix. Git sources are shallow-cloned into a
cache directory keyed by a hash of the URL.
"""

import hashlib
import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from fleet.constants import IDENTITY_CACHE_DIR, IDENTITY_MANIFEST_FILES
from fleet.errors import IdentityNotFoundError, IdentityResolutionError, IdentityValidationError
from fleet.models.identity import IdentityManifest, IdentityResult

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120
SKIP_DIRS = {"node_modules", "__pycache__"}


def is_git_reference(reference: str) -> bool:
    return "://" in reference or reference.startswith("git@")


def split_reference(reference: str) -> Tuple[str, str]:
    """Split 'repo#sub/folder' into ('repo', 'sub/folder')."""
    location, _, subfolder = reference.partition("#")
    return location, subfolder.strip("/")


def _find_manifest_file(directory: Path) -> Optional[Path]:
    for name in IDENTITY_MANIFEST_FILES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def _read_file_set(directory: Path, manifest_file: Path) -> Dict[str, str]:
    files = {}
    for path in sorted(directory.rglob("*")):
        rel = path.relative_to(directory)
        if any(part.startswith(".") or part in SKIP_DIRS for part in rel.parts):
            continue
        if not path.is_file() or path == manifest_file:
            continue
        try:
            files[rel.as_posix()] = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug(f"Skipping binary identity file: {path}")
    return files


def load_identity_dir(directory: Path, reference: str) -> IdentityResult:
    """Load and validate an identity from a directory on disk."""
    if not directory.is_dir():
        raise IdentityNotFoundError(reference, f"directory not found: {directory}")

    manifest_file = _find_manifest_file(directory)
    if manifest_file is None:
        raise IdentityNotFoundError(
            reference, f"no {' or '.join(IDENTITY_MANIFEST_FILES)} in {directory}"
        )

    try:
        with open(manifest_file, "r", encoding="utf-8") as f:
            data = json.load(f) if manifest_file.suffix == ".json" else yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise IdentityValidationError(reference, f"cannot parse {manifest_file.name}: {e}") from e

    if not isinstance(data, dict):
        raise IdentityValidationError(reference, f"{manifest_file.name} must contain a mapping")

    try:
        manifest = IdentityManifest.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise IdentityValidationError(reference, problems) from e

    return IdentityResult(
        reference=reference,
        manifest=manifest,
        files=_read_file_set(directory, manifest_file),
    )


class IdentityAdapter:
    """Fetches identities by reference, caching results per instance."""

    def __init__(self, base_dir: Optional[Path] = None, cache_dir: Path = IDENTITY_CACHE_DIR):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.cache_dir = Path(cache_dir)
        self._cache: Dict[str, IdentityResult] = {}

    def fetch(self, reference: str) -> IdentityResult:
        """Fetch an identity.

        Raises:
            IdentityNotFoundError: the path or repository cannot be resolved
            IdentityValidationError: the manifest is malformed
        """
        cached = self._cache.get(reference)
        if cached is not None:
            return cached

        location, subfolder = split_reference(reference)
        if is_git_reference(location):
            root = self._sync_repo(location, reference)
        else:
            root = Path(location).expanduser()
            if not root.is_absolute():
                root = self.base_dir / root

        directory = root / subfolder if subfolder else root
        result = load_identity_dir(directory, reference)
        self._cache[reference] = result
        logger.info(f"Loaded identity '{result.manifest.name}' from {reference}")
        return result

    def _run_git(self, args: List[str], reference: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            raise IdentityResolutionError(reference, f"git {args[0]} timed out after {GIT_TIMEOUT}s") from e
        except FileNotFoundError as e:
            raise IdentityResolutionError(reference, "git is not installed") from e

    def _sync_repo(self, url: str, reference: str) -> Path:
        """Clone (or refresh) a repository into the cache and return its path."""
        dest = self.cache_dir / hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]

        if (dest / ".git").is_dir():
            result = self._run_git(["-C", str(dest), "pull", "--ff-only"], reference)
            if result.returncode == 0:
                logger.debug(f"Refreshed identity cache {dest}")
                return dest
            logger.warning(f"git pull failed for {url}, re-cloning: {result.stderr.strip()}")
            shutil.rmtree(dest, ignore_errors=True)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        result = self._run_git(["clone", "--depth", "1", url, str(dest)], reference)
        if result.returncode != 0:
            raise IdentityNotFoundError(reference, f"git clone failed: {result.stderr.strip()}")
        logger.info(f"Cloned {url} into {dest}")
        return dest


@dataclass
class DiscoveredIdentity:
    """An identity source found on disk under the project root."""

    reference: str
    manifest: IdentityManifest
    path: Path


def discover_identity_sources(root: Path, max_depth: int = 2) -> List[DiscoveredIdentity]:
    """Find identity directories under ``root`` (not ``root`` itself).

    Directories with an invalid manifest are logged and skipped.
    """
    root = Path(root)
    found: List[DiscoveredIdentity] = []

    def walk(directory: Path, depth: int) -> None:
        for child in sorted(directory.iterdir()):
            if not child.is_dir() or child.name.startswith(".") or child.name in SKIP_DIRS:
                continue
            if _find_manifest_file(child) is not None:
                reference = "./" + child.relative_to(root).as_posix()
                try:
                    result = load_identity_dir(child, reference)
                except IdentityResolutionError as e:
                    logger.warning(f"Skipping identity source: {e}")
                    continue
                found.append(DiscoveredIdentity(reference=reference, manifest=result.manifest, path=child))
            elif depth < max_depth:
                walk(child, depth + 1)

    if root.is_dir():
        walk(root, 1)
    logger.info(f"Discovered {len(found)} identity source(s) under {root}")
    return found
