from __future__ import annotations

from pathlib import Path


class PathSafetyError(ValueError):
    pass


def validate_storage_key(raw_key: str) -> Path:
    if not raw_key or not raw_key.strip():
        raise PathSafetyError("Storage key cannot be blank")
    if raw_key.startswith("/"):
        raise PathSafetyError("Storage key must be relative to the assets root")
    if ".." in Path(raw_key).parts:
        raise PathSafetyError("Path traversal is not allowed")
    if "~" in raw_key:
        raise PathSafetyError("Home expansion is not allowed")
    if "$" in raw_key:
        raise PathSafetyError("Environment variable expansion is not allowed")
    return Path(raw_key)


def resolve_under_root(root: Path, raw_key: str) -> Path:
    rel = validate_storage_key(raw_key)
    resolved_root = root.resolve(strict=False)
    candidate = (resolved_root / rel).resolve(strict=False)

    if resolved_root in candidate.parents:
        return candidate

    raise PathSafetyError("Storage key escapes assets root")
