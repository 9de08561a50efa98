"""
JSON loader for harvest targets and their site profiles.
"""

from __future__ import annotations

import json

from harvester.config import resolve_project_path
from harvester.domain.harvest import FieldSelector, SiteProfile, Target

FIELD_KINDS = {"text", "attr", "list", "join", "split"}


def load_targets(*, config_path: str, include_disabled: bool = False) -> list[Target]:
    """
    Load targets from a JSON file of `profiles` and `targets`.

    Entries with a missing name or URL are ignored; a target that names an
    unknown profile is a configuration error.
    """

    path = resolve_project_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Target config file not found: {path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw_data, dict):
        raise ValueError("Invalid target config: top level must be an object.")

    profiles = _load_profiles(raw_data.get("profiles", []))
    entries = raw_data.get("targets", [])
    if not isinstance(entries, list):
        raise ValueError("Invalid target config: 'targets' must be a list.")

    parsed: list[Target] = []
    seen_names: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue

        name = str(entry.get("name", "")).strip()
        seed_url = str(entry.get("seed_url", "")).strip()
        if not name or not seed_url:
            continue
        if name in seen_names:
            raise ValueError(f"Duplicate target name: {name}")

        profile_name = str(entry.get("profile", "")).strip()
        profile = profiles.get(profile_name)
        if profile is None:
            raise ValueError(f"Target '{name}' references unknown profile '{profile_name}'.")

        target = Target(
            name=name,
            seed_url=seed_url,
            profile=profile,
            start_page=max(1, _optional_int(entry.get("start_page")) or 1),
            page_limit=_optional_int(entry.get("page_limit")),
            enabled=_optional_bool(entry.get("enabled"), True),
        )
        seen_names.add(name)
        if target.enabled or include_disabled:
            parsed.append(target)

    return parsed


def _load_profiles(entries: object) -> dict[str, SiteProfile]:
    if not isinstance(entries, list):
        raise ValueError("Invalid target config: 'profiles' must be a list.")

    profiles: dict[str, SiteProfile] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name", "")).strip()
        base_url = str(entry.get("base_url", "")).strip()
        listing_selector = str(entry.get("listing_selector", "")).strip()
        if not name or not base_url or not listing_selector:
            continue

        profiles[name] = SiteProfile(
            name=name,
            base_url=base_url.rstrip("/"),
            listing_selector=listing_selector,
            fields=_normalize_fields(entry.get("fields", [])),
            required_fields=_normalize_names(entry.get("required_fields", [])),
            pagination_selector=_optional_str(entry.get("pagination_selector")),
            ready_selector=_optional_str(entry.get("ready_selector")),
        )
    return profiles


def _normalize_fields(fields: object) -> tuple[FieldSelector, ...]:
    if not isinstance(fields, list):
        return ()

    normalized: list[FieldSelector] = []
    for entry in fields:
        if not isinstance(entry, dict):
            continue
        name = _optional_str(entry.get("name"))
        selector = _optional_str(entry.get("selector"))
        if name is None or selector is None:
            continue
        kind = (_optional_str(entry.get("kind")) or "text").lower()
        if kind not in FIELD_KINDS:
            raise ValueError(f"Field '{name}' has unsupported kind '{kind}'.")
        if kind == "attr" and not _optional_str(entry.get("attribute")):
            raise ValueError(f"Field '{name}' of kind 'attr' needs an 'attribute'.")

        separator = entry.get("separator")
        normalized.append(
            FieldSelector(
                name=name,
                selector=selector,
                kind=kind,
                attribute=_optional_str(entry.get("attribute")),
                exclude_class=_optional_str(entry.get("exclude_class")),
                separator=separator if isinstance(separator, str) and separator else None,
                split_into=_normalize_names(entry.get("split_into", [])),
            )
        )
    return tuple(normalized)


def _normalize_names(values: object) -> tuple[str, ...]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return ()
    return tuple(item.strip() for item in values if isinstance(item, str) and item.strip())


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default
