"""
harvester/config.py

Environment-driven runtime settings for the harvesting pipeline.

Every tunable of the seed walker, extraction pool, enrichment stage and the
adapters they talk to is declared on one of the frozen dataclasses below and
read from the environment (or the project `.env` files) by the cached
`get_*_settings()` getters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from db.config import load_env_files

RESUME_POLICIES = {"config", "resume"}
CHECKPOINT_BACKENDS = {"file", "database"}
STAGES = ("seed", "extract", "enrich")

DEFAULT_USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a `|`-separated list from environment variables.
    """

    raw_value = _get_optional_str_env(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split("|") if item.strip())
    return items or default


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def resolve_project_path(raw_path: str) -> Path:
    """
    Resolve a configured path; relative paths are anchored at the project root.
    """

    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (project_root() / candidate).resolve()


@dataclass(frozen=True)
class BrowserSettings:
    """
    Headless browser sessions used for discovery, extraction and re-login.
    """

    headless: bool = True
    navigation_timeout_seconds: float = 45.0
    selector_timeout_seconds: float = 15.0
    viewport_width: int = 1366
    viewport_height: int = 768
    user_agents: tuple[str, ...] = DEFAULT_USER_AGENTS
    cookies_path: str = "data/cookies.json"
    block_markers: tuple[str, ...] = ("Access Denied", "Request unsuccessful")


@dataclass(frozen=True)
class SeedSettings:
    """
    Paginated discovery behaviour.

    `resume_policy` is either "config" (always start at the target's
    configured start page) or "resume" (continue after the checkpointed page).
    """

    resume_policy: str = "config"
    page_param: str = "page"
    navigation_retry_delay_seconds: float = 1.2
    pacing_min_seconds: float = 1.0
    pacing_max_seconds: float = 3.5
    max_consecutive_page_failures: int = 5
    probe_page_count: bool = True


@dataclass(frozen=True)
class PoolSettings:
    """
    Concurrent extraction pool sizing and pacing.
    """

    batch_size: int = 50
    max_concurrency: int = 8
    min_concurrency: int = 3
    per_session_memory_mb: int = 200
    cpu_multiplier: int = 2
    memory_pressure_percent: float = 85.0
    item_delay_seconds: float = 1.0
    progress_notification_interval: int = 10
    failure_screenshot_every: int = 5


@dataclass(frozen=True)
class EnrichmentSettings:
    """
    Lead API enrichment (contact numbers) behaviour.
    """

    api_base: str = "https://aqarmap.com.eg/api/v4/listing"
    lead_endpoint: str = "/lead"
    referer_template: str = "https://aqarmap.com.eg/ar/listing/{listing_id}/"
    listing_id_pattern: str = r"listing/(\d+)"
    contact_full_name: str = "Ahmed Ali"
    contact_email: str = "ahmed.ali@example.com"
    contact_phone: str = "01000000000"
    contact_country_code: str = "+20"
    lead_source: str = "ws-listing_details_fixed_buttons"
    phone_lead_type: int = 1
    whatsapp_lead_type: int = 11
    whatsapp_enabled: bool = True
    request_timeout_seconds: float = 30.0
    batch_size: int = 100
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    rate_limit_backoff_seconds: float = 3.0
    rate_limit_backoff_multiplier: float = 1.5
    rate_limit_backoff_cap_seconds: float = 30.0
    rate_limit_jitter_seconds: float = 3.0
    rotate_every: int = 8
    post_rotation_delay_seconds: float = 1.2
    delay_between_seconds: float = 1.0
    unauthorized_halt_threshold: int = 5
    progress_notification_interval: int = 25


@dataclass(frozen=True)
class IdentitySettings:
    """
    Egress identity rotation through a WireGuard interface.
    """

    enabled: bool = False
    interface: str = "wgcf"
    command_timeout_seconds: float = 30.0
    ip_echo_url: str = "https://api.ipify.org"
    ip_echo_timeout_seconds: float = 10.0
    settle_seconds: float = 2.0
    wait_for_change: bool = False
    change_timeout_seconds: float = 20.0
    change_poll_seconds: float = 2.0


@dataclass(frozen=True)
class CredentialSettings:
    """
    Authentication material storage and browser-driven refresh.
    """

    auth_path: str = "data/auth.json"
    login_url: str = "https://aqarmap.com.eg/ar/"
    api_url_fragment: str = "/api/"
    capture_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class NotificationSettings:
    """
    Operator notifications through the Telegram Bot API.
    """

    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    api_base: str = "https://api.telegram.org"
    parse_mode: str = "Markdown"
    timeout_seconds: float = 15.0
    max_retries: int = 2


@dataclass(frozen=True)
class CheckpointSettings:
    """
    Where pagination checkpoints are kept.
    """

    backend: str = "file"
    progress_path: str = "data/progress.json"


@dataclass(frozen=True)
class RunSettings:
    """
    Whole-run behaviour shared by every stage.
    """

    targets_path: str = "harvester/scraping/config/targets.json"
    stages: tuple[str, ...] = STAGES
    shutdown_grace_seconds: float = 5.0


@dataclass(frozen=True)
class HarvestSettings:
    """
    Aggregate of all harvesting settings groups.
    """

    browser: BrowserSettings = field(default_factory=BrowserSettings)
    seed: SeedSettings = field(default_factory=SeedSettings)
    pool: PoolSettings = field(default_factory=PoolSettings)
    enrichment: EnrichmentSettings = field(default_factory=EnrichmentSettings)
    identity: IdentitySettings = field(default_factory=IdentitySettings)
    credentials: CredentialSettings = field(default_factory=CredentialSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    checkpoints: CheckpointSettings = field(default_factory=CheckpointSettings)
    run: RunSettings = field(default_factory=RunSettings)


@lru_cache(maxsize=1)
def get_browser_settings() -> BrowserSettings:
    """
    Return cached browser settings from environment variables.
    """

    return BrowserSettings(
        headless=_get_bool_env("HARVEST_BROWSER_HEADLESS", True),
        navigation_timeout_seconds=max(
            5.0, _get_float_env("HARVEST_NAVIGATION_TIMEOUT_SECONDS", 45.0)
        ),
        selector_timeout_seconds=max(
            1.0, _get_float_env("HARVEST_SELECTOR_TIMEOUT_SECONDS", 15.0)
        ),
        viewport_width=max(320, _get_int_env("HARVEST_VIEWPORT_WIDTH", 1366)),
        viewport_height=max(320, _get_int_env("HARVEST_VIEWPORT_HEIGHT", 768)),
        user_agents=_get_list_env("HARVEST_USER_AGENTS", DEFAULT_USER_AGENTS),
        cookies_path=_get_str_env("HARVEST_COOKIES_PATH", "data/cookies.json"),
        block_markers=_get_list_env(
            "HARVEST_BLOCK_MARKERS",
            ("Access Denied", "Request unsuccessful"),
        ),
    )


@lru_cache(maxsize=1)
def get_seed_settings() -> SeedSettings:
    """
    Return cached discovery settings from environment variables.
    """

    resume_policy = _get_str_env("HARVEST_RESUME_POLICY", "config").lower()
    if resume_policy not in RESUME_POLICIES:
        resume_policy = "config"
    pacing_min = max(0.0, _get_float_env("HARVEST_SEED_PACING_MIN_SECONDS", 1.0))
    return SeedSettings(
        resume_policy=resume_policy,
        page_param=_get_str_env("HARVEST_SEED_PAGE_PARAM", "page"),
        navigation_retry_delay_seconds=max(
            0.0, _get_float_env("HARVEST_SEED_RETRY_DELAY_SECONDS", 1.2)
        ),
        pacing_min_seconds=pacing_min,
        pacing_max_seconds=max(
            pacing_min, _get_float_env("HARVEST_SEED_PACING_MAX_SECONDS", 3.5)
        ),
        max_consecutive_page_failures=max(
            1, _get_int_env("HARVEST_SEED_MAX_CONSECUTIVE_FAILURES", 5)
        ),
        probe_page_count=_get_bool_env("HARVEST_SEED_PROBE_PAGE_COUNT", True),
    )


@lru_cache(maxsize=1)
def get_pool_settings() -> PoolSettings:
    """
    Return cached extraction pool settings from environment variables.
    """

    min_concurrency = max(1, _get_int_env("HARVEST_POOL_MIN_CONCURRENCY", 3))
    return PoolSettings(
        batch_size=max(1, _get_int_env("HARVEST_POOL_BATCH_SIZE", 50)),
        max_concurrency=max(
            min_concurrency, _get_int_env("HARVEST_POOL_MAX_CONCURRENCY", 8)
        ),
        min_concurrency=min_concurrency,
        per_session_memory_mb=max(
            16, _get_int_env("HARVEST_POOL_SESSION_MEMORY_MB", 200)
        ),
        cpu_multiplier=max(1, _get_int_env("HARVEST_POOL_CPU_MULTIPLIER", 2)),
        memory_pressure_percent=min(
            99.0, max(10.0, _get_float_env("HARVEST_POOL_MEMORY_PRESSURE_PERCENT", 85.0))
        ),
        item_delay_seconds=max(0.0, _get_float_env("HARVEST_POOL_ITEM_DELAY_SECONDS", 1.0)),
        progress_notification_interval=max(
            1, _get_int_env("HARVEST_POOL_PROGRESS_EVERY", 10)
        ),
        failure_screenshot_every=max(
            1, _get_int_env("HARVEST_POOL_FAILURE_SCREENSHOT_EVERY", 5)
        ),
    )


@lru_cache(maxsize=1)
def get_enrichment_settings() -> EnrichmentSettings:
    """
    Return cached enrichment settings from environment variables.
    """

    defaults = EnrichmentSettings()
    return EnrichmentSettings(
        api_base=_get_str_env("HARVEST_LEAD_API_BASE", defaults.api_base).rstrip("/"),
        lead_endpoint=_get_str_env("HARVEST_LEAD_ENDPOINT", defaults.lead_endpoint),
        referer_template=_get_str_env("HARVEST_LEAD_REFERER_TEMPLATE", defaults.referer_template),
        listing_id_pattern=_get_str_env(
            "HARVEST_LISTING_ID_PATTERN", defaults.listing_id_pattern
        ),
        contact_full_name=_get_str_env("HARVEST_CONTACT_FULL_NAME", defaults.contact_full_name),
        contact_email=_get_str_env("HARVEST_CONTACT_EMAIL", defaults.contact_email),
        contact_phone=_get_str_env("HARVEST_CONTACT_PHONE", defaults.contact_phone),
        contact_country_code=_get_str_env(
            "HARVEST_CONTACT_COUNTRY_CODE", defaults.contact_country_code
        ),
        lead_source=_get_str_env("HARVEST_LEAD_SOURCE", defaults.lead_source),
        phone_lead_type=_get_int_env("HARVEST_PHONE_LEAD_TYPE", defaults.phone_lead_type),
        whatsapp_lead_type=_get_int_env(
            "HARVEST_WHATSAPP_LEAD_TYPE", defaults.whatsapp_lead_type
        ),
        whatsapp_enabled=_get_bool_env("HARVEST_WHATSAPP_ENABLED", True),
        request_timeout_seconds=max(
            1.0, _get_float_env("HARVEST_LEAD_TIMEOUT_SECONDS", 30.0)
        ),
        batch_size=max(1, _get_int_env("HARVEST_ENRICH_BATCH_SIZE", 100)),
        max_retries=max(1, _get_int_env("HARVEST_ENRICH_MAX_RETRIES", 3)),
        retry_base_delay_seconds=max(
            0.0, _get_float_env("HARVEST_ENRICH_RETRY_DELAY_SECONDS", 1.0)
        ),
        rate_limit_backoff_seconds=max(
            0.0, _get_float_env("HARVEST_RATE_LIMIT_BACKOFF_SECONDS", 3.0)
        ),
        rate_limit_backoff_multiplier=max(
            1.0, _get_float_env("HARVEST_RATE_LIMIT_BACKOFF_MULTIPLIER", 1.5)
        ),
        rate_limit_backoff_cap_seconds=max(
            0.0, _get_float_env("HARVEST_RATE_LIMIT_BACKOFF_CAP_SECONDS", 30.0)
        ),
        rate_limit_jitter_seconds=max(
            0.0, _get_float_env("HARVEST_RATE_LIMIT_JITTER_SECONDS", 3.0)
        ),
        rotate_every=max(1, _get_int_env("HARVEST_ROTATE_EVERY", 8)),
        post_rotation_delay_seconds=max(
            0.0, _get_float_env("HARVEST_POST_ROTATION_DELAY_SECONDS", 1.2)
        ),
        delay_between_seconds=max(
            0.0, _get_float_env("HARVEST_ENRICH_DELAY_BETWEEN_SECONDS", 1.0)
        ),
        unauthorized_halt_threshold=max(
            0, _get_int_env("HARVEST_UNAUTHORIZED_HALT_THRESHOLD", 5)
        ),
        progress_notification_interval=max(
            1, _get_int_env("HARVEST_ENRICH_PROGRESS_EVERY", 25)
        ),
    )


@lru_cache(maxsize=1)
def get_identity_settings() -> IdentitySettings:
    """
    Return cached identity rotation settings from environment variables.
    """

    return IdentitySettings(
        enabled=_get_bool_env("HARVEST_IDENTITY_ROTATION_ENABLED", False),
        interface=_get_str_env("HARVEST_WIREGUARD_INTERFACE", "wgcf"),
        command_timeout_seconds=max(
            1.0, _get_float_env("HARVEST_IDENTITY_COMMAND_TIMEOUT_SECONDS", 30.0)
        ),
        ip_echo_url=_get_str_env("HARVEST_IP_ECHO_URL", "https://api.ipify.org"),
        ip_echo_timeout_seconds=max(
            1.0, _get_float_env("HARVEST_IP_ECHO_TIMEOUT_SECONDS", 10.0)
        ),
        settle_seconds=max(0.0, _get_float_env("HARVEST_IDENTITY_SETTLE_SECONDS", 2.0)),
        wait_for_change=_get_bool_env("HARVEST_IDENTITY_WAIT_FOR_CHANGE", False),
        change_timeout_seconds=max(
            0.0, _get_float_env("HARVEST_IDENTITY_CHANGE_TIMEOUT_SECONDS", 20.0)
        ),
        change_poll_seconds=max(
            0.1, _get_float_env("HARVEST_IDENTITY_CHANGE_POLL_SECONDS", 2.0)
        ),
    )


@lru_cache(maxsize=1)
def get_credential_settings() -> CredentialSettings:
    """
    Return cached credential settings from environment variables.
    """

    return CredentialSettings(
        auth_path=_get_str_env("HARVEST_AUTH_PATH", "data/auth.json"),
        login_url=_get_str_env("HARVEST_LOGIN_URL", "https://aqarmap.com.eg/ar/"),
        api_url_fragment=_get_str_env("HARVEST_AUTH_API_FRAGMENT", "/api/"),
        capture_timeout_seconds=max(
            5.0, _get_float_env("HARVEST_AUTH_CAPTURE_TIMEOUT_SECONDS", 30.0)
        ),
    )


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """
    Return cached notification settings from environment variables.
    """

    return NotificationSettings(
        telegram_bot_token=_get_optional_str_env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_get_optional_str_env("TELEGRAM_CHAT_ID"),
        api_base=_get_str_env("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/"),
        parse_mode=_get_str_env("TELEGRAM_PARSE_MODE", "Markdown"),
        timeout_seconds=max(1.0, _get_float_env("TELEGRAM_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("TELEGRAM_MAX_RETRIES", 2)),
    )


@lru_cache(maxsize=1)
def get_checkpoint_settings() -> CheckpointSettings:
    """
    Return cached checkpoint settings from environment variables.
    """

    backend = _get_str_env("HARVEST_CHECKPOINT_BACKEND", "file").lower()
    if backend not in CHECKPOINT_BACKENDS:
        backend = "file"
    return CheckpointSettings(
        backend=backend,
        progress_path=_get_str_env("HARVEST_PROGRESS_PATH", "data/progress.json"),
    )


@lru_cache(maxsize=1)
def get_run_settings() -> RunSettings:
    """
    Return cached whole-run settings from environment variables.
    """

    stages = tuple(
        stage.lower()
        for stage in _get_list_env("HARVEST_STAGES", STAGES)
        if stage.lower() in STAGES
    )
    return RunSettings(
        targets_path=_get_str_env(
            "HARVEST_TARGETS_PATH", "harvester/scraping/config/targets.json"
        ),
        stages=stages or STAGES,
        shutdown_grace_seconds=max(
            0.0, _get_float_env("HARVEST_SHUTDOWN_GRACE_SECONDS", 5.0)
        ),
    )


@lru_cache(maxsize=1)
def get_harvest_settings() -> HarvestSettings:
    """
    Return the cached aggregate of every settings group.
    """

    return HarvestSettings(
        browser=get_browser_settings(),
        seed=get_seed_settings(),
        pool=get_pool_settings(),
        enrichment=get_enrichment_settings(),
        identity=get_identity_settings(),
        credentials=get_credential_settings(),
        notifications=get_notification_settings(),
        checkpoints=get_checkpoint_settings(),
        run=get_run_settings(),
    )
