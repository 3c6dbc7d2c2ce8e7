"""Config loading for the edge server.

Configuration comes from two places:
  1. An optional YAML file (for values that rarely change: feed metadata,
     CSP hosts, redirects).
  2. Environment variables, which always win. Their names are part of the
     deployment contract (``GRAPHQL_ORIGIN``, ``PORT``, ``NODE_ENV``,
     ``ENABLE_STACKDRIVER`` ...).

Config file search order:
  1. ``config_path`` argument (if provided, for testing or explicit override)
  2. ``EDGE_CONFIG`` environment variable (if set)
  3. ``./edge.yaml``

A missing file is not an error. A file that exists but cannot be used raises
ConfigError; the process refuses to start (exit status 1, see edge/run.py).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

import yaml

from edge.constants import (
    AUTHOR_EMAIL,
    AUTHOR_LINK,
    AUTHOR_NAME,
    DEFAULT_ANALYTICS_SCRIPT_URL,
    DEFAULT_ASSET_HOSTS,
    DEFAULT_AUTH_JWKS_URL,
    DEFAULT_GOOGLE_PROJECT,
    DEFAULT_GRAPHQL_ORIGIN,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PUBLIC_URL,
    DEFAULT_RENDERER_ORIGIN,
    DEFAULT_REPORT_URI,
    DEFAULT_STATIC_DIR,
    FEED_DESCRIPTION,
    FEED_LANGUAGE,
    FEED_TITLE,
    ORIGIN_TIMEOUT_S,
    PROXY_TIMEOUT_S,
)
from edge.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = ["edge.yaml"]

_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})


class ConfigError(Exception):
    """Configuration is unusable. Fatal at startup."""


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class OriginConfig:
    """Upstream GraphQL origin."""

    url: str = DEFAULT_GRAPHQL_ORIGIN
    timeout_s: float = ORIGIN_TIMEOUT_S
    proxy_timeout_s: float = PROXY_TIMEOUT_S

    @property
    def host(self) -> str:
        """``host[:port]`` of the origin, used to rewrite the proxied Host header."""
        return urlsplit(self.url).netloc


@dataclass
class ServerConfig:
    """Listen socket and process mode."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    dev: bool = True
    trust_proxy: bool = False
    static_dir: str = DEFAULT_STATIC_DIR


@dataclass
class SiteConfig:
    """Public site identity used in feeds and sitemaps."""

    public_url: str = DEFAULT_PUBLIC_URL
    title: str = FEED_TITLE
    description: str = FEED_DESCRIPTION
    language: str = FEED_LANGUAGE
    author_name: str = AUTHOR_NAME
    author_email: str = AUTHOR_EMAIL
    author_link: str = AUTHOR_LINK

    @property
    def favicon(self) -> str:
        return f"{self.public_url}/favicon.ico"


@dataclass
class TelemetryConfig:
    """Stackdriver (Cloud Trace / Cloud Monitoring) export."""

    enabled: bool = False
    project_id: str = DEFAULT_GOOGLE_PROJECT


@dataclass
class SecurityConfig:
    """Hosts referenced by the Content-Security-Policy."""

    auth_jwks_url: str = DEFAULT_AUTH_JWKS_URL
    asset_hosts: list[str] = field(default_factory=lambda: list(DEFAULT_ASSET_HOSTS))
    analytics_script_url: str = DEFAULT_ANALYTICS_SCRIPT_URL
    report_uri: str = DEFAULT_REPORT_URI


@dataclass
class RenderConfig:
    """Rendering layer selection.

    origin:  base URL of an HTTP rendering server (used by RendererProxyHandler)
    handler: optional ``package.module:factory`` import string; when set the
             factory is called instead of the default proxy handler.
    """

    origin: str = DEFAULT_RENDERER_ORIGIN
    handler: Optional[str] = None


@dataclass
class Config:
    """Root configuration object. Treated as read-only once loaded."""

    version: int = SUPPORTED_CONFIG_VERSION
    origin: OriginConfig = field(default_factory=OriginConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    site: SiteConfig = field(default_factory=SiteConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    redirects: dict[str, str] = field(default_factory=dict)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            ConfigError: if a section is present but is not a mapping.
        """
        origin_raw = _section(raw, "origin")
        origin = OriginConfig(
            url=origin_raw.get("url", DEFAULT_GRAPHQL_ORIGIN),
            timeout_s=float(origin_raw.get("timeout_s", ORIGIN_TIMEOUT_S)),
            proxy_timeout_s=float(origin_raw.get("proxy_timeout_s", PROXY_TIMEOUT_S)),
        )

        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=server_raw.get("host", DEFAULT_HOST),
            port=server_raw.get("port", DEFAULT_PORT),
            dev=bool(server_raw.get("dev", True)),
            trust_proxy=bool(server_raw.get("trust_proxy", False)),
            static_dir=server_raw.get("static_dir", DEFAULT_STATIC_DIR),
        )

        site_raw = _section(raw, "site")
        site = SiteConfig(
            public_url=str(site_raw.get("public_url", DEFAULT_PUBLIC_URL)).rstrip("/"),
            title=site_raw.get("title", FEED_TITLE),
            description=site_raw.get("description", FEED_DESCRIPTION),
            language=site_raw.get("language", FEED_LANGUAGE),
            author_name=site_raw.get("author_name", AUTHOR_NAME),
            author_email=site_raw.get("author_email", AUTHOR_EMAIL),
            author_link=site_raw.get("author_link", AUTHOR_LINK),
        )

        telemetry_raw = _section(raw, "telemetry")
        telemetry = TelemetryConfig(
            enabled=bool(telemetry_raw.get("enabled", False)),
            project_id=telemetry_raw.get("project_id", DEFAULT_GOOGLE_PROJECT),
        )

        security_raw = _section(raw, "security")
        security = SecurityConfig(
            auth_jwks_url=security_raw.get("auth_jwks_url", DEFAULT_AUTH_JWKS_URL),
            asset_hosts=list(security_raw.get("asset_hosts", DEFAULT_ASSET_HOSTS)),
            analytics_script_url=security_raw.get(
                "analytics_script_url", DEFAULT_ANALYTICS_SCRIPT_URL
            ),
            report_uri=security_raw.get("report_uri", DEFAULT_REPORT_URI),
        )

        render_raw = _section(raw, "render")
        render = RenderConfig(
            origin=render_raw.get("origin", DEFAULT_RENDERER_ORIGIN),
            handler=render_raw.get("handler"),
        )

        redirects = raw.get("redirects") or {}
        if not isinstance(redirects, dict):
            raise ConfigError("'redirects' must be a mapping of path to target")

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            origin=origin,
            server=server,
            site=site,
            telemetry=telemetry,
            security=security,
            render=render,
            redirects={str(k): str(v) for k, v in redirects.items()},
            path=path,
        )


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping, got {type(value).__name__}")
    return value


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate edge server configuration.

    If no file is found, returns the default Config. Environment overrides are
    applied in both cases and always take precedence over file values.

    Raises:
        ConfigError: on YAML parse error, non-mapping document, unsupported
            version, or an invalid value in the file or the environment.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("EDGE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.debug("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
    else:
        config = _load_file(found_path)

    _apply_env_overrides(config, os.environ)
    _validate(config)

    logger.info(
        "Config loaded",
        path=config.path,
        origin=config.origin.url,
        port=config.server.port,
        dev=config.server.dev,
        telemetry=config.telemetry.enabled,
    )
    return config


def _load_file(path: str) -> Config:
    try:
        with open(path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} is not a valid YAML mapping")

    version = raw.get("version", SUPPORTED_CONFIG_VERSION)
    if version not in SUPPORTED_VERSIONS:
        raise ConfigError(
            f"Unsupported config version in {path}: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}"
        )

    return Config.from_dict(raw, path=path)


def _apply_env_overrides(config: Config, env: Any) -> None:
    """Apply environment variable overrides to a Config object in-place."""
    if env.get("GRAPHQL_ORIGIN"):
        config.origin.url = env["GRAPHQL_ORIGIN"]

    if env.get("PORT"):
        try:
            config.server.port = int(env["PORT"])
        except ValueError as exc:
            raise ConfigError(f"PORT is not a valid integer: {env['PORT']!r}") from exc

    if env.get("HOST"):
        config.server.host = env["HOST"]

    if "NODE_ENV" in env:
        config.server.dev = env["NODE_ENV"] != "production"

    if env.get("ENABLE_STACKDRIVER"):
        config.telemetry.enabled = True

    if env.get("GOOGLE_PROJECT"):
        config.telemetry.project_id = env["GOOGLE_PROJECT"]

    if env.get("PUBLIC_URL"):
        config.site.public_url = env["PUBLIC_URL"].rstrip("/")

    if env.get("RENDERER_ORIGIN"):
        config.render.origin = env["RENDERER_ORIGIN"]

    if env.get("RENDER_HANDLER"):
        config.render.handler = env["RENDER_HANDLER"]

    if "TRUST_PROXY" in env:
        config.server.trust_proxy = env["TRUST_PROXY"].lower() in _TRUTHY

    if env.get("STATIC_DIR"):
        config.server.static_dir = env["STATIC_DIR"]


def _validate(config: Config) -> None:
    if not isinstance(config.server.port, int) or not 0 < config.server.port < 65536:
        raise ConfigError(f"Port out of range: {config.server.port!r}")

    for name, url in (
        ("origin.url", config.origin.url),
        ("site.public_url", config.site.public_url),
        ("render.origin", config.render.origin),
    ):
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigError(f"{name} must be an absolute http(s) URL, got {url!r}")

    if config.origin.timeout_s <= 0:
        raise ConfigError("origin.timeout_s must be positive")
