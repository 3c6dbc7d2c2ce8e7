"""Shared constants for the edge server.

Defaults, limits and fixed site metadata used across modules are defined here.
Other modules import these rather than repeating the values.
"""

# ─── Origin ───────────────────────────────────────────────────────────────────

DEFAULT_GRAPHQL_ORIGIN: str = "https://graphql.natwelch.com"

# GraphQL endpoint path on the origin.
GRAPHQL_PATH: str = "/graphql"

# Total deadline for a single GraphQL call (connect + send + read).
ORIGIN_TIMEOUT_S: float = 10.0

# Origin calls slower than this are logged at warning.
ORIGIN_SLOW_MS: float = 1_000.0

# ─── Proxy ────────────────────────────────────────────────────────────────────

# Path prefixes reverse-proxied to the GraphQL origin, any method.
PROXY_PREFIXES: tuple[str, ...] = ("/login", "/logout", "/callback", "/admin", "/graphql")

# Shared proxy client pool.
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds
PROXY_TIMEOUT_S: float = 30.0

# ─── Server ───────────────────────────────────────────────────────────────────

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8080
DEFAULT_STATIC_DIR: str = "static"
DEFAULT_RENDERER_ORIGIN: str = "http://127.0.0.1:3000"

# Files served from the static directory at the site root.
ROOT_STATIC_FILES: tuple[str, ...] = (
    "/robots.txt",
    "/sitemap.xml",
    "/favicon.ico",
    "/.well-known/brave-payments-verification.txt",
)

# Responses smaller than this are not worth compressing.
GZIP_MINIMUM_SIZE: int = 500

# ─── Site / Feed metadata ─────────────────────────────────────────────────────

DEFAULT_PUBLIC_URL: str = "https://writing.natwelch.com"
FEED_TITLE: str = "Nat? Nat. Nat!"
FEED_DESCRIPTION: str = "Nat Welch's Blog about random stuff."
FEED_LANGUAGE: str = "en"
AUTHOR_NAME: str = "Nat Welch"
AUTHOR_EMAIL: str = "nat@natwelch.com"
AUTHOR_LINK: str = "https://natwelch.com"

# Number of posts included in the RSS/Atom feeds.
FEED_POST_LIMIT: int = 20

# Number of post ids requested for the sitemap.
SITEMAP_POST_LIMIT: int = 1000

# Informational cache-time hint carried on the sitemap document (ms).
SITEMAP_CACHE_TIME_MS: int = 6_000_000

# ─── Telemetry ────────────────────────────────────────────────────────────────

DEFAULT_GOOGLE_PROJECT: str = "icco-cloud"
TRACE_SAMPLING_RATE: float = 1.0

# ─── Security policy ──────────────────────────────────────────────────────────

DEFAULT_AUTH_JWKS_URL: str = "https://icco.auth0.com/.well-known/jwks.json"
DEFAULT_ASSET_HOSTS: tuple[str, ...] = (
    "https://icco.imgix.net",
    "https://storage.googleapis.com",
    "https://a.natwelch.com",
)
DEFAULT_ANALYTICS_SCRIPT_URL: str = "https://a.natwelch.com/tracker.js"
DEFAULT_REPORT_URI: str = "https://reportd.natwelch.com/report/writing"

HSTS_MAX_AGE_S: int = 15_552_000  # 180 days
EXPECT_CT_MAX_AGE_S: int = 123
REPORT_TO_MAX_AGE_S: int = 10_886_400  # 126 days
