"""Shared option and parameter keys to avoid magic strings across canvasproxy modules."""

from __future__ import annotations

# Fetch options accepted by Proxy.set_options / FetchConfiguration.set_option
K_TIMEOUT = "timeout"
K_MAX_REDIRECTS = "max_redirects"
K_MAX_DOWNLOAD_SIZE = "max_download_size"
K_REFERER = "referer"
K_USER_AGENT = "user_agent"
K_SSL_VERIFY = "ssl_verify"
K_CLIENT_OPTIONS = "client_options"

# Inbound request parameters / headers read by the entry point
K_URL = "url"
K_CALLBACK = "callback"
K_HDR_REFERER = "Referer"
K_HDR_USER_AGENT = "User-Agent"
