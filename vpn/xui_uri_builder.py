"""Subscription URL builder for 3x-ui clients."""

from urllib.parse import urlparse

DEFAULT_SUB_PATH = "/sub/"


def normalize_sub_path(path: str) -> str:
    """Ensure a subscription path starts and ends with a slash."""
    if not path:
        return DEFAULT_SUB_PATH
    if not path.startswith("/"):
        path = "/" + path
    if not path.endswith("/"):
        path = path + "/"
    return path


def build_subscription_url(sub_id: str, panel_settings: dict, panel_url: str, base_url: str = "") -> str:
    """Build the public subscription URL for a subscription ID.

    Resolution order:
        1. explicit ``base_url`` (bot configuration)
        2. panel ``subURI`` (already contains scheme, host and path)
        3. panel ``subDomain`` + ``subPort`` + ``subPath``; https when the
           subscription server has both a key and a certificate file
        4. panel host + ``subPath``

    Args:
        sub_id: Client subscription ID (``subId``)
        panel_settings: Result of ``/panel/setting/all`` (may be empty)
        panel_url: Panel base URL, used as the last fallback
        base_url: Configured override, e.g. https://sub.example.com/sub

    Returns:
        URL like https://sub.example.com:2096/sub/abcdef0123456789

    Example:
        >>> build_subscription_url("abc", {"subURI": "https://s.example.com/sub/"}, "")
        'https://s.example.com/sub/abc'
    """
    if not sub_id:
        raise ValueError("Client has no subscription ID")

    if base_url:
        return f"{base_url.rstrip('/')}/{sub_id}"

    sub_uri = panel_settings.get("subURI") or ""
    if sub_uri:
        return f"{sub_uri.rstrip('/')}/{sub_id}"

    sub_path = normalize_sub_path(panel_settings.get("subPath") or "")
    sub_domain = panel_settings.get("subDomain") or ""

    if sub_domain:
        scheme = "https" if panel_settings.get("subKeyFile") and panel_settings.get("subCertFile") else "http"
        try:
            port = int(panel_settings.get("subPort") or 0)
        except (TypeError, ValueError):
            port = 0

        if port and not ((scheme == "https" and port == 443) or (scheme == "http" and port == 80)):
            host = f"{sub_domain}:{port}"
        else:
            host = sub_domain
        return f"{scheme}://{host}{sub_path}{sub_id}"

    parsed = urlparse(panel_url)
    root = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else panel_url.rstrip("/")
    return f"{root}{sub_path}{sub_id}"
