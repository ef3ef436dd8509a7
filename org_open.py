"""
Open a scratch org in the browser through its front-door URL.

Before launching the browser we wait for the org's Lightning domain to
resolve (see ``domain_readiness``) unless the check is disabled or the org
lives on internal infrastructure.
"""
import logging
import os
import webbrowser
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, unquote

from domain_readiness import DomainReadinessPoller, extract_my_domain, is_internal_url, lightning_domain

logger = logging.getLogger(__name__)

SETUP_PATH = "/lightning/setup/SetupOneHome/home"
OPEN_PATH_ENV = "SCRATCH_OPEN_PATH"
CONTAINER_MODE_ENV = "SCRATCH_CONTAINER_MODE"


def build_frontdoor_url(instance_url: str, access_token: str) -> str:
    return f"{instance_url.rstrip('/')}/secur/frontdoor.jsp?sid={access_token}"


def build_url(
    instance_url: str,
    access_token: str,
    path: Optional[str] = None,
    is_setup: bool = False,
) -> str:
    """Front-door URL, optionally redirecting to *path* after login.

    Without an explicit path, ``is_setup`` picks the Setup home page and
    otherwise SCRATCH_OPEN_PATH is used when set.
    """
    url = build_frontdoor_url(instance_url, access_token)
    if not path:
        path = SETUP_PATH if is_setup else os.environ.get(OPEN_PATH_ENV)
    if path:
        # decode first so an already-encoded path is not double encoded
        clean_path = quote(unquote(path), safe="")
        return f"{url}&retURL={clean_path}"
    return url


def is_container_mode() -> bool:
    return os.environ.get(CONTAINER_MODE_ENV, "").lower() in ("1", "true", "yes")


def open_org(
    instance_url: str,
    access_token: str,
    poller: DomainReadinessPoller,
    org_id: Optional[str] = None,
    username: Optional[str] = None,
    path: Optional[str] = None,
    is_setup: bool = False,
    url_only: bool = False,
    browser_opener: Optional[Callable[[str], Any]] = None,
) -> Dict[str, Optional[str]]:
    """Build the URL, wait for the domain, then open the browser.

    Raises:
        ReadinessTimeout: the Lightning domain never resolved.
    """
    url = build_url(instance_url, access_token, path=path, is_setup=is_setup)
    result = {"url": url, "orgId": org_id, "username": username}

    if poller.enabled and not is_internal_url(url):
        try:
            my_domain = extract_my_domain(url)
        except ValueError as exc:
            # Opening unverified beats refusing to open at all.
            logger.debug("Skipping domain check: %s", exc)
        else:
            poller.check_ready(lightning_domain(my_domain))

    if not url_only and not is_container_mode():
        logger.info("Opening %s in the default browser", instance_url)
        (browser_opener or webbrowser.open)(url)
    return result
