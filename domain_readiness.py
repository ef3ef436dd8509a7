"""
Domain readiness polling for freshly provisioned scratch orgs.

A new org's My Domain can take a few minutes to show up in DNS.  Opening the
browser before it resolves lands the user on an error page, so we poll name
resolution with a fixed one-second delay until it resolves or the retry
budget runs out (240 attempts, roughly four minutes, by default).

Configuration:
    SCRATCH_DOMAIN_RETRY  - maximum retries; 0 skips the check entirely
"""
import logging
import os
import re
import socket
import time
from typing import Callable, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DOMAIN_RETRY_ENV = "SCRATCH_DOMAIN_RETRY"
DEFAULT_DOMAIN_RETRIES = 240
RETRY_DELAY_SECONDS = 1
LIGHTNING_DOMAIN_SUFFIX = "lightning.force.com"

WAITING_MESSAGE = "Waiting to resolve the Lightning Experience-enabled custom domain..."
TIMEOUT_MESSAGE = "The Lightning Experience-enabled custom domain is unavailable."
TIMEOUT_ACTION = (
    "The domain can take a few more minutes to propagate. Try again later, "
    "or open the URL directly once it resolves."
)

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
INTERNAL_HOST_SUFFIXES = (
    ".internal.salesforce.com",
    ".sfdcdev.salesforce.com",
    ".vpod.sfdcsbx.com",
    ".localhost",
)

_MY_DOMAIN_RE = re.compile(r"https?://([^.]*)")


class ResolutionFailure(Exception):
    """A single name-resolution attempt failed.  Transient; retried."""

    def __init__(self, domain: str, cause: Optional[BaseException] = None):
        self.domain = domain
        self.cause = cause
        super().__init__(f"Could not resolve {domain}: {cause}")


class ReadinessTimeout(Exception):
    """The retry budget ran out before the domain resolved."""

    def __init__(self, domain: str, attempts: int, last_error: Optional[BaseException] = None):
        self.domain = domain
        self.attempts = attempts
        self.last_error = last_error
        self.action = TIMEOUT_ACTION
        super().__init__(TIMEOUT_MESSAGE)


def get_domain_retries() -> int:
    """Read the retry budget from the environment.

    Unparseable values fall back to the default; negative values mean 0.
    """
    raw = os.environ.get(DOMAIN_RETRY_ENV, str(DEFAULT_DOMAIN_RETRIES))
    try:
        retries = int(raw)
    except ValueError:
        logger.warning(
            "Ignoring invalid %s=%r, using %d", DOMAIN_RETRY_ENV, raw, DEFAULT_DOMAIN_RETRIES
        )
        return DEFAULT_DOMAIN_RETRIES
    return max(retries, 0)


def is_internal_host(host: str) -> bool:
    host = (host or "").lower().strip(".")
    if host in LOCAL_HOSTS:
        return True
    return any(host.endswith(suffix) for suffix in INTERNAL_HOST_SUFFIXES)


def is_internal_url(url: str) -> bool:
    return is_internal_host(urlparse(url).hostname or "")


def extract_my_domain(url: str) -> str:
    """First host label of *url*: 'https://acme-dev.my.salesforce.com' -> 'acme-dev'."""
    match = _MY_DOMAIN_RE.match(url or "")
    if not match or not match.group(1):
        raise ValueError(f"Cannot extract a domain name from {url!r}")
    return match.group(1)


def lightning_domain(my_domain: str) -> str:
    return f"{my_domain}.{LIGHTNING_DOMAIN_SUFFIX}"


def resolve_domain(domain: str) -> str:
    """Resolve *domain* to an IPv4 address or raise ResolutionFailure."""
    try:
        return socket.gethostbyname(domain)
    except (OSError, UnicodeError) as exc:
        # UnicodeError: the idna codec rejects empty or over-long labels
        raise ResolutionFailure(domain, exc) from exc


class NullStatusSink:
    def start(self, message: str) -> None:
        pass

    def stop(self) -> None:
        pass


class DomainReadinessPoller:
    """Linear retry loop around a name-resolution check.

    Args:
        status_sink: object with ``start(message)`` / ``stop()``, e.g. a
            ``status_view.Spinner``.
        max_attempts: retry budget.  Read from SCRATCH_DOMAIN_RETRY when None.
            Fixed for the lifetime of the poller.
        resolver: ``resolver(domain) -> address``; raises ResolutionFailure.
        sleep: injectable for tests.
        delay: seconds between attempts.
    """

    def __init__(
        self,
        status_sink=None,
        max_attempts: Optional[int] = None,
        resolver: Callable[[str], str] = resolve_domain,
        sleep: Callable[[float], None] = time.sleep,
        delay: float = RETRY_DELAY_SECONDS,
    ):
        self.status_sink = status_sink if status_sink is not None else NullStatusSink()
        self.max_attempts = get_domain_retries() if max_attempts is None else max(max_attempts, 0)
        self.resolver = resolver
        self.sleep = sleep
        self.delay = delay

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 0

    def check_ready(
        self,
        domain: str,
        on_waiting_first_time: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Block until *domain* resolves.

        Returns the resolved address, or None when the check was skipped
        (internal domain or a zero budget).  Raises ReadinessTimeout after
        ``max_attempts`` retries, i.e. ``max_attempts + 1`` resolutions.
        """
        if not self.enabled:
            logger.debug("Domain retries set to 0, not checking %s", domain)
            return None
        if is_internal_host(domain):
            logger.debug("Skipping readiness check for internal domain %s", domain)
            return None

        if on_waiting_first_time is None:
            on_waiting_first_time = self._start_waiting

        attempt = 0
        waiting = False
        try:
            while True:
                try:
                    address = self.resolver(domain)
                except ResolutionFailure as exc:
                    if attempt >= self.max_attempts:
                        logger.debug("Did not find IP for %s after %d retries", domain, attempt)
                        raise ReadinessTimeout(domain, attempt, exc) from exc
                    if attempt == 0:
                        waiting = True
                        on_waiting_first_time()
                    self.sleep(self.delay)
                    attempt += 1
                    continue

                logger.debug("Found IP %s for %s", address, domain)
                return address
        finally:
            # the indicator is cleared before any error reaches the caller
            if waiting:
                self.status_sink.stop()

    def _start_waiting(self) -> None:
        self.status_sink.start(WAITING_MESSAGE)
