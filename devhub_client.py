"""
Dev hub REST client for scratch org creation.

Creates ScratchOrgInfo requests on a dev hub, polls them until the org is
active, and publishes a ``LifecycleEvent`` on the event bus at every step so
callers can render progress while the call blocks.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

import requests
from azure.core.credentials import AccessToken
from azure.identity import DefaultAzureCredential

from lifecycle_events import (
    SCRATCH_ORG_LIFECYCLE_EVENT,
    STAGE_AUTHENTICATE,
    STAGE_AVAILABLE,
    STAGE_DEPLOY_SETTINGS,
    STAGE_DONE,
    STAGE_PREPARE_REQUEST,
    STAGE_SEND_REQUEST,
    STAGE_WAIT_FOR_ORG,
    EventBus,
    LifecycleEvent,
    ScratchOrgInfo,
    get_process_bus,
)

logger = logging.getLogger(__name__)

API_VERSION = "60.0"
REQUEST_TIMEOUT = 30  # seconds per HTTP call
POLL_INTERVAL = 10  # seconds between ScratchOrgInfo polls
DEFAULT_WAIT_MINUTES = 5
DEFAULT_DURATION_DAYS = 7
MIN_DURATION_DAYS = 1
MAX_DURATION_DAYS = 30

STATUS_ACTIVE = "Active"
STATUS_ERROR = "Error"
STATUS_DELETED = "Deleted"

EDITIONS = (
    "developer",
    "enterprise",
    "group",
    "professional",
    "partner-developer",
    "partner-enterprise",
    "partner-group",
    "partner-professional",
)


class ScratchOrgError(Exception):
    """Unclassified failure from the dev hub."""


class ScratchOrgInfoTimeoutError(ScratchOrgError):
    """The org was not ready within the wait budget.

    ``scratch_org_info_id`` identifies the request so it can be resumed.
    """

    def __init__(self, scratch_org_info_id: str, wait_minutes: float):
        self.scratch_org_info_id = scratch_org_info_id
        self.wait_minutes = wait_minutes
        super().__init__(
            f"Scratch org request {scratch_org_info_id} did not complete "
            f"within {wait_minutes} minute(s)"
        )


class StaticTokenCredential:
    """TokenCredential for a pre-issued access token (e.g. --access-token)."""

    def __init__(self, token: str, expires_in: timedelta = timedelta(hours=2)):
        self._token = token
        self._expires_on = int((datetime.now(timezone.utc) + expires_in).timestamp())

    def get_token(self, *scopes, **kwargs) -> AccessToken:
        return AccessToken(self._token, self._expires_on)


def normalize_edition(edition: Optional[str]) -> Optional[str]:
    """The API expects partner editions as 'partner <edition>'."""
    if edition and edition.startswith("partner-"):
        return edition.replace("-", " ", 1)
    return edition


@dataclass
class ScratchOrgRequest:
    """Everything needed to request one scratch org.

    ``definition`` holds the parsed definition file; the explicit attribute
    fields override its top-level keys.
    """
    definition: Dict[str, Any] = field(default_factory=dict)
    edition: Optional[str] = None
    org_name: Optional[str] = None
    description: Optional[str] = None
    admin_email: Optional[str] = None
    username: Optional[str] = None
    release: Optional[str] = None
    source_org: Optional[str] = None
    duration_days: int = DEFAULT_DURATION_DAYS
    wait_minutes: float = DEFAULT_WAIT_MINUTES
    track_source: bool = True
    no_ancestors: bool = False
    no_namespace: bool = False
    client_id: Optional[str] = None

    def __post_init__(self):
        if not MIN_DURATION_DAYS <= self.duration_days <= MAX_DURATION_DAYS:
            raise ValueError(
                f"duration_days must be between {MIN_DURATION_DAYS} and {MAX_DURATION_DAYS}"
            )
        if self.wait_minutes < 0:
            raise ValueError("wait_minutes must not be negative")

    def to_record(self) -> Dict[str, Any]:
        """ScratchOrgInfo insert body."""
        record = {
            "Edition": self.definition.get("edition"),
            "OrgName": self.definition.get("orgName"),
            "Description": self.definition.get("description"),
            "AdminEmail": self.definition.get("adminEmail"),
            "Username": self.definition.get("username"),
            "Release": self.definition.get("release"),
            "SourceOrg": self.definition.get("sourceOrg"),
        }
        overrides = {
            "Edition": normalize_edition(self.edition),
            "OrgName": self.org_name,
            "Description": self.description,
            "AdminEmail": self.admin_email,
            "Username": self.username,
            "Release": self.release,
            "SourceOrg": self.source_org,
        }
        record.update({k: v for k, v in overrides.items() if v is not None})

        features = self.definition.get("features")
        if isinstance(features, list):
            features = ";".join(features)
        record["Features"] = features
        record["DurationDays"] = self.duration_days
        record["ConnectedAppConsumerKey"] = self.client_id
        if self.no_ancestors:
            record["NoAncestors"] = True

        record = {k: v for k, v in record.items() if v is not None}
        if self.no_namespace:
            # explicit null tells the dev hub not to apply the registered namespace
            record["Namespace"] = None
        return record


@dataclass
class ScratchOrgResult:
    username: Optional[str]
    scratch_org_info: Optional[ScratchOrgInfo]
    auth_fields: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    track_source: bool = True

    @property
    def org_id(self) -> Optional[str]:
        return self.auth_fields.get("orgId")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "orgId": self.org_id,
            "scratchOrgInfo": self.scratch_org_info.to_dict() if self.scratch_org_info else None,
            "authFields": self.auth_fields,
            "warnings": self.warnings,
            "trackSource": self.track_source,
        }


class DevHubClient:
    """Talks to a dev hub's REST API on behalf of the CLI.

    ``credential`` is any azure.core ``TokenCredential``.  The default,
    ``DefaultAzureCredential``, assumes the dev hub accepts Microsoft Entra ID
    bearer tokens (single sign-on federated through Entra), which is why
    ``token_scope`` defaults to the Entra ``<instance_url>/.default`` form.
    Override it with DEVHUB_TOKEN_SCOPE for a different app registration, or
    pass a ``StaticTokenCredential`` (``--access-token``) to use a dev hub
    session id directly.
    """

    def __init__(
        self,
        instance_url: str,
        credential=None,
        token_scope: Optional[str] = None,
        api_version: str = API_VERSION,
        bus: Optional[EventBus] = None,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.instance_url = instance_url.rstrip("/")
        self.credential = credential if credential is not None else DefaultAzureCredential()
        self.token_scope = token_scope or f"{self.instance_url}/.default"
        self.api_version = api_version
        self.bus = bus if bus is not None else get_process_bus()
        self.poll_interval = poll_interval

        self._token_cache = None
        self._token_expires = None

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_token(self) -> str:
        """Get an access token for the dev hub (cached)"""
        if self._token_cache and self._token_expires:
            if datetime.now(timezone.utc) < self._token_expires:
                return self._token_cache

        token = self.credential.get_token(self.token_scope)
        self._token_cache = token.token
        self._token_expires = datetime.fromtimestamp(token.expires_on, tz=timezone.utc) - timedelta(minutes=5)
        return self._token_cache

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._get_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _sobject_url(self, *parts: str) -> str:
        path = "/".join(("sobjects", "ScratchOrgInfo") + parts)
        return f"{self.instance_url}/services/data/v{self.api_version}/{path}"

    def _emit(self, stage: str, info: Optional[ScratchOrgInfo] = None) -> None:
        self.bus.publish(SCRATCH_ORG_LIFECYCLE_EVENT, LifecycleEvent(stage=stage, info=info))

    # ------------------------------------------------------------------
    # ScratchOrgInfo operations
    # ------------------------------------------------------------------

    def create_scratch_org_info(self, request: ScratchOrgRequest) -> str:
        """Insert a ScratchOrgInfo record and return its Id."""
        response = requests.post(
            self._sobject_url(),
            json=request.to_record(),
            headers=self._get_headers(),
            timeout=REQUEST_TIMEOUT,
        )

        if response.status_code in [200, 201]:
            scratch_org_info_id = response.json().get("id")
            if not scratch_org_info_id:
                raise ScratchOrgError("The dev hub accepted the request but returned no id")
            logger.info("Scratch org request sent: %s", scratch_org_info_id)
            return scratch_org_info_id
        raise ScratchOrgError(
            f"Failed to request scratch org: {response.status_code} {response.text}"
        )

    def get_scratch_org_info(self, scratch_org_info_id: str) -> ScratchOrgInfo:
        response = requests.get(
            self._sobject_url(scratch_org_info_id),
            headers=self._get_headers(),
            timeout=REQUEST_TIMEOUT,
        )

        if response.status_code == 200:
            return ScratchOrgInfo.from_record(response.json())
        raise ScratchOrgError(
            f"Failed to get scratch org info: {response.status_code} {response.text}"
        )

    def wait_for_scratch_org(self, scratch_org_info_id: str, wait_minutes: float) -> ScratchOrgInfo:
        """Poll until the ScratchOrgInfo record is Active.

        Raises:
            ScratchOrgInfoTimeoutError: wait budget used up (resumable).
            ScratchOrgError: the dev hub reported the request as failed.
        """
        start_time = time.time()
        timeout_seconds = wait_minutes * 60
        last_info = ScratchOrgInfo(id=scratch_org_info_id)

        while True:
            elapsed = time.time() - start_time
            if elapsed > timeout_seconds:
                raise ScratchOrgInfoTimeoutError(scratch_org_info_id, wait_minutes)

            try:
                info = self.get_scratch_org_info(scratch_org_info_id)
            except (ScratchOrgError, requests.RequestException) as exc:
                logger.warning("Error checking scratch org status: %s", exc)
                self._emit(STAGE_WAIT_FOR_ORG, last_info)
                time.sleep(self.poll_interval)
                continue

            last_info = info
            if info.status == STATUS_ACTIVE:
                return info
            if info.status in (STATUS_ERROR, STATUS_DELETED):
                raise ScratchOrgError(
                    f"Scratch org request {scratch_org_info_id} failed: "
                    f"{info.error_code or info.status}"
                )

            logger.debug("Scratch org status: %s (elapsed: %ds)", info.status, int(elapsed))
            self._emit(STAGE_WAIT_FOR_ORG, info)
            time.sleep(self.poll_interval)

    def create_scratch_org(self, request: ScratchOrgRequest) -> ScratchOrgResult:
        """Request a scratch org and, unless ``wait_minutes`` is 0, wait for it."""
        self._emit(STAGE_PREPARE_REQUEST)
        scratch_org_info_id = self.create_scratch_org_info(request)
        info = ScratchOrgInfo(id=scratch_org_info_id)
        self._emit(STAGE_SEND_REQUEST, info)

        if request.wait_minutes == 0:
            return ScratchOrgResult(
                username=request.username,
                scratch_org_info=info,
                track_source=request.track_source,
            )
        return self._finish(scratch_org_info_id, request.wait_minutes, request.track_source)

    def resume_scratch_org(
        self,
        scratch_org_info_id: str,
        wait_minutes: float = DEFAULT_WAIT_MINUTES,
        track_source: bool = True,
    ) -> ScratchOrgResult:
        """Re-attach to a request made earlier (e.g. one that timed out)."""
        self._emit(STAGE_SEND_REQUEST, ScratchOrgInfo(id=scratch_org_info_id))
        return self._finish(scratch_org_info_id, wait_minutes, track_source)

    def _finish(self, scratch_org_info_id: str, wait_minutes: float, track_source: bool) -> ScratchOrgResult:
        self._emit(STAGE_WAIT_FOR_ORG, ScratchOrgInfo(id=scratch_org_info_id))
        info = self.wait_for_scratch_org(scratch_org_info_id, wait_minutes)
        self._emit(STAGE_AVAILABLE, info)

        self._emit(STAGE_AUTHENTICATE, info)
        auth_fields = {
            "orgId": info.scratch_org,
            "username": info.signup_username,
            "loginUrl": info.login_url,
            "instanceUrl": info.login_url,
            "scratchOrgInfoId": info.id,
        }
        warnings = []
        if not info.login_url:
            warnings.append("The dev hub did not return a login URL for the scratch org.")

        # Definition file settings are not merged, so there is nothing to deploy.
        self._emit(STAGE_DEPLOY_SETTINGS, info)
        self._emit(STAGE_DONE, info)

        logger.info("Scratch org %s is active", info.scratch_org)
        return ScratchOrgResult(
            username=info.signup_username,
            scratch_org_info=info,
            auth_fields=auth_fields,
            warnings=warnings,
            track_source=track_source,
        )
