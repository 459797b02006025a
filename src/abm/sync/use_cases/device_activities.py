"""Device Activities Use Case - Submits bulk mutations and drives them to completion.

An activity moves through SUBMITTED -> POLLING -> one of COMPLETED, FAILED
or TIMED_OUT. Submission and polling errors propagate to the caller; an
exhausted poll budget is not an error but the TIMED_OUT state, which still
carries the activity id so the activity can be checked again later.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from ...api.config import MonitorPolicy
from ...api.exceptions import (
    ActivityError,
    ActivityPollError,
    ActivitySubmissionError,
    TokenExpiredError,
    ValidationError,
)
from ..domain.entities import (
    ActivitySnapshot,
    ActivityState,
    MonitorResult,
    MutationKind,
)
from ..domain.ports import IActivityAPI

logger = logging.getLogger(__name__)

ACCEPTED_SUBMISSION_STATUSES = (200, 201)


def build_activity_body(
    kind: MutationKind,
    device_ids: list[str],
    target_server_id: str | None = None,
) -> dict[str, Any]:
    """Build the ``orgDeviceActivities`` JSON:API request document."""
    relationships: dict[str, Any] = {}
    if target_server_id:
        relationships["mdmServer"] = {
            "data": {"type": "mdmServers", "id": target_server_id},
        }
    relationships["devices"] = {
        "data": [{"type": "orgDevices", "id": device_id} for device_id in device_ids],
    }

    return {
        "data": {
            "type": "orgDeviceActivities",
            "attributes": {"activityType": kind.activity_type},
            "relationships": relationships,
        }
    }


class DeviceActivitiesUseCase:
    """Activity state machine for assign / unassign operations.

    Example:
        activities = DeviceActivitiesUseCase(ABMDeviceAPI(client), config.monitor_policy)
        result = await activities.submit_and_monitor(
            MutationKind.ASSIGN, ["DEVICE-1"], target_server_id="SERVER-1"
        )
        if result.timed_out:
            print(f"Still running, check later: {result.activity_id}")
    """

    def __init__(
        self,
        activity_api: IActivityAPI,
        monitor_policy: MonitorPolicy | None = None,
    ):
        self.api = activity_api
        self.policy = monitor_policy or MonitorPolicy()

    # ----------------------------------------
    # Submission
    # ----------------------------------------

    async def submit(
        self,
        kind: MutationKind | str,
        device_ids: list[str],
        target_server_id: str | None = None,
    ) -> str:
        """Submit a bulk mutation and return the new activity id.

        Args:
            kind: ASSIGN or UNASSIGN
            device_ids: Devices to mutate (duplicates are dropped)
            target_server_id: Target MDM server; required for ASSIGN,
                              not allowed for UNASSIGN

        Returns:
            Activity id, in state SUBMITTED

        Raises:
            ValidationError: On invalid input, before any request is made
            ActivitySubmissionError: If the API does not accept the activity
            TokenExpiredError: On HTTP 401
        """
        kind = self._validate(kind, device_ids, target_server_id)
        device_ids = list(dict.fromkeys(device_ids))
        body = build_activity_body(kind, device_ids, target_server_id)

        logger.info(
            f"Submitting {kind.activity_type} for {len(device_ids)} device(s)"
            + (f" to MDM server {target_server_id}" if target_server_id else "")
        )

        response = await self.api.create_activity(body)

        if response.status == 401:
            raise TokenExpiredError("Access token rejected while submitting activity")

        if response.status not in ACCEPTED_SUBMISSION_STATUSES:
            logger.error(f"Activity submission failed: HTTP {response.status}")
            raise ActivitySubmissionError(
                f"Activity submission failed (HTTP {response.status})",
                status_code=response.status,
                response_body=response.text,
            )

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        activity_id = data.get("id") if isinstance(data, dict) else None
        if not activity_id:
            raise ActivitySubmissionError(
                "Activity accepted but no activity id was returned",
                status_code=response.status,
                response_body=response.text,
            )

        logger.info(f"Activity {activity_id} is {ActivityState.SUBMITTED.value}")
        return str(activity_id)

    @staticmethod
    def _validate(
        kind: MutationKind | str,
        device_ids: list[str],
        target_server_id: str | None,
    ) -> MutationKind:
        try:
            kind = MutationKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown activity kind: {kind!r}", field="kind")

        if not device_ids or not any(device_id for device_id in device_ids):
            raise ValidationError("At least one device id is required", field="device_ids")

        if kind.requires_target and not target_server_id:
            raise ValidationError(
                "A target MDM server is required to assign devices",
                field="target_server_id",
            )
        if not kind.requires_target and target_server_id:
            raise ValidationError(
                "Unassigning devices does not take a target MDM server",
                field="target_server_id",
            )
        return kind

    # ----------------------------------------
    # Polling
    # ----------------------------------------

    async def poll(self, activity_id: str) -> ActivitySnapshot:
        """Read the current status of an activity (no retry).

        Raises:
            ActivityPollError: If the status cannot be read
            TokenExpiredError: On HTTP 401
        """
        response = await self.api.get_activity(activity_id)

        if response.status == 401:
            raise TokenExpiredError("Access token rejected while checking activity")

        if response.status != 200:
            raise ActivityPollError(
                f"Could not read activity {activity_id} (HTTP {response.status})",
                activity_id=activity_id,
                status_code=response.status,
                response_body=response.text,
            )

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ActivityPollError(
                f"Activity {activity_id} response has no data",
                activity_id=activity_id,
                status_code=response.status,
            )

        snapshot = ActivitySnapshot.from_api(data)
        if not snapshot.id:
            snapshot.id = activity_id
        return snapshot

    async def monitor(
        self,
        activity_id: str,
        interval: float | None = None,
        max_checks: int | None = None,
    ) -> MonitorResult:
        """Poll an activity until it completes, fails or the budget runs out.

        Each check sleeps ``interval`` seconds first, then polls. Poll errors
        are not retried: they end monitoring by propagating.

        Returns:
            MonitorResult in COMPLETED, FAILED or TIMED_OUT
        """
        interval = self.policy.interval if interval is None else interval
        max_checks = self.policy.max_checks if max_checks is None else max_checks
        snapshot: ActivitySnapshot | None = None

        logger.info(
            f"Activity {activity_id} is {ActivityState.POLLING.value} "
            f"(every {interval}s, up to {max_checks} checks)"
        )

        for check in range(1, max_checks + 1):
            await asyncio.sleep(interval)
            snapshot = await self.poll(activity_id)

            logger.info(
                f"Check {check}/{max_checks}: status={snapshot.status or 'UNKNOWN'}"
                + (f" ({snapshot.sub_status})" if snapshot.sub_status else "")
            )

            state = snapshot.terminal_state
            if state is ActivityState.COMPLETED:
                logger.info(f"Activity {activity_id} completed")
                return MonitorResult(activity_id, state, snapshot, checks=check)
            if state is ActivityState.FAILED:
                logger.error(f"Activity {activity_id} failed ({snapshot.sub_status or 'no detail'})")
                return MonitorResult(activity_id, state, snapshot, checks=check)

        logger.warning(
            f"Activity {activity_id} still running after {max_checks} checks; "
            f"check it again later"
        )
        return MonitorResult(activity_id, ActivityState.TIMED_OUT, snapshot, checks=max_checks)

    async def submit_and_monitor(
        self,
        kind: MutationKind | str,
        device_ids: list[str],
        target_server_id: str | None = None,
    ) -> MonitorResult:
        """Submit a bulk mutation, then monitor it to a final state."""
        activity_id = await self.submit(kind, device_ids, target_server_id)
        return await self.monitor(activity_id)

    # ----------------------------------------
    # Reports
    # ----------------------------------------

    async def download_report(
        self,
        snapshot: ActivitySnapshot,
        destination: str | Path,
    ) -> Path:
        """Download the report of a finished activity.

        Raises:
            ActivityError: If the snapshot has no download URL
        """
        if not snapshot.download_url:
            raise ActivityError(
                f"Activity {snapshot.id} has no report to download",
                activity_id=snapshot.id,
            )

        logger.info(f"Downloading report for activity {snapshot.id}")
        return await self.api.download_report(snapshot.download_url, destination)
