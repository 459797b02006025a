"""Enrich Devices Use Case - Builds full device records under a rate limit.

For each device reference, sequentially and in WorkingSet order:
1. Fetch the device detail, retrying HTTP 429 with linear backoff
2. Look up the assigned MDM server (best effort, defaults to Unassigned)
3. Look up AppleCare coverage when requested (best effort, defaults to none)
4. Pause for the per-item delay, whatever the outcome

Only step 1 decides whether a record is produced. A failed device is
counted and skipped; the batch never aborts for a single device. An
HTTP 401 anywhere is an authentication failure and ends the run.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ...api.config import RetryPolicy
from ...api.exceptions import ErrorCollector, NetworkError, TokenExpiredError
from ..domain.entities import (
    UNASSIGNED,
    AssignedServer,
    CoverageEntry,
    DeviceRecord,
    DeviceReference,
    EnrichmentResult,
)
from ..domain.ports import IDeviceAPI, IFieldMapper

logger = logging.getLogger(__name__)


class EnrichDevicesUseCase:
    """Orchestrates per-device enrichment.

    Example:
        use_case = EnrichDevicesUseCase(
            device_api=ABMDeviceAPI(client),
            field_mapper=DeviceFieldMapper(),
            retry_policy=config.retry_policy,
        )
        result = await use_case.execute(working_set, server_lookup, fetch_coverage=True)
    """

    def __init__(
        self,
        device_api: IDeviceAPI,
        field_mapper: IFieldMapper,
        retry_policy: RetryPolicy | None = None,
    ):
        self.api = device_api
        self.mapper = field_mapper
        self.policy = retry_policy or RetryPolicy()

    async def execute(
        self,
        refs: Iterable[DeviceReference] | None,
        server_lookup: Mapping[str, str] | None = None,
        fetch_coverage: bool = False,
    ) -> EnrichmentResult:
        """Enrich every reference into a DeviceRecord.

        Args:
            refs: Device references (usually a WorkingSet)
            server_lookup: MDM server id -> name
            fetch_coverage: Whether to fetch AppleCare coverage per device

        Returns:
            EnrichmentResult with records of the devices that succeeded

        Raises:
            TokenExpiredError: If the API rejects the access token
        """
        refs = self._valid_refs(refs)
        if not refs:
            logger.info("No devices to enrich")
            return EnrichmentResult()

        server_lookup = server_lookup or {}
        result = EnrichmentResult()
        collector = ErrorCollector()
        total = len(refs)

        logger.info(
            f"Enriching {total} devices"
            + (" with AppleCare coverage" if fetch_coverage else "")
        )

        for index, ref in enumerate(refs, start=1):
            logger.info(f"Processing device {index} of {total} (ID: {ref.id})")

            try:
                record = await self._enrich_one(ref.id, server_lookup, fetch_coverage)
            except NetworkError as e:
                collector.add(e, context={"device_id": ref.id})
                logger.warning(f"Device {ref.id} failed: {e}")
                record = None

            if record is None:
                result.error_count += 1
                result.failed_ids.append(ref.id)
            else:
                result.records.append(record)
                result.success_count += 1

            await asyncio.sleep(self.policy.item_delay)

        logger.info(
            f"Enrichment completed: {result.success_count} succeeded, "
            f"{result.error_count} failed"
        )
        if collector.has_errors():
            logger.warning(str(collector.to_exception(succeeded=result.success_count)))

        return result

    async def _enrich_one(
        self,
        device_id: str,
        server_lookup: Mapping[str, str],
        fetch_coverage: bool,
    ) -> DeviceRecord | None:
        detail = await self.fetch_detail_with_retry(device_id)
        if detail is None:
            return None

        try:
            record = self.mapper.map_to_record(detail)
        except Exception as e:
            logger.warning(f"Mapping error for device {device_id}: {e}")
            return None

        record.assigned_server = await self._lookup_assignment(device_id, server_lookup)
        if fetch_coverage:
            record.coverage_entries = await self._lookup_coverage(device_id)
        return record

    async def fetch_detail_with_retry(self, device_id: str) -> dict[str, Any] | None:
        """Fetch one device's detail, retrying on HTTP 429.

        Waits ``attempt * backoff_unit`` after each rate-limited attempt
        except the last. Any other non-200 status, or a body without
        ``data``, fails immediately.

        Returns:
            The device resource object, or None on failure

        Raises:
            TokenExpiredError: On HTTP 401
            NetworkError: On transport failure
        """
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            response = await self.api.get_device(device_id)

            if response.status == 200:
                payload = response.json()
                data = payload.get("data") if isinstance(payload, dict) else None
                if not isinstance(data, dict) or not data.get("id"):
                    logger.warning(f"Invalid detail response for device {device_id}")
                    return None
                return data

            if response.status == 429:
                if attempt < max_attempts:
                    wait_time = self.policy.backoff_for(attempt)
                    logger.debug(
                        f"Rate limited (429) for {device_id}. "
                        f"Retry {attempt}/{max_attempts} in {wait_time}s"
                    )
                    await asyncio.sleep(wait_time)
                continue

            if response.status == 401:
                raise TokenExpiredError(
                    "Access token rejected while fetching device detail",
                    details={"device_id": device_id},
                )

            logger.debug(f"HTTP {response.status} for device {device_id}")
            return None

        logger.warning(f"Giving up on device {device_id} after {max_attempts} attempts")
        return None

    async def _lookup_assignment(
        self,
        device_id: str,
        server_lookup: Mapping[str, str],
    ) -> AssignedServer:
        try:
            response = await self.api.get_assigned_server(device_id)
        except NetworkError as e:
            logger.debug(f"Assignment lookup failed for {device_id}: {e}")
            return UNASSIGNED

        if response.status == 401:
            raise TokenExpiredError(
                "Access token rejected while fetching device assignment",
                details={"device_id": device_id},
            )
        if response.status != 200:
            logger.debug(f"Assignment lookup for {device_id}: HTTP {response.status}")
            return UNASSIGNED

        try:
            return self.mapper.map_assignment(response.json(), server_lookup)
        except Exception as e:
            logger.warning(f"Unreadable assignment for {device_id}: {e}")
            return UNASSIGNED

    async def _lookup_coverage(self, device_id: str) -> list[CoverageEntry]:
        try:
            response = await self.api.get_coverage(device_id)
        except NetworkError as e:
            logger.debug(f"Coverage lookup failed for {device_id}: {e}")
            return []

        if response.status == 401:
            raise TokenExpiredError(
                "Access token rejected while fetching AppleCare coverage",
                details={"device_id": device_id},
            )
        if response.status != 200:
            logger.debug(f"Coverage lookup for {device_id}: HTTP {response.status}")
            return []

        try:
            return self.mapper.map_coverage(response.json())
        except Exception as e:
            logger.warning(f"Unreadable AppleCare coverage for {device_id}: {e}")
            return []

    @staticmethod
    def _valid_refs(refs: Any) -> list[DeviceReference]:
        """Keep well-formed references; anything else counts as no input."""
        if refs is None or isinstance(refs, (str, bytes, dict)):
            return []
        try:
            items = list(refs)
        except TypeError:
            return []
        return [ref for ref in items if isinstance(ref, DeviceReference) and ref.id]
