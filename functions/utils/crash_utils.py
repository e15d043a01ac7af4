# utils/crash_utils.py

import datetime
from dataclasses import dataclass
from typing import Optional, Set
from firebase_functions import logger
from firebase_admin import firestore

from .app_context import AppContext
from .data_processing_utils import CrashReport
from .errors import UnhandledFailure
from .geo_utils import ResolutionResult, find_nearest_facility, load_facilities
from .notification_utils import DispatchReport, NotificationDispatcher, NotificationMessage
from .recipient_utils import RecipientResolver


@dataclass
class CrashOutcome:
    """Everything the crash endpoint learned while handling one report."""
    resolution: ResolutionResult
    targets: Set[str]
    dispatch_report: Optional[DispatchReport] = None
    duplicate: bool = False


class CrashEventStore:
    """Crash events keyed by crash id, used to spot replayed submissions."""

    def __init__(self, db, collection: str = "crash_id", timeout: Optional[float] = None):
        self.db = db
        self.collection = collection
        self.timeout = timeout

    def exists(self, crash_id: str) -> bool:
        try:
            doc = self.db.collection(self.collection).document(crash_id).get(timeout=self.timeout)
            return doc.exists
        except Exception as e:
            logger.error(f"Error checking crash existence: {str(e)}")
            raise UnhandledFailure("Failed to check crash existence.") from e

    def record(self, report: CrashReport) -> None:
        crash_data = {
            "crash_id": report.crash_id,
            "rideguard_id": report.rideguard_id,
            "latitude": report.lat,
            "longitude": report.long,
            "timestamp": firestore.SERVER_TIMESTAMP,
            "created_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        try:
            self.db.collection(self.collection).document(report.crash_id).set(crash_data, timeout=self.timeout)
        except Exception as e:
            logger.error(f"Error saving crash data: {str(e)}")
            raise UnhandledFailure("Failed to save crash data.") from e
        logger.info(f"New crash data saved for crash_id: {report.crash_id}")


def _apply_dedup_policy(report: CrashReport, context: AppContext) -> bool:
    """Record the crash according to crash_dedup_policy; True if it was seen before."""
    policy = context.settings.crash_dedup_policy
    if policy == "disabled":
        return False

    store = CrashEventStore(context.db, context.settings.crashes_collection, context.settings.lookup_timeout_seconds)
    if store.exists(report.crash_id):
        logger.info(f"⚠️ Crash with ID {report.crash_id} has occurred before (policy: {policy})")
        return True

    store.record(report)
    return False


def build_crash_message(report: CrashReport, resolution: ResolutionResult, context: AppContext) -> NotificationMessage:
    facility = resolution.facility
    return NotificationMessage(
        title=context.settings.notification_title,
        body=context.settings.notification_body_template.format(hospital_name=facility.name),
        extras={
            "crashId": report.crash_id,
            "rideguardId": report.rideguard_id,
            "hospitalId": facility.id,
            "hospitalName": facility.name,
            "distance": f"{resolution.distance_km:.3f}",
        },
    )


def respond_to_crash(report: CrashReport, context: AppContext) -> CrashOutcome:
    """
    Resolve the nearest facility for a crash and alert the rider's emergency contacts.

    Raises NotFound when no facility can be resolved and ResolutionFailure when
    the contact lookups fail. Delivery problems only show up in the outcome's
    dispatch report.
    """
    settings = context.settings
    duplicate = _apply_dedup_policy(report, context)

    facilities = load_facilities(context.db, settings.facilities_collection, settings.lookup_timeout_seconds)
    resolution = find_nearest_facility(report.coordinate, facilities)
    logger.info(f"Nearest hospital for crash {report.crash_id}: {resolution.facility.name} "
                f"({resolution.distance_km:.2f} km)")

    outcome = CrashOutcome(resolution=resolution, targets=set(), duplicate=duplicate)
    if duplicate and settings.crash_dedup_policy == "suppress":
        logger.info(f"Skipping notifications for replayed crash {report.crash_id}")
        return outcome

    resolver = RecipientResolver(
        context.db,
        devices_collection=settings.devices_collection,
        users_collection=settings.users_collection,
        lookup_timeout=settings.lookup_timeout_seconds,
        max_workers=settings.max_contact_workers,
    )
    outcome.targets = resolver.resolve_targets(report.rideguard_id)
    logger.info(f"Found {len(outcome.targets)} tokens for rideguard_id: {report.rideguard_id}")

    if not outcome.targets:
        logger.info(f"No tokens found for rideguard_id: {report.rideguard_id}")
        return outcome

    dispatcher = NotificationDispatcher(context.messaging, app=context.app, timeout=settings.dispatch_timeout_seconds)
    try:
        outcome.dispatch_report = dispatcher.dispatch(outcome.targets, build_crash_message(report, resolution, context))
    except Exception as e:
        logger.error(f"Notification fanout failed for rideguard_id {report.rideguard_id}: {str(e)}")
        return outcome

    logger.info(f"Notification sent to {outcome.dispatch_report.succeeded}/{outcome.dispatch_report.attempted} "
                f"devices for rideguard_id: {report.rideguard_id}")
    return outcome
