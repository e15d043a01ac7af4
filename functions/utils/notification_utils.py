# utils/notification_utils.py

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from firebase_functions import logger
from firebase_admin import messaging

from .errors import DispatchFailure

# FCM rejects send_each batches larger than this
FCM_BATCH_LIMIT = 500

DEFAULT_TITLE = "Default Title"
DEFAULT_BODY = "Default Body"


@dataclass
class NotificationMessage:
    """Title/body pair plus optional string extras for the FCM data payload."""
    title: str
    body: str
    extras: Dict[str, str] = field(default_factory=dict)

    def to_data(self) -> Dict[str, str]:
        data = {key: str(value) for key, value in self.extras.items()}
        data["title"] = self.title
        data["body"] = self.body
        return data


@dataclass
class DispatchReport:
    """Outcome of one fanout."""
    attempted: int = 0
    succeeded: int = 0
    failures: List[DispatchFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


def _mask_token(token: str) -> str:
    return f"{token[:20]}..." if len(token) > 20 else token


class NotificationDispatcher:
    """
    Sends one FCM data message per target token.

    Targets go out through messaging.send_each in batches of at most
    FCM_BATCH_LIMIT; each batch runs on a worker thread so it can be bounded by
    ``timeout``. A failed token or a failed batch is recorded in the report and
    never stops the remaining sends.
    """

    def __init__(self, transport=messaging, app=None, timeout: Optional[float] = None):
        self.transport = transport
        self.app = app
        self.timeout = timeout

    def dispatch(self, targets: Iterable[str], message: NotificationMessage) -> DispatchReport:
        tokens = sorted(set(targets))
        report = DispatchReport()
        if not tokens:
            logger.info("No notification targets, nothing to dispatch")
            return report

        report.attempted = len(tokens)
        batches = [tokens[i:i + FCM_BATCH_LIMIT] for i in range(0, len(tokens), FCM_BATCH_LIMIT)]

        executor = ThreadPoolExecutor(max_workers=len(batches))
        try:
            futures = [(batch, executor.submit(self._send_batch, batch, message)) for batch in batches]
            for batch, future in futures:
                try:
                    batch_response = future.result(timeout=self.timeout)
                except FutureTimeoutError:
                    logger.error(f"Timed out sending notification batch of {len(batch)}")
                    self._fail_batch(report, batch, "timed out")
                    continue
                except Exception as e:
                    logger.error(f"Failed to send notification batch of {len(batch)}: {str(e)}")
                    self._fail_batch(report, batch, str(e))
                    continue

                self._record_batch(report, batch, batch_response)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Notification complete: {report.succeeded} successful, {report.failed} failed")
        return report

    def _send_batch(self, batch: List[str], message: NotificationMessage):
        data = message.to_data()
        messages = [messaging.Message(data=data, token=token) for token in batch]
        return self.transport.send_each(messages, app=self.app)

    @staticmethod
    def _fail_batch(report: DispatchReport, batch: List[str], reason: str) -> None:
        for token in batch:
            report.failures.append(DispatchFailure(target=token, reason=reason))

    @staticmethod
    def _record_batch(report: DispatchReport, batch: List[str], batch_response) -> None:
        responses = list(getattr(batch_response, "responses", []) or [])
        for index, token in enumerate(batch):
            if index >= len(responses):
                report.failures.append(DispatchFailure(target=token, reason="no response from messaging service"))
                continue

            send_response = responses[index]
            if send_response.success:
                report.succeeded += 1
                logger.info(f"Successfully sent notification: {send_response.message_id}")
            else:
                reason = str(send_response.exception) if send_response.exception else "unknown error"
                logger.error(f"Failed to send notification to token {_mask_token(token)}: {reason}")
                report.failures.append(DispatchFailure(target=token, reason=reason))


def send_single_notification(token: str, title: Optional[str] = None, body: Optional[str] = None,
                             transport=messaging, app=None) -> str:
    """Send one visible notification to a single token and return the FCM message id."""
    message = messaging.Message(
        notification=messaging.Notification(
            title=title or DEFAULT_TITLE,
            body=body or DEFAULT_BODY,
        ),
        token=token,
    )
    response = transport.send(message, app=app)
    logger.info(f"Successfully sent notification: {response}")
    return response
