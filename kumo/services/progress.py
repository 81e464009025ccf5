import hashlib
import hmac
import time
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp
import orjson
from pydantic import BaseModel, field_validator

from kumo.core.logger import logger

EVENT_NAMES = ("job-created", "job-updated", "job-completed", "job-failed")


class ProgressEvent(BaseModel):
    name: str
    job_id: str
    status: Optional[str] = None
    progress: Optional[int] = None
    error: Optional[str] = None
    result: Optional[Any] = None

    @field_validator("name")
    def known_event_name(cls, v):
        if v not in EVENT_NAMES:
            raise ValueError(f"unknown progress event: {v}")
        return v

    def data(self) -> dict:
        return self.model_dump(exclude={"name"}, exclude_none=True)


class ProgressPublisher(ABC):
    @abstractmethod
    async def publish(self, event: ProgressEvent):
        pass

    async def close(self):
        pass


class LogProgressPublisher(ProgressPublisher):
    async def publish(self, event: ProgressEvent):
        details = ", ".join(
            f"{key}={value}" for key, value in event.data().items() if key != "job_id"
        )
        logger.log("PUBLISHER", f"{event.name} {event.job_id} {details}".rstrip())


class PusherProgressPublisher(ProgressPublisher):
    """Triggers events through the Pusher Channels HTTP API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        app_id: str,
        key: str,
        secret: str,
        cluster: str = "mt1",
        channel: str = "scrape-jobs",
        timeout: int = 5,
    ):
        self.session = session
        self.app_id = app_id
        self.key = key
        self.secret = secret
        self.channel = channel
        self.host = f"api-{cluster}.pusher.com"
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def path(self):
        return f"/apps/{self.app_id}/events"

    def sign(self, body: bytes, timestamp: int = None) -> dict:
        params = {
            "auth_key": self.key,
            "auth_timestamp": str(timestamp or int(time.time())),
            "auth_version": "1.0",
            "body_md5": hashlib.md5(body).hexdigest(),
        }
        query = urlencode(sorted(params.items()))
        to_sign = f"POST\n{self.path}\n{query}"
        params["auth_signature"] = hmac.new(
            self.secret.encode("utf-8"), to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        return params

    async def publish(self, event: ProgressEvent):
        body = orjson.dumps(
            {
                "name": event.name,
                "channel": self.channel,
                "data": orjson.dumps(event.data()).decode("utf-8"),
            }
        )
        async with self.session.post(
            f"https://{self.host}{self.path}",
            params=self.sign(body),
            data=body,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        ) as response:
            if response.status != 200:
                raise RuntimeError(
                    f"Pusher returned HTTP {response.status}: {await response.text()}"
                )


def build_publisher(settings, session: aiohttp.ClientSession) -> ProgressPublisher:
    if settings.PROGRESS_PUBLISHER == "pusher":
        if settings.PUSHER_APP_ID and settings.PUSHER_KEY and settings.PUSHER_SECRET:
            return PusherProgressPublisher(
                session,
                settings.PUSHER_APP_ID,
                settings.PUSHER_KEY,
                settings.PUSHER_SECRET,
                settings.PUSHER_CLUSTER,
                settings.PUSHER_CHANNEL,
            )
        logger.warning(
            "PROGRESS_PUBLISHER=pusher but Pusher credentials are missing, logging events instead"
        )
    return LogProgressPublisher()


async def notify(publisher: ProgressPublisher, event: ProgressEvent):
    """Publishes `event`, logging instead of raising on any failure."""
    if publisher is None:
        return
    try:
        await publisher.publish(event)
    except Exception as e:
        logger.warning(f"Failed to publish {event.name} for job {event.job_id}: {e}")
