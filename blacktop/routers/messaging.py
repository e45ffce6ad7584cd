"""Messaging bus inspection endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from blacktop.dependencies import get_messaging_service
from blacktop.models.requests import PublishRequest
from blacktop.models.responses import ApiResponse
from blacktop.services.messaging_service import MessagingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messaging", tags=["messaging"])


@router.get("/topics")
async def list_topics(messaging: MessagingService = Depends(get_messaging_service)):
    """Topics that currently have at least one subscriber."""
    return ApiResponse.ok({
        "topics": messaging.get_topics(),
        "subscriptions": messaging.get_all_subscriptions(),
    })


@router.get("/stats")
async def messaging_stats(messaging: MessagingService = Depends(get_messaging_service)):
    return ApiResponse.ok(messaging.get_stats())


@router.get("/history/{topic}")
async def topic_history(
    topic: str,
    limit: Optional[int] = Query(None, ge=1),
    messaging: MessagingService = Depends(get_messaging_service),
):
    return ApiResponse.ok(messaging.get_message_history(topic, limit))


@router.post("/publish/{topic}")
async def publish_message(
    topic: str,
    body: Optional[PublishRequest] = Body(None),
    messaging: MessagingService = Depends(get_messaging_service),
):
    body = body or PublishRequest()
    if body.broadcast:
        await messaging.broadcast(body.message)
    else:
        await messaging.publish(topic, body.message)
    logger.info(f"Published message to {topic} via HTTP")
    return ApiResponse.ok(message=f"Message published to {topic}")
