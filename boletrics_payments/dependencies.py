from typing import Optional

from fastapi import Depends

from boletrics_payments.auth import optional_user_token
from boletrics_payments.conekta import ConektaClient
from boletrics_payments.config import Settings, get_settings
from boletrics_payments.outbox import Outbox
from boletrics_payments.tickets import TicketsClient


async def get_gateway(settings: Settings = Depends(get_settings)):
    async with ConektaClient.from_settings(settings) as client:
        yield client


async def get_user_tickets_client(
    settings: Settings = Depends(get_settings),
    token: Optional[str] = Depends(optional_user_token),
):
    async with TicketsClient.from_settings(settings, token=token) as client:
        yield client


async def get_service_tickets_client(settings: Settings = Depends(get_settings)):
    async with TicketsClient.from_settings(settings) as client:
        yield client


def get_outbox() -> Outbox:
    return Outbox()
