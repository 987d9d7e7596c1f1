from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from helpdesk.core.config import Settings, get_settings
from helpdesk.resolution.workflow import InFlightRegistry, ResolutionWorkflow
from helpdesk.sharepoint.attachments import AttachmentStore, GraphAttachmentStrategy, RestAttachmentStrategy
from helpdesk.sharepoint.auth import StaticTokenProvider, TokenProvider, sharepoint_default_scopes
from helpdesk.sharepoint.lists import SharePointListClient
from helpdesk.sharepoint.retry import RetryPolicy, Sleep
from helpdesk.tickets.store import TicketStoreClient

# shared by every workflow built in this process
_IN_FLIGHT = InFlightRegistry()


@dataclass(slots=True)
class HelpdeskServices:
    """Adapters sharing one HTTP client for the duration of an interaction."""

    settings: Settings
    tickets: TicketStoreClient
    remote_list: SharePointListClient
    attachments: AttachmentStore
    workflow: ResolutionWorkflow


def build_services(
    settings: Settings,
    http: httpx.AsyncClient,
    *,
    graph_tokens: TokenProvider | None = None,
    sharepoint_tokens: TokenProvider | None = None,
    sleep: Sleep | None = None,
    in_flight: InFlightRegistry | None = None,
) -> HelpdeskServices:
    graph_tokens = graph_tokens or StaticTokenProvider(settings.graph_token)
    sharepoint_tokens = sharepoint_tokens or StaticTokenProvider(settings.sharepoint_token)
    sharepoint_scopes = settings.sharepoint_scopes or sharepoint_default_scopes(settings.sharepoint_rest_url)

    tickets = TicketStoreClient(http, settings.ticket_api_base_url)
    remote_list = SharePointListClient(
        http,
        graph_tokens,
        graph_base_url=settings.graph_base_url,
        site_id=settings.sharepoint_site_id,
        list_id=settings.sharepoint_list_id,
        scopes=settings.graph_scopes,
    )
    attachments = AttachmentStore(
        [
            GraphAttachmentStrategy(
                http,
                graph_tokens,
                graph_base_url=settings.graph_base_url,
                site_id=settings.sharepoint_site_id,
                list_id=settings.sharepoint_list_id,
                scopes=settings.graph_scopes,
                conflict_codes=settings.upload_conflict_status_codes,
            ),
            RestAttachmentStrategy(
                http,
                sharepoint_tokens,
                rest_url=settings.sharepoint_rest_url,
                list_id=settings.sharepoint_list_id,
                scopes=sharepoint_scopes,
                retry_policy=RetryPolicy(
                    initial_delay=settings.upload_initial_delay,
                    backoff=settings.upload_backoff,
                    max_delay=settings.upload_max_delay,
                ),
                conflict_codes=settings.upload_conflict_status_codes,
                sleep=sleep,
            ),
        ]
    )
    workflow = ResolutionWorkflow(
        store=tickets,
        remote_list=remote_list,
        attachments=attachments,
        done_photo_field=settings.done_photo_field or None,
        in_flight=in_flight if in_flight is not None else _IN_FLIGHT,
    )
    return HelpdeskServices(
        settings=settings,
        tickets=tickets,
        remote_list=remote_list,
        attachments=attachments,
        workflow=workflow,
    )


@asynccontextmanager
async def open_services(settings: Settings | None = None, **kwargs) -> AsyncIterator[HelpdeskServices]:
    settings = settings or get_settings()
    async with httpx.AsyncClient(follow_redirects=True) as http:
        yield build_services(settings, http, **kwargs)
