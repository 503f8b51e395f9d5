"""Microsoft Graph client for Outlook calendar events."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

from dispatch.async_dispatcher import AsyncDispatcher
from processor.exceptions import CalendarNotFoundError, RemoteRequestError
from processor.models import (
    EVENT_SINGLE,
    Calendar,
    CalendarEvent,
    format_timestamp,
    parse_timestamp,
)
from sources.http_client import JsonHttpClient

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"

# Ask Graph for UTC times and plain text bodies
PREFER_HEADER = 'outlook.timezone="UTC", outlook.body-content-type="text"'


def html_to_text(html: str) -> str:
    """
    Reduce an HTML event body to the text a user sees.

    Line breaks and block ends become newlines; entities are decoded.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for block in soup.find_all(['div', 'p']):
        block.append('\n')
    text = soup.get_text()
    text = text.replace('\xa0', ' ').replace('\r', '')
    return '\n'.join(line.rstrip() for line in text.split('\n')).strip()


def _parse_graph_time(value: Dict[str, str]) -> datetime:
    parsed = parse_timestamp(value['dateTime'])
    zone = value.get('timeZone') or 'UTC'
    if zone.upper() in ('UTC', 'Z'):
        return parsed
    try:
        return parsed.replace(tzinfo=ZoneInfo(zone)).astimezone(timezone.utc)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone '{zone}', assuming UTC")
        return parsed


def event_from_graph(item: Dict[str, Any]) -> CalendarEvent:
    """Build a CalendarEvent from a Graph ``event`` resource."""
    body = item.get('body') or {}
    content = body.get('content') or ''
    if (body.get('contentType') or '').lower() == 'html':
        content = html_to_text(content)
    return CalendarEvent(
        event_id=item['id'],
        subject=item.get('subject') or '',
        start=_parse_graph_time(item['start']),
        end=_parse_graph_time(item['end']),
        body=content.replace('\r\n', '\n'),
        event_type=item.get('type') or EVENT_SINGLE
    )


def apply_delta(events: Dict[str, Dict[str, Any]], delta: List[Dict[str, Any]]) -> None:
    """Apply one page of delta results to a raw event store in place."""
    for item in delta:
        if '@removed' in item:
            events.pop(item['id'], None)
        else:
            events[item['id']] = {**events.get(item['id'], {}), **item}


class GraphCalendarClient:
    """Client for the Outlook calendar endpoints of Microsoft Graph."""

    PAGE_SIZE = 1000

    def __init__(
        self,
        token_provider,
        dispatcher: AsyncDispatcher,
        timeout: int = 60,
        retry_limit: Optional[int] = 10,
        proxy: Optional[str] = None
    ):
        """
        Initialize the Graph client.

        Args:
            token_provider: Object with a ``get_access_token()`` method
            dispatcher: Dispatcher admitting each request
            timeout: HTTP request timeout in seconds (default: 60)
            retry_limit: Attempts per request, None to retry forever
            proxy: Optional HTTP(S) proxy URL
        """
        self.token_provider = token_provider
        self.http = JsonHttpClient(
            GRAPH_URL,
            dispatcher,
            timeout=timeout,
            retry_limit=retry_limit,
            proxy=proxy
        )

    async def _request(self, method: str, path: str, params=None, json=None) -> Any:
        token = await asyncio.to_thread(self.token_provider.get_access_token)
        headers = {
            'Authorization': f"Bearer {token}",
            'Prefer': PREFER_HEADER,
        }
        return await self.http.request(method, path, params=params, json=json, headers=headers)

    async def _get_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self._request('GET', path, params=params) or {}
        items = list(data.get('value', []))
        while data.get('@odata.nextLink'):
            data = await self._request('GET', data['@odata.nextLink']) or {}
            items.extend(data.get('value', []))
        return items

    async def list_calendars(self) -> List[Calendar]:
        items = await self._get_pages('/me/calendars')
        return [Calendar(calendar_id=item['id'], name=item.get('name', '')) for item in items]

    async def find_calendar(self, name: str) -> str:
        """
        Resolve a calendar display name (case-sensitive) to its id.

        Raises:
            CalendarNotFoundError: If no calendar has that name
        """
        for calendar in await self.list_calendars():
            if calendar.name == name:
                return calendar.calendar_id
        raise CalendarNotFoundError(f"cannot find an Outlook calendar with name {name}")

    async def get_calendar_view(self, calendar_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        """
        Fetch every event between ``start`` and ``end``, series expanded.

        Returns:
            Events in the order returned by Graph
        """
        items = await self._get_pages(f"/me/calendars/{calendar_id}/calendarView", {
            'startDateTime': format_timestamp(start),
            'endDateTime': format_timestamp(end),
            '$top': self.PAGE_SIZE,
        })
        logger.info(f"Fetched {len(items)} events from calendar view")
        return [event_from_graph(item) for item in items]

    async def _follow_delta(self, data: Dict[str, Any], events: Dict[str, Dict[str, Any]]) -> str:
        apply_delta(events, data.get('value', []))
        while data.get('@odata.nextLink'):
            data = await self._request('GET', data['@odata.nextLink']) or {}
            apply_delta(events, data.get('value', []))
        return data['@odata.deltaLink']

    async def get_delta_initial(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
        events: Dict[str, Dict[str, Any]]
    ) -> str:
        """
        Start a delta query for a time range, filling ``events`` in place.

        Returns:
            Delta link for the next incremental query
        """
        data = await self._request('GET', f"/me/calendars/{calendar_id}/calendarView/delta", params={
            'startDateTime': format_timestamp(start),
            'endDateTime': format_timestamp(end),
        }) or {}
        return await self._follow_delta(data, events)

    async def get_delta(self, delta_link: str, events: Dict[str, Dict[str, Any]]) -> str:
        """Apply changes since ``delta_link`` to ``events``; return the new link."""
        data = await self._request('GET', delta_link) or {}
        return await self._follow_delta(data, events)

    async def create_event(self, calendar_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request('POST', f"/me/calendars/{calendar_id}/events", json=payload)

    async def update_event(self, event_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request('PATCH', f"/me/events/{event_id}", json=payload)

    async def delete_event(self, event_id: str) -> None:
        try:
            await self._request('DELETE', f"/me/events/{event_id}")
        except RemoteRequestError as e:
            if e.status != 404:
                raise
            logger.warning(f"Event {event_id} was already deleted")
