"""Codec for the structured block embedded in calendar event bodies.

The block is a flat mapping rendered one key per line::

    original_title: [LIVE] Foo
    references:
      - https://www.youtube.com/watch?v=abc
    youtube_id: abc

Scalars render as ``key: value``; lists render as ``key:`` followed by
``  - item`` lines. Keys are written in sorted order so that the text of a
body is stable across runs.
"""
import re
from typing import Dict, Iterable, List, Optional, Union

from processor.exceptions import BodyFormatError, MergeConflictError
from processor.models import EventBody

FieldValue = Union[str, List[str]]

LIST_INDENT = '  '
LIST_MARKER = '- '

SCALAR_FIELDS = ('original_title', 'youtube_id')
LIST_FIELDS = ('references', 'participants')

_YOUTUBE_URL = re.compile(r'^https?://(www\.|m\.)?(youtube\.com/watch|youtu\.be/)')


def encode_fields(fields: Dict[str, FieldValue]) -> str:
    """
    Render a flat mapping as structured block text.

    Args:
        fields: Mapping of key to scalar string or list of strings

    Returns:
        Block text, one key per line, terminated by a newline
    """
    lines = []
    for key in sorted(fields):
        value = fields[key]
        if isinstance(value, list):
            lines.append(f"{key}:")
            lines.extend(f"{LIST_INDENT}{LIST_MARKER}{item}" for item in value)
        else:
            lines.append(f"{key}: {value}")
    return ''.join(line + '\n' for line in lines)


def decode_fields(text: str) -> Dict[str, FieldValue]:
    """
    Parse structured block text into a flat mapping.

    Args:
        text: Event body text

    Returns:
        Mapping of key to scalar string or list of strings

    Raises:
        BodyFormatError: If a line does not follow the grammar
    """
    fields: Dict[str, FieldValue] = {}
    current: Optional[List[str]] = None

    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue

        if line.startswith(LIST_INDENT):
            item = line.strip()
            if current is None:
                raise BodyFormatError('list item outside of a list', number)
            if not item.startswith(LIST_MARKER.strip()):
                raise BodyFormatError(f"expected '- item', got '{item}'", number)
            current.append(item[1:].strip())
            continue

        key, colon, value = line.partition(':')
        key = key.strip()
        if not colon:
            raise BodyFormatError(f"missing ':' in '{line}'", number)
        if not key:
            raise BodyFormatError('empty key', number)
        if key in fields:
            raise BodyFormatError(f"duplicate key '{key}'", number)

        value = value.strip()
        if value:
            fields[key] = value
            current = None
        else:
            current = []
            fields[key] = current

    return fields


def body_to_fields(body: EventBody) -> Dict[str, FieldValue]:
    """Flatten an EventBody, leaving out empty fields."""
    fields: Dict[str, FieldValue] = dict(body.extra)
    if body.original_title:
        fields['original_title'] = body.original_title
    if body.youtube_id:
        fields['youtube_id'] = body.youtube_id
    if body.references:
        fields['references'] = list(body.references)
    if body.participants:
        fields['participants'] = list(body.participants)
    return fields


def body_from_fields(fields: Dict[str, FieldValue]) -> EventBody:
    """
    Build an EventBody from a decoded mapping.

    Raises:
        MergeConflictError: If a known field has the wrong shape
    """
    for key in SCALAR_FIELDS:
        if isinstance(fields.get(key), list):
            raise MergeConflictError(key, 'scalar', 'list')
    for key in LIST_FIELDS:
        if isinstance(fields.get(key), str):
            raise MergeConflictError(key, 'list', 'scalar')

    known = SCALAR_FIELDS + LIST_FIELDS
    return EventBody(
        original_title=fields.get('original_title'),
        references=list(fields.get('references', [])),
        youtube_id=fields.get('youtube_id'),
        participants=list(fields.get('participants', [])),
        extra={key: value for key, value in fields.items() if key not in known}
    )


def encode_body(body: EventBody) -> str:
    return encode_fields(body_to_fields(body))


def decode_body(text: str) -> EventBody:
    return body_from_fields(decode_fields(text))


def is_youtube_url(url: str) -> bool:
    return bool(_YOUTUBE_URL.match(url))


def collapse_youtube_references(references: Iterable[str]) -> List[str]:
    """Drop every YouTube reference after the first, and exact duplicates."""
    kept: List[str] = []
    seen_youtube = False
    for reference in references:
        if is_youtube_url(reference):
            if seen_youtube:
                continue
            seen_youtube = True
        if reference not in kept:
            kept.append(reference)
    return kept


def _union(*lists: Iterable[str]) -> List[str]:
    values = set()
    for items in lists:
        values.update(items)
    return sorted(values)


def _merge_extra(old: Dict[str, FieldValue], new: Dict[str, FieldValue]) -> Dict[str, FieldValue]:
    merged: Dict[str, FieldValue] = {}
    for key in sorted(set(old) | set(new)):
        if key not in new:
            merged[key] = old[key]
            continue
        if key not in old:
            merged[key] = new[key]
            continue

        old_value, new_value = old[key], new[key]
        if isinstance(old_value, list) != isinstance(new_value, list):
            expected = 'list' if isinstance(old_value, list) else 'scalar'
            actual = 'list' if isinstance(new_value, list) else 'scalar'
            raise MergeConflictError(key, expected, actual)
        if isinstance(new_value, list):
            merged[key] = _union(old_value, new_value)
        else:
            merged[key] = new_value
    return merged


def merge_bodies(old: EventBody, new: EventBody) -> EventBody:
    """
    Combine the stored body of an event with a freshly built one.

    Scalars from ``new`` win when set. Lists are unioned, deduplicated and
    sorted. Only the first YouTube reference is retained, looking at the
    references of ``new`` before those of ``old``.

    Raises:
        MergeConflictError: If an unknown field is a list on one side and a
            scalar on the other
    """
    references = collapse_youtube_references(list(new.references) + list(old.references))
    return EventBody(
        original_title=new.original_title if new.original_title is not None else old.original_title,
        references=sorted(references),
        youtube_id=new.youtube_id if new.youtube_id is not None else old.youtube_id,
        participants=_union(old.participants, new.participants),
        extra=_merge_extra(old.extra, new.extra)
    )
