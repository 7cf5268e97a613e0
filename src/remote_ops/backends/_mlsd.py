"""Reader for machine-readable FTP listings (MLSD / MLST replies, RFC 3659).

Each reply line is a run of ``key=value;`` facts, one space, then the name::

    type=file;size=4161;modify=19970214165800; notes.txt

Lines that cannot be used are reported as :class:`~remote_ops.ParseError`
and left out; they never fail the whole listing.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from remote_ops._errors import InvalidPath, ParseError
from remote_ops._models import Entry, EntryAttributes, EntryType, Permission
from remote_ops._path import DELIMITER

if TYPE_CHECKING:
    from collections.abc import Sequence

log = logging.getLogger(__name__)

_LINE = re.compile(r"\s?((?:\S+=\S+;)*)\s(.*)")

_TIMESTAMP_FORMATS = ("%Y%m%d%H%M%S", "%Y%m%d%H%M%S.%f")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TYPES = {"file": EntryType.FILE, "dir": EntryType.DIRECTORY}


@dataclasses.dataclass
class Listing:
    """Children parsed from one reply.

    :param children: Entries in reply order.
    :param success: ``True`` once a line yielded a trustworthy entry.
    :param errors: Errors of rejected lines and of unusable size facts.
    """

    children: list[Entry] = dataclasses.field(default_factory=list)
    success: bool = False
    errors: list[ParseError] = dataclasses.field(default_factory=list)


def parse_facts(line: str) -> tuple[str, dict[str, str]] | None:
    """Split a reply line into its name and lower-cased facts.

    Facts with an empty key or value are dropped.

    :returns: ``(name, facts)``, or ``None`` if the line does not match the grammar.
    """
    match = _LINE.fullmatch(line)
    if match is None:
        return None
    facts: dict[str, str] = {}
    for fact in match.group(1).split(";"):
        key, _, value = fact.partition("=")
        if not key.strip() or not value.strip():
            continue
        facts[key.lower()] = value
    return match.group(2), facts


def parse_timestamp(value: str) -> int | None:
    """Parse an MDTM style UTC timestamp into milliseconds.

    Seconds precision is tried first, then fractional seconds.

    :returns: Milliseconds since the epoch, or ``None`` if neither format matches.
    """
    for fmt in _TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            log.debug("Timestamp %r does not match %s", value, fmt)
            continue
        return (parsed - _EPOCH) // timedelta(milliseconds=1)
    log.error("Failed to parse timestamp %s", value)
    return None


def read_listing(parent: Entry, replies: Sequence[str] | None, encoding: str = "utf-8") -> Listing:
    """Parse the reply lines of a listing of ``parent``.

    A listing whose first accepted entry is a directory named like
    ``parent`` itself is not trusted on that entry alone; some servers list
    the directory as its own child. An empty reply is an empty listing
    with ``success`` left ``False``.

    :param parent: The listed directory.
    :param replies: Reply lines, ``None`` for no reply.
    :param encoding: Encoding configured for the session; a differing
        ``charset`` fact is logged only.
    """
    listing = Listing()
    if not replies:
        return listing
    for line in replies:
        try:
            entry = _read_line(parent, line, encoding, listing.errors)
        except ParseError as exc:
            log.error("%s", exc)
            listing.errors.append(exc)
            continue
        if entry is None:
            continue
        if not listing.success:
            if entry.is_directory and entry.name == parent.name:
                log.warning("Possibly bogus response: %s", line)
            else:
                listing.success = True
        listing.children.append(entry)
    return listing


def _read_line(parent: Entry, line: str, encoding: str, errors: list[ParseError]) -> Entry | None:
    parsed = parse_facts(line)
    if parsed is None:
        raise ParseError(f"Error parsing line {line}", path=parent.absolute, backend="ftp", line=line)
    name, facts = parsed

    kind = _TYPES.get(facts.get("type", "").lower())
    if kind is None:
        raise ParseError(
            f"Ignored type {facts.get('type')!r} in line {line}", path=parent.absolute, backend="ftp", line=line
        )

    if DELIMITER in name:
        # Servers that echo the full path instead of the bare name.
        prefix = parent.absolute.rstrip(DELIMITER) + DELIMITER
        remainder = name[len(prefix) :] if name.startswith(prefix) else ""
        if not remainder or DELIMITER in remainder:
            log.warning("Skip listing entry with delimiter: %s", name)
            return None
        name = remainder
    if name in ("", ".", ".."):
        raise ParseError(f"Invalid name in line {line}", path=parent.absolute, backend="ftp", line=line)

    try:
        entry = Entry(parent.path / name, kind)
    except InvalidPath as exc:
        raise ParseError(str(exc), path=parent.absolute, backend="ftp", line=line) from exc
    entry.attributes = _attributes(entry, facts, line, encoding, errors)
    return entry


def _attributes(
    entry: Entry, facts: dict[str, str], line: str, encoding: str, errors: list[ParseError]
) -> EntryAttributes:
    attributes = EntryAttributes()
    if "size" in facts:
        try:
            attributes.size = int(facts["size"])
        except ValueError:
            log.error("Failed to parse size fact %s in line %s", facts["size"], line)
            errors.append(ParseError(f"Invalid size {facts['size']!r}", path=entry.absolute, backend="ftp", line=line))
    attributes.owner = facts.get("unix.owner", facts.get("unix.uid"))
    attributes.group = facts.get("unix.group", facts.get("unix.gid"))
    if "unix.mode" in facts:
        try:
            attributes.permission = Permission.from_octal(facts["unix.mode"])
        except ValueError:
            log.error("Failed to parse fact %s", facts["unix.mode"])
    if "modify" in facts:
        attributes.modified = parse_timestamp(facts["modify"])
    if "create" in facts:
        attributes.created = parse_timestamp(facts["create"])
    if "charset" in facts and facts["charset"].lower() != encoding.lower():
        log.error("Incompatible charset %s but session is configured with %s", facts["charset"], encoding)
    return attributes
