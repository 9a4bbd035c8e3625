"""Helpers shared by CLI commands"""

import re
from datetime import timedelta

import click

from ..core.config import MIB, Settings
from ..core.exceptions import StoreError
from ..storage import Database, HistoryStore

INTERVAL_PATTERN = re.compile(r'^\s*(\d+)\s*([smhd]?)\s*$')
INTERVAL_UNITS = {'s': 'seconds', 'm': 'minutes', 'h': 'hours', 'd': 'days', '': 'minutes'}


def parse_interval(value: str) -> timedelta:
    """Parse '30s', '5m', '1h' or a bare number of minutes"""
    match = INTERVAL_PATTERN.match(value or '')
    if not match or int(match.group(1)) <= 0:
        raise click.BadParameter(f"Invalid interval '{value}', expected e.g. 30s, 5m or 1h")
    return timedelta(**{INTERVAL_UNITS[match.group(2)]: int(match.group(1))})


def open_store(settings: Settings) -> HistoryStore:
    """Connect to the configured database and make sure the schema exists"""
    try:
        database = Database.from_config(settings.database)
        database.init_schema()
    except StoreError as e:
        raise click.ClickException(str(e))
    return HistoryStore(database)


def format_cores(cores: float) -> str:
    return f"{cores:.3f}"


def format_mib(size: int) -> str:
    return f"{(size or 0) // MIB}Mi"


def status_style(status: str) -> str:
    return {
        'over-provisioned': 'yellow',
        'under-provisioned': 'red',
        'optimal': 'green',
    }.get(status, 'white')
