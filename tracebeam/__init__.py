# -*- coding: utf-8 -*-

__author__ = """tracebeam"""
__email__ = 'support@tracebeam.dev'

from tracebeam.meta import get_version

VERSION = get_version()

from tracebeam.client import TraceBeam, TraceBeamCore  # noqa: E402
from tracebeam.config import ClientConfig  # noqa: E402
from tracebeam.sampling import is_in_sample  # noqa: E402
from tracebeam.storage import JsonFileStore, MemoryStore, NoopStore  # noqa: E402

__all__ = [
    "VERSION",
    "TraceBeam",
    "TraceBeamCore",
    "ClientConfig",
    "is_in_sample",
    "JsonFileStore",
    "MemoryStore",
    "NoopStore",
]
