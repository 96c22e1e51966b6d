"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .gate import *  # noqa: F403
from .guest import *  # noqa: F403
