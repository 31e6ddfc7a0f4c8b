"""Value generator plugins: current date/time and random identifiers."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.errors import ArityError, PluginEvaluationError
from plugins.registry import simple_plugin


@simple_plugin
class DateGenerator:
    """
    dateTime()                       → ISO-8601, system zone
    dateTime("%Y-%m-%d")             → strftime pattern, system zone
    dateTime("%H:%M", "Asia/Tokyo")  → pattern in the given zone
    An empty pattern keeps the ISO-8601 format.
    """
    name = "dateTime"

    def calculate(self, *args: Any) -> str:
        if len(args) > 2:
            raise ArityError(f"dateTime expects at most 2 arguments, got {len(args)}")
        pattern = str(args[0]) if args and args[0] is not None else ""
        zone = str(args[1]) if len(args) == 2 and args[1] is not None else ""

        if zone:
            try:
                now = datetime.now(ZoneInfo(zone))
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise PluginEvaluationError(f"Unknown time zone '{zone}'") from e
        else:
            now = datetime.now().astimezone()

        return now.strftime(pattern) if pattern else now.isoformat()


@simple_plugin
class UUIDGenerator:
    name = "uuid"

    def calculate(self, *args: Any) -> str:
        return str(uuid.uuid4())
