"""JSON response class shared by all routes."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi.responses import JSONResponse


class GeoQuestJSONEncoder(json.JSONEncoder):
  """Encode Decimal and datetime values that come back from Postgres rows."""

  def default(self, obj: Any) -> Any:
    if isinstance(obj, Decimal):
      return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, datetime | date):
      return obj.isoformat()
    return super().default(obj)


class GeoQuestJSONResponse(JSONResponse):
  def render(self, content: Any) -> bytes:
    return json.dumps(content, ensure_ascii=False, allow_nan=False, indent=None, separators=(",", ":"), cls=GeoQuestJSONEncoder).encode("utf-8")
