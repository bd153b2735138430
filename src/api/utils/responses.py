"""orjson-backed JSON responses.

``ORJSONResponse`` is the application's default response class, so route
return values, including datetimes in subscription views, are rendered by orjson.
"""

import orjson
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ORJSONResponse(JSONResponse):
    media_type = "application/json"

    def render(self, content: object) -> bytes:
        """Serialize plain data or a Pydantic model with sorted keys."""
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json")
        return orjson.dumps(content, option=orjson.OPT_SORT_KEYS)
