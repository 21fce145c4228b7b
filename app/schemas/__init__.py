"""
app.schemas
~~~~~~~~~~~
Pydantic schemas for the REST API and the realtime event payloads.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.live_interactions import (
    CommentData,
    CommentPageData,
    StreamStatsData,
    StreamStatusData,
    ViewerCountData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
