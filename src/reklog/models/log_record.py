"""
Log record data model.

One record per tracked request, serialized with the collector's camelCase
field names. Records are frozen once built.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class LogRecord(BaseModel):
    """
    Finished telemetry unit sent to the collector.

    body, params, request_headers and response are expected to be masked
    already; metadata is passed through as supplied.
    """

    endpoint: str = Field(description="Request path")
    method: str = Field(description="Uppercase HTTP verb")
    response_time_ms: int = Field(
        ge=0,
        alias="responseTime",
        description="Elapsed milliseconds between start and end",
    )
    status_code: int = Field(default=200, alias="statusCode", description="HTTP status code")
    environment: str = Field(description="Environment tag")
    host: Optional[str] = Field(default=None, description="Host tag")

    # Masked payloads
    body: Any = Field(default=None, description="Request body")
    params: Any = Field(default=None, description="Query parameters")
    request_headers: Any = Field(
        default=None,
        alias="requestHeaders",
        description="Selected request headers",
    )
    response: Any = Field(default=None, description="Response payload")

    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form caller metadata")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        """Dictionary in the collector's wire format."""
        return self.model_dump(by_alias=True)
