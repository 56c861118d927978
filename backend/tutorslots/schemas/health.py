from .base import StandardizedModel


class HealthResponse(StandardizedModel):
    status: str
    service: str
    version: str
    environment: str
    timestamp: str
    database: str
