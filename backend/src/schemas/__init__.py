from .schemas import Slide, ErrorResponse, HealthResponse, StatsResponse
