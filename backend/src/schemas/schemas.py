from pydantic import BaseModel, ConfigDict, StrictStr

class Slide(BaseModel):
    ''' One slideshow entry; unknown keys are carried through untouched.'''
    model_config = ConfigDict(extra="allow")

    src: StrictStr = ""
    title: StrictStr = ""
    sub: StrictStr = ""

class ErrorResponse(BaseModel):
    error: str

class HealthResponse(BaseModel):
    uptime_sec: int
    subscribers: int

class StatsResponse(BaseModel):
    writes_accepted: int
    writes_rejected: int
    broadcasts: int
    subscribers: int
