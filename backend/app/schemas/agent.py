from pydantic import BaseModel, HttpUrl


class AgentCreate(BaseModel):
    host: HttpUrl


class AgentUpdate(BaseModel):
    host: HttpUrl


class AgentResponse(BaseModel):
    id: int
    host: str
    created_at: str
    updated_at: str
