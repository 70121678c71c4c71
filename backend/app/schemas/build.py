from pydantic import BaseModel


class BuildCreate(BaseModel):
    build_id: str
    image_name: str


class BuildUpdate(BaseModel):
    image_name: str


class BuildResponse(BaseModel):
    id: int
    build_id: str
    image_name: str
    created_at: str
    updated_at: str
