from pydantic import BaseModel


class CategoryResponse(BaseModel):
    slug: str
    description: str | None = None
