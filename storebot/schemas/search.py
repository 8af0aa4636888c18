from pydantic import BaseModel


class SearchItem(BaseModel):
    id: str
    category: str
    title: str
    excerpt: str | None = None
    url: str | None = None
    score: float | None = None


class SearchResponse(BaseModel):
    query: str
    total: int
    content_types: list[str] | None = None
    items: list[SearchItem]
