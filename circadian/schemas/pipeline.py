from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One hit from the search provider."""

    title: str
    url: str = ""
    snippet: str = Field(default="", description="Short excerpt shown to the model")


class TopicSelection(BaseModel):
    """Structured output of topic-picking steps."""

    topic: str = Field(min_length=1, max_length=200)
    query: str = Field(default="", description="Search query to research the topic")
    reason: str | None = None
