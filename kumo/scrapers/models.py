from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from kumo.utils.parsing import clean_link_map, clean_nested_link_map

LinkMap = Dict[str, str]
NestedLinkMap = Dict[str, Dict[str, str]]


class TitlePartial(BaseModel):
    slug: str
    title: Optional[str] = None
    alternate_title: Optional[str] = None
    synopsis: Optional[str] = None
    poster: Optional[str] = None
    rating: Optional[float] = None
    type: Optional[str] = None
    status: Optional[str] = None  # "ongoing", "completed" or "upcoming"
    episode_count: Optional[int] = None
    duration: Optional[str] = None
    release_date: Optional[str] = None
    studio: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    external_id: Optional[int] = None
    source_urls: LinkMap = Field(default_factory=dict)

    @field_validator("genres")
    def genres_normalization(cls, v):
        # Ordered set: first occurrence wins
        seen = []
        for genre in v:
            genre = genre.strip()
            if genre and genre not in seen:
                seen.append(genre)
        return seen


class EpisodeStub(BaseModel):
    episode_number: int
    slug: str
    title: Optional[str] = None
    url: str


class EpisodePartial(BaseModel):
    episode_number: int
    slug: str
    title: Optional[str] = None
    duration: Optional[str] = None
    air_date: Optional[str] = None
    source_urls: LinkMap = Field(default_factory=dict)
    download_links: NestedLinkMap = Field(default_factory=dict)
    streaming_links: LinkMap = Field(default_factory=dict)

    @field_validator("download_links", mode="before")
    def download_links_validation(cls, v):
        return clean_nested_link_map(v)

    @field_validator("streaming_links", mode="before")
    def streaming_links_validation(cls, v):
        return clean_link_map(v)

    @classmethod
    def from_stub(cls, stub: EpisodeStub, source: str):
        return cls(
            episode_number=stub.episode_number,
            slug=stub.slug,
            title=stub.title,
            source_urls={source: stub.url},
        )
