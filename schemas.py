"""
Request validation for the three crawl operations
"""
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, Field, StrictStr, ValidationError, field_validator, model_validator

from browser_utils import parse_proxy
from config import config
from exceptions import InvalidInput
from utils import validate_url

ModelT = TypeVar('ModelT', bound=BaseModel)


class SerpCrawlRequest(BaseModel):
    keywords: List[StrictStr]
    max_results: int = Field(default=config.max_results, ge=1)
    proxy_list: Optional[List[StrictStr]] = None
    min_delay_ms: int = Field(default=config.min_delay_ms, ge=0)
    max_delay_ms: int = Field(default=config.max_delay_ms, ge=0)

    @field_validator('keywords')
    @classmethod
    def keywords_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('"keywords" must be a non-empty array of strings')
        return v

    @field_validator('proxy_list')
    @classmethod
    def proxies_must_be_urls(cls, v):
        if v:
            for proxy in v:
                try:
                    parse_proxy(proxy)
                except ValueError as e:
                    raise ValueError(f'Invalid proxy URL: "{proxy}"') from e
        return v or None

    @model_validator(mode='after')
    def delays_must_be_ordered(self):
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError('"min_delay_ms" must not exceed "max_delay_ms"')
        return self


class CompetitorCrawlRequest(BaseModel):
    urls: List[StrictStr]
    include_snapshots: bool = True

    @field_validator('urls')
    @classmethod
    def urls_must_be_valid(cls, v):
        if not v:
            raise ValueError('"urls" must be a non-empty array of URL strings')
        for url in v:
            if not validate_url(url):
                raise ValueError(f'Invalid URL: "{url}"')
        return v


class ReviewSourceInput(BaseModel):
    type: Literal['google', 'trustpilot', 'g2']
    url: StrictStr
    business_name: StrictStr = Field(validation_alias=AliasChoices('business_name', 'businessName'))

    @field_validator('url')
    @classmethod
    def url_must_be_valid(cls, v):
        if not validate_url(v):
            raise ValueError(f'Invalid URL: "{v}"')
        return v


class ReviewCrawlRequest(BaseModel):
    sources: List[ReviewSourceInput]
    max_reviews_per_source: int = Field(default=config.max_reviews_per_source, ge=1)

    @field_validator('sources')
    @classmethod
    def sources_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('"sources" must be a non-empty array')
        return v


def _format_errors(error: ValidationError) -> str:
    messages = []
    for detail in error.errors():
        location = '.'.join(str(part) for part in detail.get('loc', ()))
        message = detail.get('msg', 'invalid value')
        messages.append(f"{location}: {message}" if location else message)
    return '; '.join(messages)


def parse_request(model: Type[ModelT], **data) -> ModelT:
    """Validate caller input, raising InvalidInput with a readable message"""
    try:
        return model(**{key: value for key, value in data.items() if value is not None})
    except ValidationError as e:
        raise InvalidInput(f"Invalid request: {_format_errors(e)}") from e
