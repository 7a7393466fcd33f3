from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from election_core.errors import validation_error

POLL_NUMBER_PATTERN = r"^[A-Za-z0-9\-_]{1,20}$"

SupportCategory = Literal["strong_support", "likely_support", "undecided", "likely_oppose", "strong_oppose"]
InteractionType = Literal[
    "door_knock",
    "phone_call",
    "text_message",
    "email",
    "event",
    "mailer",
    "social_media",
    "other",
]
InteractionMethod = Literal["in_person", "phone", "email", "text", "mail", "online", "other"]
ContactOrder = Literal["support_score", "last_interaction", "name", "created_at"]

ModelT = TypeVar("ModelT", bound=BaseModel)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


class FilterConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    poll_number: str | None = Field(default=None, alias="pollNumber", pattern=POLL_NUMBER_PATTERN)
    riding: str | None = None
    province: str | None = None
    city: str | None = None
    categories: list[str] = Field(default_factory=list)
    category: str | None = None
    min_support_score: int | None = Field(default=None, alias="minSupportScore", ge=0, le=100)
    max_support_score: int | None = Field(default=None, alias="maxSupportScore", ge=0, le=100)
    support_category: SupportCategory | None = Field(default=None, alias="supportCategory")
    has_interactions: bool | None = Field(default=None, alias="hasInteractions")
    last_interaction_after: datetime | None = Field(default=None, alias="lastInteractionAfter")
    last_interaction_before: datetime | None = Field(default=None, alias="lastInteractionBefore")
    static_contact_ids: list[str] | None = Field(default=None, alias="_staticContactIds")
    is_static: bool = Field(default=False, alias="_isStatic")

    @field_validator(
        "poll_number",
        "riding",
        "province",
        "city",
        "category",
        "support_category",
        "last_interaction_after",
        "last_interaction_before",
        mode="before",
    )
    @classmethod
    def _blank_fields(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("province")
    @classmethod
    def _upper_province(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    @field_validator("categories")
    @classmethod
    def _drop_blank_categories(cls, value: list[str]) -> list[str]:
        return [x for x in value if x]

    @field_validator("last_interaction_after", "last_interaction_before")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @property
    def static_ids(self) -> list[str] | None:
        if self.static_contact_ids:
            return list(dict.fromkeys(self.static_contact_ids))
        return None

    def interaction_fields(self) -> list[str]:
        """Filter keys that need interaction data to evaluate."""
        names = [
            ("minSupportScore", self.min_support_score is not None),
            ("maxSupportScore", self.max_support_score is not None),
            ("supportCategory", self.support_category is not None),
            ("hasInteractions", self.has_interactions is True),
            ("lastInteractionAfter", self.last_interaction_after is not None),
            ("lastInteractionBefore", self.last_interaction_before is not None),
        ]
        return [name for name, active in names if active]

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


class ContactQueryOptions(BaseModel):
    limit: int | None = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
    order_by: ContactOrder | None = None


class SaveListRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id: str | None = None
    account_id: str = Field(alias="accountId", min_length=1)
    user_id: str | None = Field(default=None, alias="userId")
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    filter_config: FilterConfig = Field(default_factory=FilterConfig, alias="filterConfig")
    contact_ids: list[str] | None = Field(default=None, alias="contactIds")
    is_shared: bool = Field(default=False, alias="isShared")

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id(cls, value: Any) -> Any:
        return _blank_to_none(value)


class VoteMarkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    account_id: str = Field(alias="accountId", min_length=1)
    contact_id: str = Field(alias="contactId", min_length=1)
    poll_number: str = Field(alias="pollNumber", pattern=POLL_NUMBER_PATTERN)
    riding: str | None = None
    province: str | None = None
    marked_by: str | None = Field(default=None, alias="markedBy")
    verification_code: str | None = Field(default=None, alias="verificationCode")
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("riding", "province", "marked_by", "verification_code", "notes", mode="before")
    @classmethod
    def _blank_fields(cls, value: Any) -> Any:
        return _blank_to_none(value)


class VoteMarkQuery(BaseModel):
    poll_number: str | None = None
    riding: str | None = None
    province: str | None = None
    marked_by: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    contact_search: str | None = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class InteractionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    account_id: str = Field(alias="accountId", min_length=1)
    contact_id: str = Field(alias="contactId", min_length=1)
    user_id: str | None = Field(default=None, alias="userId")
    interaction_type: InteractionType = Field(alias="interactionType")
    interaction_method: InteractionMethod = Field(alias="interactionMethod")
    support_likelihood: int | None = Field(default=None, alias="supportLikelihood", ge=0, le=100)
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


_FIELD_CODES: dict[str, str] = {
    "account_id": "INVALID_ACCOUNT_ID",
    "accountId": "INVALID_ACCOUNT_ID",
    "contact_id": "INVALID_CONTACT_ID",
    "contactId": "INVALID_CONTACT_ID",
    "poll_number": "INVALID_POLL_NUMBER",
    "pollNumber": "INVALID_POLL_NUMBER",
    "riding": "INVALID_RIDING",
    "province": "INVALID_PROVINCE",
    "interaction_type": "INVALID_INTERACTION_TYPE",
    "interactionType": "INVALID_INTERACTION_TYPE",
    "interaction_method": "INVALID_INTERACTION_METHOD",
    "interactionMethod": "INVALID_INTERACTION_METHOD",
    "support_likelihood": "INVALID_SUPPORT_SCORE",
    "supportLikelihood": "INVALID_SUPPORT_SCORE",
    "name": "INVALID_LIST_NAME",
    "filter_config": "INVALID_FILTER_CONFIG",
    "filterConfig": "INVALID_FILTER_CONFIG",
    "contact_ids": "INVALID_FILTER_CONFIG",
    "contactIds": "INVALID_FILTER_CONFIG",
    "order_by": "INVALID_ORDER_BY",
    "limit": "INVALID_PAGINATION",
    "offset": "INVALID_PAGINATION",
    "start_date": "INVALID_DATE_RANGE",
    "end_date": "INVALID_DATE_RANGE",
}


def _error_code(exc: ValidationError, default_code: str) -> str:
    for item in exc.errors():
        loc = item.get("loc") or ()
        if not loc:
            continue
        field = str(loc[0])
        if field == "name" and item.get("type") == "string_too_long":
            return "LIST_NAME_TOO_LONG"
        code = _FIELD_CODES.get(field)
        if code is not None:
            return code
    return default_code


def parse_model(
    model: type[ModelT],
    data: Any,
    *,
    default_code: str,
    field_codes: bool = True,
) -> ModelT:
    """Validate ``data`` into ``model`` and surface failures as ElectionError."""
    if isinstance(data, model):
        return data
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise validation_error(default_code, f"{model.__name__} must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(x) for x in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else str(exc)
        code = _error_code(exc, default_code) if field_codes else default_code
        raise validation_error(code, message) from exc


def parse_filter_config(data: Any) -> FilterConfig:
    return parse_model(FilterConfig, data, default_code="INVALID_FILTER_CONFIG", field_codes=False)


__all__ = [
    "ContactQueryOptions",
    "FilterConfig",
    "InteractionRequest",
    "SaveListRequest",
    "VoteMarkQuery",
    "VoteMarkRequest",
    "as_utc",
    "parse_filter_config",
    "parse_instant",
    "parse_model",
]
