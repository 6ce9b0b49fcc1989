# ABOUTME: Request parameter sanitization for the forum archive API
# ABOUTME: Coerces pagination values, normalizes search text and tag lists, collects validation errors

import re
from dataclasses import dataclass, field
from typing import Any

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_SEARCH_LENGTH = 1000
MAX_TAGS = 20

TAG_SPLIT_PATTERN = re.compile(r"[\s,]+")
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class ValidationError:
    """A single rejected parameter."""

    field: str
    message: str


@dataclass
class ValidationResult:
    """Outcome of validating a set of request parameters."""

    errors: list[ValidationError] = field(default_factory=list)
    sanitized_values: dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, field_name: str, message: str):
        self.errors.append(ValidationError(field_name, message))

    def get_error_messages(self) -> list[str]:
        return [f"{error.field}: {error.message}" for error in self.errors]


class InputValidator:
    """Sanitizes raw query-string values.

    Pagination values never fail validation: anything absent, non-numeric or
    below 1 falls back to the default. There is no upper bound on either.
    """

    def coerce_positive_int(self, value: Any, default: int) -> int:
        if value is None or isinstance(value, bool):
            return default
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return default
        return number if number >= 1 else default

    def validate_page(self, value: Any) -> int:
        return self.coerce_positive_int(value, DEFAULT_PAGE)

    def validate_limit(self, value: Any) -> int:
        return self.coerce_positive_int(value, DEFAULT_LIMIT)

    def validate_search(self, value: Any) -> tuple[str, str | None]:
        """Return (search, error). Empty search disables the filter."""
        search = "" if value is None else str(value)
        if len(search) > MAX_SEARCH_LENGTH:
            return "", f"must be at most {MAX_SEARCH_LENGTH} characters"
        if "\x00" in search:
            return "", "must not contain NUL characters"
        return search, None

    def validate_tags(self, value: Any) -> tuple[list[str], str | None]:
        """Split a space/comma delimited tag list into unique lowercase tags."""
        if not value:
            return [], None
        if "\x00" in str(value):
            return [], "must not contain NUL characters"
        tags = []
        for tag in TAG_SPLIT_PATTERN.split(str(value).lower()):
            if tag and tag not in tags:
                tags.append(tag)
        if len(tags) > MAX_TAGS:
            return [], f"at most {MAX_TAGS} tags may be given"
        return tags, None

    def validate_flag(self, value: Any) -> tuple[bool, str | None]:
        if value is None:
            return False, None
        normalized = str(value).strip().lower()
        if normalized in TRUE_VALUES:
            return True, None
        if normalized in FALSE_VALUES:
            return False, None
        return False, "must be true or false"

    def validate_all(self, **params) -> ValidationResult:
        """
        Validate any combination of page, limit, search, tags and include_replies.

        Returns:
            ValidationResult whose sanitized_values hold the cleaned values.
        """
        result = ValidationResult()
        sanitized = result.sanitized_values

        if "page" in params:
            sanitized["page"] = self.validate_page(params["page"])
        if "limit" in params:
            sanitized["limit"] = self.validate_limit(params["limit"])

        if "search" in params:
            sanitized["search"], error = self.validate_search(params["search"])
            if error:
                result.add_error("search", error)

        if "tags" in params:
            sanitized["tags"], error = self.validate_tags(params["tags"])
            if error:
                result.add_error("tags", error)

        if "include_replies" in params:
            sanitized["include_replies"], error = self.validate_flag(params["include_replies"])
            if error:
                result.add_error("include_replies", error)

        return result


validator = InputValidator()
