"""Validate-then-branch request parsing.

``validate`` never raises for bad input; callers branch on the result::

    result = validate(LoginRequest, payload)
    if isinstance(result, Invalid):
        raise result.to_error()
    body = result.value
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from amora.service.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

_VALUE_ERROR_PREFIX = "Value error, "


@dataclass(frozen=True)
class Ok(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True)
class Invalid:
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.errors:
            return "Validation failed"
        first = self.errors[0]
        return f"{first['field']}: {first['message']}" if first["field"] else first["message"]

    def to_error(self) -> ValidationError:
        return ValidationError(self.message, detail={"errors": self.errors})


Validated = Union[Ok[ModelT], Invalid]


def format_errors(exc: PydanticValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        message = str(err.get("msg", "invalid value"))
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX):]
        errors.append(
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": message,
            }
        )
    return errors


def validate(model: Type[ModelT], payload: Any) -> Validated:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return Invalid([{"field": "", "message": "request body must be a JSON object"}])
    try:
        return Ok(model.model_validate(payload))
    except PydanticValidationError as exc:
        return Invalid(format_errors(exc))


__all__ = ["Invalid", "Ok", "Validated", "format_errors", "validate"]
