"""
Validation collaborator backed by pydantic.

A :class:`Schema` wraps a pydantic model and exposes the
``validate(data) -> (ok, sanitized, errors)`` contract used by
``request.validate``, ``request.validate_query`` and ``request.validate_params``.
"""

from typing import Any

from pydantic import BaseModel, create_model
from pydantic import ValidationError as PydanticValidationError

from freya.types import Handler, Next

# Key used for errors not tied to one field
ROOT_ERROR_KEY: str = "_schema"


def _field_name(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or ROOT_ERROR_KEY


class Schema:
    """
    Adapter from a pydantic model to the validation contract.

        class NewUser(BaseModel):
            name: str
            age: int

        data = request.validate(Schema(NewUser))
    """

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model

    @classmethod
    def from_fields(cls, name: str = "Schema", /, **fields: Any) -> "Schema":
        """
        Build a schema without declaring a model class.

        Field values follow pydantic's ``create_model``: a type, or a
        ``(type, default)`` tuple.
        """
        return cls(create_model(name, **fields))

    def validate(self, data: Any) -> tuple[bool, dict[str, Any], dict[str, list[str]]]:
        if data is None:
            data = {}
        try:
            instance = self.model.model_validate(data)
        except PydanticValidationError as exc:
            errors: dict[str, list[str]] = {}
            for error in exc.errors():
                errors.setdefault(_field_name(tuple(error["loc"])), []).append(error["msg"])
            return False, {}, errors
        return True, instance.model_dump(), {}

    def __repr__(self) -> str:
        return f"Schema({self.model.__name__})"


def validate_body(schema: Schema, key: str = "body") -> Handler:
    """
    Middleware validating the parsed body before the route handlers run.

    The sanitized data is stored in ``request.state["validated"][key]``.
    """

    def validator(request: Any, response: Any, next: Next) -> None:
        sanitized = request.validate(schema)
        validated: dict[str, Any] = request.state.setdefault("validated", {})
        validated[key] = sanitized
        next()

    return validator
