"""Tests for freya.validation: the pydantic-backed Schema and validate_body."""

from pydantic import BaseModel

from freya import Freya
from freya.validation import ROOT_ERROR_KEY, Schema, validate_body

from tests.conftest import response_json

JSON = {"Accept": "application/json", "Content-Type": "application/json"}


class NewUser(BaseModel):
    name: str
    age: int


class TestSchema:
    def test_valid(self) -> None:
        ok, data, errors = Schema(NewUser).validate({"name": "Ada", "age": "36"})
        assert ok
        assert data == {"name": "Ada", "age": 36}
        assert errors == {}

    def test_errors_keyed_by_field(self) -> None:
        ok, data, errors = Schema(NewUser).validate({"age": "old"})
        assert not ok
        assert data == {}
        assert set(errors) == {"name", "age"}

    def test_none_is_empty(self) -> None:
        ok, _, errors = Schema.from_fields("Empty", page=(int, 1)).validate(None)
        assert ok
        assert errors == {}

    def test_non_mapping_uses_root_key(self) -> None:
        ok, _, errors = Schema(NewUser).validate(["not", "an", "object"])
        assert not ok
        assert ROOT_ERROR_KEY in errors

    def test_repr(self) -> None:
        assert repr(Schema(NewUser)) == "Schema(NewUser)"


class TestValidateBody:
    def make_app(self) -> Freya:
        app = Freya()

        @app.post("/users", validate_body(Schema(NewUser)))
        def create(request, response, next):
            response.status(201).json(request.state["validated"]["body"])

        return app

    def test_valid_body_stored(self) -> None:
        ctx = self.make_app().simulate("POST", "/users", headers=JSON, body=b'{"name": "Ada", "age": "36"}')
        assert ctx.status == 201
        assert response_json(ctx) == {"name": "Ada", "age": 36}

    def test_invalid_body_is_422(self) -> None:
        ctx = self.make_app().simulate("POST", "/users", headers=JSON, body=b'{"name": "Ada"}')
        assert ctx.status == 422
        error = response_json(ctx)["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert set(error["details"]) == {"age"}

    def test_custom_key(self) -> None:
        app = Freya()
        app.post(
            "/search",
            validate_body(Schema.from_fields("Search", q=(str, ...)), key="search"),
            lambda req, res, next: req.state["validated"],
        )
        ctx = app.simulate("POST", "/search", headers=JSON, body=b'{"q": "odin"}')
        assert response_json(ctx) == {"search": {"q": "odin"}}
