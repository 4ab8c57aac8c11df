"""Unit tests for validation.py - JSON Schema validation."""

from validation import schema_errors, validate_document, validate_schema


class TestValidateSchema:
    """Tests for validate_schema function."""

    def test_valid_simple_schema(self):
        """Test validation of a simple valid schema."""
        schema = {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "count": {"type": "integer"},
            },
        }
        is_valid, error = validate_schema(schema)
        assert is_valid is True
        assert error is None

    def test_valid_schema_with_nullable_type(self):
        """Test validation of a schema using a type list."""
        schema = {"type": "object", "properties": {"owner": {"type": ["string", "null"]}}}
        is_valid, error = validate_schema(schema)
        assert is_valid is True

    def test_valid_schema_with_conditional(self):
        """Test validation of a schema using if/then."""
        schema = {
            "type": "object",
            "if": {"properties": {"type": {"const": "sql"}}},
            "then": {"required": ["password"]},
        }
        is_valid, error = validate_schema(schema)
        assert is_valid is True

    def test_invalid_schema_bad_type(self):
        """Test that an invalid type is rejected."""
        schema = {"type": "not-a-type"}
        is_valid, error = validate_schema(schema)
        assert is_valid is False
        assert error.startswith("Invalid schema:")

    def test_empty_schema_is_valid(self):
        """Test that an empty schema is valid."""
        is_valid, error = validate_schema({})
        assert is_valid is True
        assert error is None


class TestSchemaErrors:
    """Tests for schema_errors function."""

    SCHEMA = {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": {"type": "string"},
            "level": {"type": "integer", "enum": [100, 150]},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "additionalProperties": False,
    }

    def test_no_errors(self):
        assert schema_errors({"name": "sales", "level": 150}, self.SCHEMA) == []

    def test_missing_required_reports_property(self):
        [(path, message)] = schema_errors({}, self.SCHEMA)
        assert path == "name"
        assert "required" in message

    def test_unexpected_property_reports_key(self):
        [(path, message)] = schema_errors({"name": "sales", "colour": "red"}, self.SCHEMA)
        assert path == "colour"

    def test_nested_path(self):
        [(path, _)] = schema_errors({"name": "sales", "tags": ["a", 1]}, self.SCHEMA)
        assert path == "tags.1"

    def test_root_errors(self):
        [(path, _)] = schema_errors([], {"type": "object"})
        assert path == "(root)"

    def test_multiple_errors_sorted_by_path(self):
        errors = schema_errors({"name": 1, "level": 120}, self.SCHEMA)
        assert [path for path, _ in errors] == ["level", "name"]


class TestValidateDocument:
    """Tests for validate_document function."""

    def test_valid_document(self):
        is_valid, error = validate_document({"name": "x"}, {"type": "object"})
        assert is_valid is True
        assert error is None

    def test_invalid_document_message(self):
        is_valid, error = validate_document(
            {"name": 5}, {"type": "object", "properties": {"name": {"type": "string"}}}
        )
        assert is_valid is False
        assert error.startswith("name: ")
        assert "'string'" in error
