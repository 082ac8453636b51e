"""Tests for the naming module."""

from mcp_factory.naming import (
    canonicalize_tool_name,
    deduplicate_names,
    env_var_name,
    function_name,
    operation_tool_name,
    safe_table_name,
    to_identifier,
    unique_identifiers,
)


class TestCanonicalizeToolName:
    """Model-produced names become snake_case identifiers."""

    def test_spaces_and_punctuation(self):
        assert canonicalize_tool_name("My Tool-1!") == "my_tool_1"

    def test_leading_digit(self):
        assert canonicalize_tool_name("123abc") == "tool_123abc"

    def test_empty(self):
        assert canonicalize_tool_name("") == "unnamed_tool"

    def test_only_symbols(self):
        assert canonicalize_tool_name("!!!") == "unnamed_tool"

    def test_idempotent(self):
        for name in ["My Tool-1!", "123abc", "get_weather", "Fetch URL", ""]:
            once = canonicalize_tool_name(name)
            assert canonicalize_tool_name(once) == once

    def test_valid_identifier(self):
        assert canonicalize_tool_name("Send E-mail Now").isidentifier()


class TestOperationToolName:
    """Test tool name generation from HTTP method + path."""

    def test_operation_id_wins(self):
        assert operation_tool_name("get", "/pets", "listPets") == "list_pets"

    def test_operation_id_pascal(self):
        assert operation_tool_name("get", "/x", "GetHTTPResponse") == "get_http_response"

    def test_path_fallback(self):
        assert operation_tool_name("get", "/pets/{petId}") == "get_pets_pet_id"

    def test_root_path(self):
        assert operation_tool_name("post", "/") == "post_root"

    def test_nested_path(self):
        assert operation_tool_name("delete", "/api/v1/users/{id}/roles") == "delete_api_v1_users_id_roles"

    def test_valid_python_identifier(self):
        name = operation_tool_name("get", "/files/downloads/directories/{base64SubdirectoryName}")
        assert name.isidentifier()


class TestIdentifiers:
    """Handler argument and function names."""

    def test_camel_case_property(self):
        assert to_identifier("searchText") == "search_text"

    def test_header_name(self):
        assert to_identifier("X-Request-Id") == "x_request_id"

    def test_keyword(self):
        assert to_identifier("class") == "class_"

    def test_reserved_module_name(self):
        assert to_identifier("json") == "json_"
        assert to_identifier("params") == "params_"

    def test_leading_digit(self):
        assert to_identifier("2fa") == "arg_2fa"

    def test_empty(self):
        assert to_identifier("") == "arg"

    def test_idempotent_for_suffixed_names(self):
        assert to_identifier(to_identifier("json")) == "json_"

    def test_function_name_keyword(self):
        assert function_name("import") == "import_tool"

    def test_function_name_reserved(self):
        assert function_name("json") == "json_tool"

    def test_function_name_plain(self):
        assert function_name("get_weather") == "get_weather"

    def test_unique_identifiers_collision(self):
        assert unique_identifiers(["userId", "user_id", "user-id"]) == ["user_id", "user_id_2", "user_id_3"]


class TestDeduplicateNames:
    """Collisions never overwrite an earlier name."""

    def test_no_collisions(self):
        assert deduplicate_names(["a", "b"], lambda x: x) == ["a", "b"]

    def test_counter_suffix(self):
        assert deduplicate_names(["a", "a", "a"], lambda x: x) == ["a", "a_2", "a_3"]

    def test_counter_skips_existing(self):
        assert deduplicate_names(["a", "a_2", "a"], lambda x: x) == ["a", "a_2", "a_3"]

    def test_qualifier_first(self):
        items = [("pets", "get"), ("pets", "post")]
        names = deduplicate_names(items, lambda i: i[0], lambda i: i[1])
        assert names == ["pets", "pets_post"]

    def test_qualifier_then_counter(self):
        items = [("pets", "get"), ("pets", "get"), ("pets", "get")]
        names = deduplicate_names(items, lambda i: i[0], lambda i: i[1])
        assert len(set(names)) == 3
        assert names[0] == "pets"


class TestMisc:

    def test_safe_table_name(self):
        assert safe_table_name("Order Items") == "order_items"

    def test_env_var_name(self):
        assert env_var_name("petstore_auth", "TOKEN") == "PETSTORE_AUTH_TOKEN"

    def test_env_var_name_symbols(self):
        assert env_var_name("api-key", "API_KEY") == "API_KEY_API_KEY"
