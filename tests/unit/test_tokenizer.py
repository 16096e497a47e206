"""Unit tests for the curl tokenizer."""

from __future__ import annotations

import pytest

from curlspec.parser.tokenizer import (
    CurlInvocation,
    CurlTokenizer,
    InvocationContext,
    has_open_quote,
    join_continuations,
    lex,
    parse_body,
    shell_quote,
    unquote,
)


@pytest.fixture
def tokenizer() -> CurlTokenizer:
    """Create a curl tokenizer."""
    return CurlTokenizer()


class TestLexer:
    """Test quote-aware lexing."""

    def test_splits_on_whitespace(self) -> None:
        """Test that unquoted whitespace separates tokens."""
        assert lex("curl  -X\tGET https://a.io") == ["curl", "-X", "GET", "https://a.io"]

    def test_keeps_quoted_whitespace(self) -> None:
        """Test that whitespace inside quotes stays in the token."""
        tokens = lex("""curl -H "Accept: application/json" -d '{"a": 1}'""")
        assert tokens == ["curl", "-H", '"Accept: application/json"', """'{"a": 1}'"""]

    def test_other_quote_is_literal_inside_quotes(self) -> None:
        """Test that a double quote inside single quotes does not toggle state."""
        assert lex("""'say "hi" now' x""") == ["""'say "hi" now'""", "x"]

    def test_empty_input(self) -> None:
        """Test that empty input produces no tokens."""
        assert lex("") == []
        assert lex("   ") == []


class TestQuoteHelpers:
    """Test unquoting, open-quote detection and quoting."""

    def test_unquote_concatenates_segments(self) -> None:
        """Test that adjacent quoted segments are joined."""
        assert unquote("""'a'"b"c""") == "abc"

    def test_unquote_keeps_nested_quotes(self) -> None:
        """Test that the other quote character survives inside a segment."""
        assert unquote("""'{"a": 1}'""") == '{"a": 1}'

    def test_unquote_drops_unterminated_quote(self) -> None:
        """Test that an unterminated opening quote is dropped."""
        assert unquote("'abc") == "abc"

    def test_has_open_quote(self) -> None:
        """Test detection of text ending inside a quote."""
        assert has_open_quote("curl -d '{") is True
        assert has_open_quote("curl -d '{}'") is False
        assert has_open_quote('curl -H "X: \'"') is False

    def test_shell_quote_survives_lexing(self) -> None:
        """Test that a quoted value with embedded quotes lexes to one token."""
        value = "it's {\"a\": 1}"
        tokens = lex(f"curl -d {shell_quote(value)}")
        assert len(tokens) == 3
        assert unquote(tokens[2]) == value


class TestJoinContinuations:
    """Test backslash line continuation joining."""

    def test_joins_lines(self) -> None:
        """Test that backslash-newline runs become a single space."""
        text = "curl -X POST \\\n  https://a.io \\\n  -H 'A: b'"
        assert join_continuations(text) == "curl -X POST https://a.io -H 'A: b'"

    def test_trailing_spaces_after_backslash(self) -> None:
        """Test that spaces between backslash and newline are tolerated."""
        assert join_continuations("curl \\  \n https://a.io") == "curl https://a.io"


class TestParseBody:
    """Test request body parsing."""

    def test_json_body(self) -> None:
        """Test that JSON data is decoded."""
        assert parse_body('{"name": "Ada"}') == {"name": "Ada"}

    def test_raw_body(self) -> None:
        """Test that non-JSON data is kept verbatim."""
        assert parse_body("name=Ada&age=3") == "name=Ada&age=3"

    def test_json_array_body(self) -> None:
        """Test that JSON arrays are decoded."""
        assert parse_body("[1, 2]") == [1, 2]

    @pytest.mark.parametrize("data", ["123", "true", "null", '"quoted"'])
    def test_json_scalars_stay_raw(self, data: str) -> None:
        """Test that JSON scalars are kept as the original text."""
        assert parse_body(data) == data


class TestCurlTokenizer:
    """Test the semantic pass of the tokenizer."""

    def test_full_command(self, tokenizer: CurlTokenizer) -> None:
        """Test method, URL, headers and JSON body extraction."""
        invocation = tokenizer.tokenize(
            "curl -X POST https://api.example.com/users "
            '-H "Content-Type: application/json" '
            "-H 'Authorization: Bearer abc' "
            """-d '{"name": "Ada"}'"""
        )

        assert invocation is not None
        assert invocation.method == "POST"
        assert invocation.url == "https://api.example.com/users"
        assert invocation.headers == {
            "Content-Type": "application/json",
            "Authorization": "Bearer abc",
        }
        assert invocation.body == {"name": "Ada"}

    def test_defaults_to_get(self, tokenizer: CurlTokenizer) -> None:
        """Test that a command without -X is a GET."""
        invocation = tokenizer.tokenize("curl https://api.example.com/users")
        assert invocation is not None
        assert invocation.method == "GET"
        assert invocation.headers == {}
        assert invocation.body is None

    def test_data_does_not_imply_post(self, tokenizer: CurlTokenizer) -> None:
        """Test that -d alone leaves the method at GET."""
        invocation = tokenizer.tokenize("curl https://a.io/search -d 'q=1'")
        assert invocation is not None
        assert invocation.method == "GET"
        assert invocation.body == "q=1"

    def test_long_flags(self, tokenizer: CurlTokenizer) -> None:
        """Test --request, --header and --data-raw."""
        invocation = tokenizer.tokenize(
            "curl --request patch --header 'X-Id: 7' --data-raw '[1, 2]' https://a.io/x"
        )
        assert invocation is not None
        assert invocation.method == "PATCH"
        assert invocation.headers == {"X-Id": "7"}
        assert invocation.body == [1, 2]

    def test_invalid_method_is_not_consumed(self, tokenizer: CurlTokenizer) -> None:
        """Test that -X with an unknown method keeps the GET default."""
        invocation = tokenizer.tokenize("curl -X FETCH https://a.io")
        assert invocation is not None
        assert invocation.method == "GET"

    def test_first_url_wins(self, tokenizer: CurlTokenizer) -> None:
        """Test that the first http(s) token is the URL."""
        invocation = tokenizer.tokenize("curl http://first.io/a https://second.io/b")
        assert invocation is not None
        assert invocation.url == "http://first.io/a"

    def test_header_value_keeps_colons(self, tokenizer: CurlTokenizer) -> None:
        """Test that only the first colon separates header name and value."""
        invocation = tokenizer.tokenize("curl -H 'X-Time: 12:30:00' https://a.io")
        assert invocation is not None
        assert invocation.headers == {"X-Time": "12:30:00"}

    def test_malformed_header_is_skipped(self, tokenizer: CurlTokenizer) -> None:
        """Test that a header without a colon is ignored."""
        invocation = tokenizer.tokenize("curl -H 'nocolon' https://a.io")
        assert invocation is not None
        assert invocation.headers == {}

    def test_no_url_returns_none(self, tokenizer: CurlTokenizer) -> None:
        """Test that a command without an http(s) token is rejected."""
        assert tokenizer.tokenize("curl -X GET localhost:8080/users") is None

    def test_scan_keeps_partial_results(self, tokenizer: CurlTokenizer) -> None:
        """Test that scan reports what it found even without a URL."""
        scan = tokenizer.scan("curl -X DELETE -H 'A: b'")
        assert scan.url is None
        assert scan.method == "DELETE"
        assert scan.headers == {"A": "b"}
        assert scan.has_body is False

    def test_line_number_and_context(self, tokenizer: CurlTokenizer) -> None:
        """Test that location and context are attached."""
        context = InvocationContext(heading="Users", language="bash")
        invocation = tokenizer.tokenize("curl https://a.io", line_number=12, context=context)
        assert invocation is not None
        assert invocation.line_number == 12
        assert invocation.context.heading == "Users"


class TestToCommand:
    """Test command synthesis from an invocation."""

    def test_synthesized_command_tokenizes_back(self, tokenizer: CurlTokenizer) -> None:
        """Test that to_command output reproduces the invocation."""
        original = tokenizer.tokenize(
            "curl -X PUT 'https://a.io/items/1?x=1' -H 'Authorization: Bearer t' "
            """-d '{"title": "done"}'"""
        )
        assert original is not None

        again = tokenizer.tokenize(original.to_command())
        assert again is not None
        assert again.method == original.method
        assert again.url == original.url
        assert again.headers == original.headers
        assert again.body == original.body

    def test_command_without_body(self, tokenizer: CurlTokenizer) -> None:
        """Test that GET commands carry no -d flag."""
        invocation = tokenizer.tokenize("curl https://a.io/users")
        assert invocation is not None
        assert invocation.to_command() == "curl -X GET 'https://a.io/users'"

    @pytest.mark.parametrize("body", ["123", "true", "null", '"quoted"', "a=1&b=2"])
    def test_string_bodies_survive_round_trip(
        self, tokenizer: CurlTokenizer, body: str
    ) -> None:
        """Test that string bodies come back unchanged from to_command."""
        invocation = CurlInvocation(
            raw="curl", method="POST", url="https://a.io/items", body=body
        )

        again = tokenizer.tokenize(invocation.to_command())

        assert again is not None
        assert again.body == body

    def test_null_data_is_a_string_body(self, tokenizer: CurlTokenizer) -> None:
        """Test that -d null yields a present string body."""
        scan = tokenizer.scan("curl -X POST https://a.io/items -d null")
        assert scan.has_body is True
        assert scan.body == "null"


class TestMultiLineCommands:
    """Test commands passed with their line continuations intact."""

    def test_continuations_are_joined(self, tokenizer: CurlTokenizer) -> None:
        """Test that a backslash-continued command tokenizes as one."""
        invocation = tokenizer.tokenize(
            "curl -X DELETE \\\n  https://a.io/users/1 \\\n  -H 'Authorization: Bearer t'"
        )
        assert invocation is not None
        assert invocation.method == "DELETE"
        assert invocation.url == "https://a.io/users/1"
        assert invocation.headers == {"Authorization": "Bearer t"}
