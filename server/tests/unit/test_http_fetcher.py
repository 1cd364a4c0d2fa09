"""
Unit Tests for ProviderHttpClient and page text extraction

HTTP is served by httpx.MockTransport.
"""

import httpx
import pytest

from websearch.errors import BlockDetectedError, NetworkError, ParseError
from websearch.http_fetcher import ProviderHttpClient, extract_page_text, truncate_at_sentence
from websearch.retry_strategy import RetryConfig, RetryPolicy
from websearch.user_agent_config import DEFAULT_USER_AGENTS, BlockDetector, HeaderRotator


def _client(handler, retries=0) -> ProviderHttpClient:
    return ProviderHttpClient(
        "test",
        retry_policy=RetryPolicy(RetryConfig(max_retries=retries, base_delay=0.0, jitter_factor=0.0)),
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# HEADER AND BLOCK DETECTION TESTS
# =============================================================================

class TestIdentity:
    """Tests for header rotation and block detection."""

    def test_rotation_cycles_all_agents(self):
        """Consecutive calls walk through every user agent."""
        rotator = HeaderRotator()
        seen = {rotator.next_user_agent() for _ in range(len(DEFAULT_USER_AGENTS))}
        assert seen == set(DEFAULT_USER_AGENTS)

    def test_headers_include_extras(self):
        """Extra headers and the language are merged in."""
        rotator = HeaderRotator(accept_language="en-US", extra_headers={"Referer": "https://www.bing.com/"})
        headers = rotator.next_headers()
        assert headers["Accept-Language"] == "en-US"
        assert headers["Referer"] == "https://www.bing.com/"
        assert headers["User-Agent"] in DEFAULT_USER_AGENTS

    def test_empty_agents_rejected(self):
        """A rotator needs at least one identity."""
        with pytest.raises(ValueError):
            HeaderRotator(user_agents=())

    @pytest.mark.parametrize("body,expected", [
        ("<html>Please solve this CAPTCHA</html>", "captcha"),
        ("Our systems have detected unusual traffic", "detected unusual traffic"),
        ("<html><body>Normal results</body></html>", None),
        ("", None),
    ])
    def test_block_detector(self, body, expected):
        """Signatures are matched case-insensitively."""
        assert BlockDetector().detect(body) == expected


# =============================================================================
# CLIENT TESTS
# =============================================================================

class TestProviderHttpClient:
    """Tests for request handling and error translation."""

    @pytest.mark.asyncio
    async def test_get_text_sends_rotated_identity(self):
        """Each request carries a browser User-Agent."""
        seen = []

        def handler(request):
            seen.append(request.headers["User-Agent"])
            return httpx.Response(200, text="<html>ok</html>")

        client = _client(handler)
        assert await client.get_text("https://example.com") == "<html>ok</html>"
        assert seen[0] in DEFAULT_USER_AGENTS
        await client.close()

    @pytest.mark.asyncio
    async def test_block_page_raises(self):
        """A CAPTCHA page raises BlockDetectedError, even with status 200."""
        client = _client(lambda r: httpx.Response(200, text="<html><p>Please solve this CAPTCHA</p></html>"))
        with pytest.raises(BlockDetectedError) as exc_info:
            await client.get_text("https://example.com")
        assert exc_info.value.signature == "captcha"
        assert exc_info.value.provider == "test"

    @pytest.mark.asyncio
    async def test_block_check_can_be_skipped(self):
        """Without check_block a 200 body is returned as-is; error statuses are still checked."""
        page = '<html><script src="https://www.google.com/recaptcha/api.js"></script><main>Article</main></html>'
        client = _client(lambda r: httpx.Response(200, text=page))
        assert await client.get_text("https://example.com", check_block=False) == page

        walled = _client(lambda r: httpx.Response(403, text="<h1>Access Denied</h1>"))
        with pytest.raises(BlockDetectedError):
            await walled.get_text("https://example.com", check_block=False)

    def test_parse_results_page(self, result_factory):
        """Block signatures only matter when a results page yields nothing."""
        client = _client(lambda r: httpx.Response(500))
        results = [result_factory()]
        body = "<html>captcha solvers compared</html>"
        assert client.parse_results_page(body, "https://s.example.com", lambda page: results) == results

        with pytest.raises(BlockDetectedError):
            client.parse_results_page(body, "https://s.example.com", lambda page: [])

        def unparseable(page):
            raise ParseError("layout", "test")

        with pytest.raises(BlockDetectedError):
            client.parse_results_page(body, "https://s.example.com", unparseable)
        with pytest.raises(ParseError):
            client.parse_results_page("<html>v2</html>", "https://s.example.com", unparseable)
        assert client.parse_results_page("", "https://s.example.com", lambda page: []) == []

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Statuses from 400 become NetworkError with the code."""
        client = _client(lambda r: httpx.Response(503, text="busy"))
        with pytest.raises(NetworkError) as exc_info:
            await client.get_text("https://example.com")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_malformed_url_is_network_error(self):
        """An unparseable URL surfaces as NetworkError, not a raw httpx exception."""
        client = _client(lambda r: httpx.Response(200, text="<html>ok</html>"))
        with pytest.raises(NetworkError):
            await client.get_text("http://[broken/path")

    @pytest.mark.asyncio
    async def test_transport_error_translated_and_retried(self):
        """Connection errors are retried, then surface as NetworkError."""
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler, retries=2)
        with pytest.raises(NetworkError):
            await client.get_text("https://example.com")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_json_not_block_checked(self):
        """JSON bodies mentioning captcha are returned as data."""
        client = _client(lambda r: httpx.Response(200, json={"Abstract": "What is a CAPTCHA?"}))
        assert await client.get_json("https://api.example.com") == {"Abstract": "What is a CAPTCHA?"}

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Non-JSON bodies raise ParseError, or BlockDetectedError for block pages."""
        client = _client(lambda r: httpx.Response(200, text="<html>nope</html>"))
        with pytest.raises(ParseError):
            await client.get_json("https://api.example.com")

        blocked = _client(lambda r: httpx.Response(200, text="<html>are you a robot?</html>"))
        with pytest.raises(BlockDetectedError):
            await blocked.get_json("https://api.example.com")

    @pytest.mark.asyncio
    async def test_post_json(self):
        """post_json sends the payload and decodes the answer."""
        def handler(request):
            assert request.method == "POST"
            return httpx.Response(200, json={"echo": request.read().decode()})

        client = _client(handler)
        data = await client.post_json("https://api.example.com", {"a": 1})
        assert '"a"' in data["echo"]


# =============================================================================
# PAGE TEXT TESTS
# =============================================================================

class TestExtractPageText:
    """Tests for main-content extraction."""

    def test_prefers_main_content_and_strips_boilerplate(self):
        """Navigation, scripts and ads are dropped; article text kept."""
        html = """
        <html><body>
          <nav>Home | About</nav>
          <script>var x = 1;</script>
          <div class="ads">Buy stuff</div>
          <article><h1>Title</h1><p>First paragraph.</p><p>Second   paragraph.</p></article>
          <footer>Copyright</footer>
        </body></html>
        """
        text = extract_page_text(html)
        assert text == "Title\n\nFirst paragraph.\n\nSecond paragraph."

    def test_falls_back_to_body(self):
        """Without a content container the body is used."""
        assert extract_page_text("<html><body><div>Only text here.</div></body></html>") == "Only text here."

    def test_empty(self):
        """Empty HTML gives empty text."""
        assert extract_page_text("") == ""

    def test_truncates_at_sentence(self):
        """Long text is cut at the last sentence end inside the limit."""
        text = "First sentence is here. Second sentence is here. Third one."
        assert truncate_at_sentence(text, 50) == "First sentence is here. Second sentence is here."

    def test_truncates_with_ellipsis_without_boundary(self):
        """Without a usable boundary the text is cut with an ellipsis."""
        text = "a" * 100
        assert truncate_at_sentence(text, 20) == "a" * 17 + "..."

    def test_short_text_untouched(self):
        """Text within the limit is returned as is."""
        assert truncate_at_sentence("Short.", 100) == "Short."
