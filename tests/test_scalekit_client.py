"""Unit tests for the Scalekit provider client."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from springsso.config import Settings
from springsso.service.errors import ProviderNotConfiguredError, UpstreamProviderError
from springsso.service.scalekit import ScalekitClient, ScalekitProfile


@pytest.fixture
def settings():
    return Settings(
        app_url="https://app.example.test/",
        scalekit_environment_url="https://sso.example.test/",
        scalekit_client_id="skc_1",
        scalekit_client_secret="shh",
    )


class TestAuthorizationUrl:
    def test_url_carries_all_parameters(self, settings):
        url = ScalekitClient(settings).authorization_url("deadbeef")
        parsed = urlparse(url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
            "https://sso.example.test/oauth2/authorize"
        )
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert params == {
            "response_type": "code",
            "client_id": "skc_1",
            "redirect_uri": "https://app.example.test/api/auth/callback",
            "scope": "openid profile email",
            "state": "deadbeef",
        }

    def test_unconfigured_provider(self):
        client = ScalekitClient(Settings())
        with pytest.raises(ProviderNotConfiguredError):
            client.authorization_url("s")


class TestExchange:
    async def test_exchange_posts_form(self, settings, fake_scalekit):
        tokens = await fake_scalekit.client(settings).exchange_code("the-code")
        assert tokens.access_token == "sk-access"
        assert tokens.expires_at(now=1000) == 4600
        request = fake_scalekit.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://sso.example.test/oauth2/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert fake_scalekit.form() == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "https://app.example.test/api/auth/callback",
            "client_id": "skc_1",
            "client_secret": "shh",
        }

    async def test_refresh_access_token(self, settings, fake_scalekit):
        fake_scalekit.token_body["access_token"] = "sk-access-2"
        tokens = await fake_scalekit.client(settings).refresh_access_token("sk-refresh")
        assert tokens.access_token == "sk-access-2"
        form = fake_scalekit.form()
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "sk-refresh"

    async def test_http_error_is_upstream_error(self, settings, fake_scalekit):
        fake_scalekit.token_status = 400
        fake_scalekit.token_body = {"error": "invalid_grant"}
        with pytest.raises(UpstreamProviderError):
            await fake_scalekit.client(settings).exchange_code("bad")

    async def test_network_error_is_upstream_error(self, settings, fake_scalekit):
        fake_scalekit.error = httpx.ConnectTimeout("timed out")
        with pytest.raises(UpstreamProviderError):
            await fake_scalekit.client(settings).exchange_code("code")

    async def test_incomplete_token_response(self, settings, fake_scalekit):
        del fake_scalekit.token_body["refresh_token"]
        with pytest.raises(UpstreamProviderError):
            await fake_scalekit.client(settings).exchange_code("code")

    async def test_missing_expiry(self, settings, fake_scalekit):
        del fake_scalekit.token_body["expires_in"]
        with pytest.raises(UpstreamProviderError):
            await fake_scalekit.client(settings).exchange_code("code")


class TestUserInfo:
    async def test_sends_bearer_token(self, settings, fake_scalekit):
        profile = await fake_scalekit.client(settings).get_user_info("sk-access")
        assert fake_scalekit.requests[0].headers["authorization"] == "Bearer sk-access"
        assert profile == ScalekitProfile(
            id="sk_user_1",
            email="dana@example.com",
            username="dana",
            first_name="Dana",
            last_name="Scully",
        )

    async def test_userinfo_failure(self, settings, fake_scalekit):
        fake_scalekit.userinfo_status = 503
        with pytest.raises(UpstreamProviderError):
            await fake_scalekit.client(settings).get_user_info("sk-access")

    def test_parse_oidc_claims(self, settings):
        profile = ScalekitClient(settings).parse_profile(
            {"sub": "abc", "preferred_username": "eve", "given_name": "Eve"}
        )
        assert profile.id == "abc"
        assert profile.username == "eve"
        assert profile.first_name == "Eve"

    def test_parse_requires_subject(self, settings):
        with pytest.raises(UpstreamProviderError):
            ScalekitClient(settings).parse_profile({"email": "x@example.com"})


class TestPreferredUsername:
    @pytest.mark.parametrize(
        "profile, expected",
        [
            (ScalekitProfile(id="1", username="u", email="e@example.com"), "u"),
            (ScalekitProfile(id="1", email="e@example.com"), "e@example.com"),
            (ScalekitProfile(id="1"), "user_1"),
        ],
    )
    def test_fallback_order(self, profile, expected):
        assert profile.preferred_username() == expected
