"""Unit tests for Microsoft token providers."""
import json
import time

import pytest
import responses

from processor.exceptions import AuthenticationError
from sources.oauth import MICROSOFT_TOKEN_ENDPOINT, RefreshTokenProvider, StaticTokenProvider


def write_store(path, **values):
    path.write_text(json.dumps(values), encoding='utf-8')


def test_static_token_is_stripped():
    assert StaticTokenProvider(' token\n').get_access_token() == 'token'


def test_valid_token_is_reused(tmp_path):
    """Test an unexpired token is returned without a refresh."""
    store = tmp_path / 'token.json'
    write_store(store, access_token='cached', expire_at=int(time.time()) + 3600, refresh_token='r')

    provider = RefreshTokenProvider('client', str(store))

    with responses.RequestsMock() as rsps:
        assert provider.get_access_token() == 'cached'
        assert len(rsps.calls) == 0


def test_expired_token_is_refreshed(tmp_path):
    """Test the token endpoint is called and the store rewritten."""
    store = tmp_path / 'token.json'
    write_store(store, access_token='old', expire_at=0, refresh_token='refresh-1')
    provider = RefreshTokenProvider('client', str(store))

    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, MICROSOFT_TOKEN_ENDPOINT, json={
            'access_token': 'new', 'expires_in': 3600, 'refresh_token': 'refresh-2',
        })

        assert provider.get_access_token() == 'new'
        assert 'refresh_token=refresh-1' in rsps.calls[0].request.body

    saved = json.loads(store.read_text(encoding='utf-8'))
    assert saved['access_token'] == 'new'
    assert saved['refresh_token'] == 'refresh-2'
    assert saved['expire_at'] > time.time()


def test_refresh_keeps_old_refresh_token(tmp_path):
    store = tmp_path / 'token.json'
    write_store(store, access_token='old', expire_at=0, refresh_token='refresh-1')
    provider = RefreshTokenProvider('client', str(store))

    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, MICROSOFT_TOKEN_ENDPOINT, json={'access_token': 'new', 'expires_in': 3600})
        provider.get_access_token()

    assert json.loads(store.read_text(encoding='utf-8'))['refresh_token'] == 'refresh-1'


def test_refresh_failure(tmp_path):
    store = tmp_path / 'token.json'
    write_store(store, access_token='old', expire_at=0, refresh_token='revoked')
    provider = RefreshTokenProvider('client', str(store))

    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, MICROSOFT_TOKEN_ENDPOINT, status=400, json={
            'error': 'invalid_grant', 'error_description': 'refresh token revoked',
        })

        with pytest.raises(AuthenticationError, match='revoked'):
            provider.get_access_token()


def test_missing_store(tmp_path):
    provider = RefreshTokenProvider('client', str(tmp_path / 'missing.json'))

    with pytest.raises(AuthenticationError, match='interaction required'):
        provider.get_access_token()
